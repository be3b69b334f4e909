"""GenerationCoordinator, the public entry point: one generation at a time, cache first."""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

from app.engine.analyzer import ImageAnalysis
from app.engine.assembler import Particle
from app.engine.cache import DEFAULT_MAX_BYTES, CacheManager, make_cache_key
from app.engine.cancellation import CancellationToken
from app.engine.config import GenerationConfig
from app.engine.context import GenerationContext
from app.engine.errors import (
    CacheCreationFailedError,
    GenerationCancelledError,
    GenerationInProgressError,
    InvalidImageError,
)
from app.engine.pipeline import GenerationPipeline, ProgressFn, create_pipeline
from app.engine.pixels import PixelAccessor
from app.engine.sampling.base import Sample

_module_logger = logging.getLogger(__name__)


class GenerationState(str, enum.Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class GenerationResult:
    particles: list[Particle]
    samples: list[Sample] = field(default_factory=list)
    analysis: ImageAnalysis | None = None
    from_cache: bool = False
    elapsed_ms: float = 0.0


class GenerationCoordinator:
    """Serialises generations and short-circuits through the sample cache.

    At most one generation runs per coordinator; a second ``generate`` while
    one is in flight raises GenerationInProgressError.
    """

    def __init__(self, pipeline: GenerationPipeline | None = None, logger: logging.Logger | None = None) -> None:
        self.pipeline = pipeline or GenerationPipeline()
        self._log = logger or _module_logger
        self._lock = threading.Lock()
        self._state = GenerationState.IDLE
        self._last_outcome: GenerationState | None = None
        self._token: CancellationToken | None = None
        self.current_progress = 0.0
        self.current_stage = "Idle"

    # --- Introspection ---

    @property
    def state(self) -> GenerationState:
        with self._lock:
            return self._state

    @property
    def last_outcome(self) -> GenerationState | None:
        """Completed, Cancelled or Failed for the most recent run; None before the first."""
        with self._lock:
            return self._last_outcome

    @property
    def cache(self) -> CacheManager | None:
        return self.pipeline.cache

    @staticmethod
    def cache_key(width: int, height: int, config: GenerationConfig) -> str:
        return make_cache_key(width, height, config.target_particle_count, config.quality_preset, config.sampling_strategy)

    # --- Operations ---

    def generate(
        self,
        accessor: PixelAccessor,
        config: GenerationConfig,
        screen_size: tuple[float, float] | None = None,
        progress: ProgressFn | None = None,
    ) -> list[Particle]:
        return self.generate_result(accessor, config, screen_size, progress).particles

    def generate_result(
        self,
        accessor: PixelAccessor,
        config: GenerationConfig,
        screen_size: tuple[float, float] | None = None,
        progress: ProgressFn | None = None,
        analysis: ImageAnalysis | None = None,
    ) -> GenerationResult:
        if accessor.width <= 0 or accessor.height <= 0:
            raise InvalidImageError()
        config.validate()

        token = self._begin()
        start = time.perf_counter()
        try:
            result = self._cached_result(accessor, config, screen_size, analysis, token)
            if result is not None:
                self._report(progress, 1.0, "Loaded from cache")
            else:
                ctx = GenerationContext(
                    accessor=accessor,
                    config=config,
                    screen_size=screen_size,
                    cancel=token,
                    cache_key=self.cache_key(accessor.width, accessor.height, config),
                    analysis=analysis,
                )
                self.pipeline.run(ctx, progress=lambda f, s: self._report(progress, f, s))
                result = GenerationResult(particles=ctx.particles, samples=ctx.samples, analysis=ctx.analysis)
                self._report(progress, 1.0, "complete")
        except GenerationCancelledError:
            self._finish(GenerationState.CANCELLED)
            self._log.info("Generation cancelled")
            raise
        except Exception:
            self._finish(GenerationState.FAILED)
            raise

        result.elapsed_ms = round((time.perf_counter() - start) * 1000, 1)
        self._finish(GenerationState.COMPLETED)
        self._log.info(
            "Generated %d particles in %.0fms (cache %s)",
            len(result.particles),
            result.elapsed_ms,
            "hit" if result.from_cache else "miss",
        )
        return result

    def cancel_generation(self) -> bool:
        """Request cancellation of the in-flight generation. Returns False when idle."""
        with self._lock:
            if self._token is None:
                return False
            self._token.cancel()
            return True

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    # --- Internals ---

    def _begin(self) -> CancellationToken:
        with self._lock:
            if self._state is GenerationState.GENERATING:
                raise GenerationInProgressError()
            self._state = GenerationState.GENERATING
            self._token = CancellationToken()
            self.current_progress = 0.0
            self.current_stage = "Starting"
            return self._token

    def _finish(self, outcome: GenerationState) -> None:
        with self._lock:
            self._last_outcome = outcome
            self._state = GenerationState.IDLE
            self._token = None

    def _report(self, progress: ProgressFn | None, fraction: float, stage: str) -> None:
        self.current_progress = fraction
        self.current_stage = stage
        if progress is not None:
            progress(fraction, stage)

    def _cached_result(
        self,
        accessor: PixelAccessor,
        config: GenerationConfig,
        screen_size: tuple[float, float] | None,
        analysis: ImageAnalysis | None,
        token: CancellationToken,
    ) -> GenerationResult | None:
        if not config.enable_caching or self.cache is None:
            return None
        key = self.cache_key(accessor.width, accessor.height, config)
        samples = self.cache.get(key)
        if samples is None:
            return None
        expected = min(config.target_particle_count, accessor.pixel_count)
        if len(samples) != expected:
            self._log.warning("Ignoring cache entry %s: %d samples, expected %d", key, len(samples), expected)
            return None

        token.raise_if_cancelled()
        screen = screen_size or (float(accessor.width), float(accessor.height))
        particles = self.pipeline.assembler.assemble(samples, config, screen, accessor.size)
        return GenerationResult(particles=particles, samples=samples, analysis=analysis, from_cache=True)


def create_coordinator(
    cache_dir: Path | str | None,
    cache_max_bytes: int = DEFAULT_MAX_BYTES,
    execution_strategy: str = "adaptive",
    logger: logging.Logger | None = None,
) -> GenerationCoordinator:
    """Build a coordinator; an unusable cache directory degrades to no caching."""
    log = logger or _module_logger
    cache: CacheManager | None = None
    if cache_dir is not None:
        try:
            cache = CacheManager(Path(cache_dir), max_bytes=cache_max_bytes)
        except CacheCreationFailedError as e:
            log.warning("Running without cache: %s", e)
    pipeline = create_pipeline(cache=cache, execution_strategy=execution_strategy, logger=logger)
    return GenerationCoordinator(pipeline, logger=logger)
