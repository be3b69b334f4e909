"""GenerationContext: the mutable state object flowing through all stages of one run."""

from __future__ import annotations

from dataclasses import dataclass, field

from app.engine.analyzer import ImageAnalysis
from app.engine.assembler import Particle
from app.engine.cancellation import CancellationToken
from app.engine.config import GenerationConfig
from app.engine.pixels import PixelAccessor
from app.engine.registry import Stage
from app.engine.sampling.base import Sample, SamplerOptions


@dataclass
class GenerationContext:
    """Shared state for one generation request."""

    accessor: PixelAccessor
    config: GenerationConfig
    # Destination surface; defaults to the image's own size
    screen_size: tuple[float, float] | None = None
    cancel: CancellationToken = field(default_factory=CancellationToken)
    cache_key: str = ""

    # Intra-stage worker counts, filled in by the pipeline from the execution strategy
    stage_workers: dict[Stage, int] = field(default_factory=dict)

    # --- Stage outputs ---
    analysis: ImageAnalysis | None = None
    samples: list[Sample] = field(default_factory=list)
    particles: list[Particle] = field(default_factory=list)

    # --- Bookkeeping ---
    completed_stages: list[Stage] = field(default_factory=list)
    timings_ms: dict[str, float] = field(default_factory=dict)
    progress: float = 0.0
    current_stage: str = "Idle"

    def __post_init__(self) -> None:
        if self.screen_size is None:
            self.screen_size = (float(self.accessor.width), float(self.accessor.height))

    @property
    def expected_count(self) -> int:
        return min(self.config.target_particle_count, self.accessor.pixel_count)

    def workers(self, stage: Stage) -> int:
        return self.stage_workers.get(stage, 1)

    def sampler_options(self, stage: Stage = Stage.SAMPLING) -> SamplerOptions:
        return SamplerOptions(seed=self.config.seed, workers=self.workers(stage), cancel=self.cancel)

