"""Pipeline orchestrator: runs Analysis, Sampling, Assembly and Caching over one context."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Generator
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any

from app.engine.analyzer import ImageAnalyzer
from app.engine.artifacts import ArtifactPreventionValidator
from app.engine.assembler import ParticleAssembler
from app.engine.cache import CacheManager
from app.engine.config import GenerationConfig, StrategyKind
from app.engine.context import GenerationContext
from app.engine.errors import GeneratorError, InsufficientSamplesError, StageFailedError
from app.engine.registry import Stage, StageRegistry, StageSpec
from app.engine.sampling import PixelSampler
from app.engine.strategies import ExecutionStrategy, SequentialStrategy, create_strategy

_module_logger = logging.getLogger(__name__)

ProgressFn = Callable[[float, str], None]


class GenerationPipeline:
    """Executes the generation stages in the order the execution strategy plans."""

    def __init__(
        self,
        analyzer: ImageAnalyzer | None = None,
        sampler: PixelSampler | None = None,
        validator: ArtifactPreventionValidator | None = None,
        assembler: ParticleAssembler | None = None,
        cache: CacheManager | None = None,
        strategy: ExecutionStrategy | None = None,
        registry: StageRegistry | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.analyzer = analyzer or ImageAnalyzer()
        self.sampler = sampler or PixelSampler()
        self.validator = validator or ArtifactPreventionValidator()
        self.assembler = assembler or ParticleAssembler()
        self.cache = cache
        self.strategy = strategy or SequentialStrategy()
        self.registry = registry or self._default_registry()
        self._log = logger or _module_logger

    def _default_registry(self) -> StageRegistry:
        registry = StageRegistry()
        registry.register(StageSpec(Stage.ANALYSIS, self._run_analysis))
        registry.register(StageSpec(Stage.SAMPLING, self._run_sampling))
        registry.register(StageSpec(Stage.ASSEMBLY, self._run_assembly))
        registry.register(StageSpec(Stage.CACHING, self._run_caching))
        return registry

    # --- Stages ---

    def _run_analysis(self, ctx: GenerationContext) -> None:
        if ctx.analysis is not None:
            self._log.debug("  analysis supplied by caller, skipping")
            return
        ctx.analysis = self.analyzer.analyze(ctx.accessor, workers=ctx.workers(Stage.ANALYSIS))

    def _run_sampling(self, ctx: GenerationContext) -> None:
        config = ctx.config
        options = ctx.sampler_options(Stage.SAMPLING)
        samples = self.sampler.sample(ctx.accessor, config, ctx.analysis, options)

        if config.sampling_strategy.kind is not StrategyKind.IMPORTANCE or config.validate_importance_output:
            params = config.tuned_sampling_params(ctx.analysis)
            samples = self.validator.validate_and_correct(
                samples,
                ctx.accessor,
                config.target_particle_count,
                top_bottom_ratio=params.top_bottom_ratio,
                options=options,
            )

        if len(samples) != ctx.expected_count:
            raise InsufficientSamplesError(len(samples), ctx.expected_count)
        ctx.samples = samples

    def _run_assembly(self, ctx: GenerationContext) -> None:
        screen = ctx.screen_size or (float(ctx.accessor.width), float(ctx.accessor.height))
        ctx.particles = self.assembler.assemble(ctx.samples, ctx.config, screen, ctx.accessor.size)

    def _run_caching(self, ctx: GenerationContext) -> None:
        if self.cache is None or not ctx.cache_key:
            return
        # Soft failure: a skipped store never fails the request
        if not self.cache.put(ctx.cache_key, ctx.samples):
            self._log.info("  result not cached for %s", ctx.cache_key)

    # --- Planning ---

    def stages_for(self, config: GenerationConfig) -> list[Stage]:
        stages = [Stage.ANALYSIS, Stage.SAMPLING, Stage.ASSEMBLY]
        if config.enable_caching and self.cache is not None:
            stages.append(Stage.CACHING)
        return [s for s in stages if s in self.registry]

    def execution_plan(self, config: GenerationConfig) -> list[list[Stage]]:
        return self.strategy.execution_plan(self.stages_for(config))

    # --- Execution ---

    def _execute(self, ctx: GenerationContext, stage: Stage) -> float:
        spec = self.registry.get(stage)
        ctx.current_stage = spec.description
        t0 = time.perf_counter()
        try:
            spec.fn(ctx)
        except GeneratorError:
            raise
        except Exception as e:
            raise StageFailedError(stage.name, e) from e
        elapsed = round((time.perf_counter() - t0) * 1000, 1)
        ctx.timings_ms[stage.name] = elapsed
        self._log.debug("  %s completed in %.1fms", stage.name, elapsed)
        return elapsed

    def _execute_level(self, ctx: GenerationContext, level: list[Stage]) -> dict[Stage, float]:
        if len(level) == 1:
            return {level[0]: self._execute(ctx, level[0])}

        elapsed: dict[Stage, float] = {}
        workers = max(1, min(len(level), ctx.config.max_concurrent_operations))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self._execute, ctx, stage): stage for stage in level}
            for future in as_completed(futures):
                elapsed[futures[future]] = future.result()
        return elapsed

    def run_streaming(self, ctx: GenerationContext) -> Generator[dict[str, Any], None, None]:
        """Run the pipeline, yielding a progress dict before and after each stage.

        The caller's ``ctx`` is mutated in place; once the generator is exhausted
        it holds the analysis, samples and particles. Any stage error ends the
        run: GeneratorError subclasses propagate unchanged, anything else is
        wrapped in StageFailedError.
        """
        self.strategy.validate(ctx.config)
        pixels = ctx.accessor.pixel_count
        for stage in (Stage.ANALYSIS, Stage.SAMPLING):
            ctx.stage_workers[stage] = self.strategy.workers_for(stage, ctx.config, pixels)

        plan = self.strategy.execution_plan(self.stages_for(ctx.config))
        total = sum(len(level) for level in plan)
        done = 0

        for level in plan:
            ctx.cancel.raise_if_cancelled()
            for stage in level:
                yield self._event(stage, done, total, 0.0, "running")

            elapsed = self._execute_level(ctx, level)
            # Work finished after a cancel request is discarded
            ctx.cancel.raise_if_cancelled()

            for stage in level:
                ctx.completed_stages.append(stage)
                done += 1
                ctx.progress = done / total
                yield self._event(stage, done, total, elapsed[stage], "ok")

    @staticmethod
    def _event(stage: Stage, done: int, total: int, elapsed_ms: float, status: str) -> dict[str, Any]:
        return {
            "stage": stage.name,
            "description": stage.description,
            "index": int(stage),
            "total": total,
            "progress": round(done / total, 4) if total else 1.0,
            "elapsed_ms": elapsed_ms,
            "status": status,
        }

    def run(self, ctx: GenerationContext, progress: ProgressFn | None = None) -> GenerationContext:
        """Run all stages, invoking ``progress(fraction, stage)`` after each one."""
        start = time.perf_counter()
        planned = len(self.stages_for(ctx.config))
        for event in self.run_streaming(ctx):
            if event["status"] == "ok" and progress is not None:
                progress(event["progress"], event["description"])

        total = (time.perf_counter() - start) * 1000
        self._log.info(
            "Pipeline complete: %d/%d stages in %.0fms",
            len(ctx.completed_stages),
            planned,
            total,
        )
        return ctx


def create_pipeline(
    cache: CacheManager | None = None,
    execution_strategy: str = "sequential",
    logger: logging.Logger | None = None,
) -> GenerationPipeline:
    """Factory function for creating a pipeline instance."""
    return GenerationPipeline(cache=cache, strategy=create_strategy(execution_strategy), logger=logger)
