"""Tests for the generation pipeline."""

import pytest

from app.engine.analyzer import ImageAnalysis
from app.engine.cache import CacheManager
from app.engine.config import GenerationConfig, SamplingAlgorithm, SamplingStrategy
from app.engine.context import GenerationContext
from app.engine.errors import GenerationCancelledError, StageFailedError
from app.engine.pipeline import GenerationPipeline, create_pipeline
from app.engine.registry import Stage, StageSpec
from app.engine.strategies import ParallelStrategy
from tests.conftest import scene_image


def _config(**kw):
    kw.setdefault("target_particle_count", 200)
    kw.setdefault("enable_caching", False)
    return GenerationConfig(**kw)


def test_pipeline_runs_all_stages(scene):
    pipeline = GenerationPipeline()
    ctx = GenerationContext(accessor=scene, config=_config())
    pipeline.run(ctx)

    assert ctx.completed_stages == [Stage.ANALYSIS, Stage.SAMPLING, Stage.ASSEMBLY]
    assert ctx.analysis is not None
    assert len(ctx.samples) == 200
    assert len(ctx.particles) == 200
    assert ctx.progress == 1.0
    assert set(ctx.timings_ms) == {"ANALYSIS", "SAMPLING", "ASSEMBLY"}


def test_progress_reported_per_stage(scene):
    calls = []
    GenerationPipeline().run(GenerationContext(accessor=scene, config=_config()), progress=lambda f, s: calls.append((f, s)))
    assert [s for _, s in calls] == ["Image Analysis", "Pixel Sampling", "Particle Assembly"]
    assert calls[-1][0] == 1.0
    fractions = [f for f, _ in calls]
    assert fractions == sorted(fractions)


def test_streaming_events(scene):
    events = list(GenerationPipeline().run_streaming(GenerationContext(accessor=scene, config=_config())))
    assert [e["status"] for e in events] == ["running", "ok"] * 3
    assert events[-1]["progress"] == 1.0
    assert all(e["total"] == 3 for e in events)


def test_caching_stage_stores_samples(scene, cache_dir):
    cache = CacheManager(cache_dir)
    pipeline = GenerationPipeline(cache=cache)
    ctx = GenerationContext(accessor=scene, config=_config(enable_caching=True), cache_key="k")
    pipeline.run(ctx)
    assert Stage.CACHING in ctx.completed_stages
    assert cache.get("k") == ctx.samples


def test_caching_skipped_when_disabled(scene, cache_dir):
    cache = CacheManager(cache_dir)
    pipeline = GenerationPipeline(cache=cache)
    assert Stage.CACHING not in [s for level in pipeline.execution_plan(_config()) for s in level]
    ctx = GenerationContext(accessor=scene, config=_config(), cache_key="k")
    pipeline.run(ctx)
    assert cache.count == 0


def test_supplied_analysis_is_reused(scene):
    analysis = ImageAnalysis(dominant_colors=[(1.0, 0.0, 0.0)], image_size=scene.size)
    ctx = GenerationContext(accessor=scene, config=_config(), analysis=analysis)
    GenerationPipeline().run(ctx)
    assert ctx.analysis is analysis


def test_foreign_errors_are_wrapped(scene):
    pipeline = GenerationPipeline()

    def fail(ctx: GenerationContext) -> None:
        raise ValueError("boom")

    pipeline.registry.replace(StageSpec(Stage.ASSEMBLY, fail))
    with pytest.raises(StageFailedError) as info:
        pipeline.run(GenerationContext(accessor=scene, config=_config()))
    assert info.value.stage == "ASSEMBLY"
    assert isinstance(info.value.cause, ValueError)


def test_cancel_before_run(scene):
    ctx = GenerationContext(accessor=scene, config=_config())
    ctx.cancel.cancel()
    with pytest.raises(GenerationCancelledError):
        GenerationPipeline().run(ctx)
    assert ctx.completed_stages == []


def test_cancel_between_stages_discards_stage(scene):
    pipeline = GenerationPipeline()
    original = pipeline.registry.get(Stage.SAMPLING).fn

    def sample_then_cancel(ctx: GenerationContext) -> None:
        original(ctx)
        ctx.cancel.cancel()

    pipeline.registry.replace(StageSpec(Stage.SAMPLING, sample_then_cancel))
    ctx = GenerationContext(accessor=scene, config=_config())
    with pytest.raises(GenerationCancelledError):
        pipeline.run(ctx)
    assert ctx.completed_stages == [Stage.ANALYSIS]
    assert ctx.particles == []


def test_parallel_strategy_on_small_image(scene):
    pipeline = GenerationPipeline(strategy=ParallelStrategy())
    ctx = GenerationContext(
        accessor=scene,
        config=_config(
            max_concurrent_operations=4,
            sampling_strategy=SamplingStrategy.advanced(SamplingAlgorithm.HASH_BASED),
        ),
    )
    pipeline.run(ctx)
    assert ctx.workers(Stage.SAMPLING) == 1
    assert len(ctx.particles) == 200


def test_every_pixel_case_through_pipeline():
    acc = scene_image(20, 10)
    ctx = GenerationContext(accessor=acc, config=_config(target_particle_count=1000))
    GenerationPipeline().run(ctx)
    assert len(ctx.samples) == 200
    assert len({(s.x, s.y) for s in ctx.samples}) == 200


def test_factory_picks_strategy():
    assert create_pipeline(execution_strategy="parallel").strategy.name == "parallel"
    assert create_pipeline().cache is None
