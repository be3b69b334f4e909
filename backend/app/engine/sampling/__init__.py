"""Sampling strategies and the dispatcher that selects among them."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from app.engine.config import GenerationConfig, SamplingAlgorithm, SamplingParams, StrategyKind
from app.engine.errors import InsufficientSamplesError, InvalidConfigurationError
from app.engine.pixels import PixelAccessor
from app.engine.sampling.adaptive import sample_adaptive
from app.engine.sampling.advanced import (
    sample_blue_noise,
    sample_hash_based,
    sample_stratified_adaptive,
    sample_stratified_uniform,
    sample_van_der_corput,
)
from app.engine.sampling.base import (
    Sample,
    SampleBuilder,
    SamplerOptions,
    all_pixels,
    dedupe_and_clamp,
    fill_random,
    fill_strided,
)
from app.engine.sampling.hybrid import sample_hybrid
from app.engine.sampling.importance import sample_importance
from app.engine.sampling.uniform import sample_uniform

if TYPE_CHECKING:
    from app.engine.analyzer import ImageAnalysis

logger = logging.getLogger(__name__)

StrategyFn = Callable[
    [PixelAccessor, int, SamplingParams, Sequence[tuple[float, float, float]], SamplerOptions],
    list[Sample],
]

STRATEGIES: dict[StrategyKind, StrategyFn] = {
    StrategyKind.UNIFORM: sample_uniform,
    StrategyKind.IMPORTANCE: sample_importance,
    StrategyKind.ADAPTIVE: sample_adaptive,
    StrategyKind.HYBRID: sample_hybrid,
}

ALGORITHMS: dict[SamplingAlgorithm, StrategyFn] = {
    SamplingAlgorithm.UNIFORM: sample_stratified_uniform,
    SamplingAlgorithm.BLUE_NOISE: sample_blue_noise,
    SamplingAlgorithm.VAN_DER_CORPUT: sample_van_der_corput,
    SamplingAlgorithm.HASH_BASED: sample_hash_based,
    SamplingAlgorithm.ADAPTIVE: sample_stratified_adaptive,
}


def expected_sample_count(accessor: PixelAccessor, target_count: int) -> int:
    return min(target_count, accessor.pixel_count)


def pad_to_target(
    accessor: PixelAccessor,
    samples: list[Sample],
    target_count: int,
    options: SamplerOptions,
) -> list[Sample]:
    """Close any shortfall: bounded random fill first, then a deterministic sweep."""
    builder = SampleBuilder(accessor, samples)
    if len(builder) < target_count:
        fill_random(builder, target_count, options.rng(99))
    if len(builder) < target_count:
        fill_strided(builder, target_count)
    return builder.samples[:target_count]


class PixelSampler:
    """Dispatches to the configured strategy and normalises its output."""

    def resolve(self, config: GenerationConfig) -> StrategyFn:
        strategy = config.sampling_strategy
        if strategy.kind is StrategyKind.ADVANCED:
            if strategy.algorithm is None:
                raise InvalidConfigurationError("advanced strategy without an algorithm")
            return ALGORITHMS[strategy.algorithm]
        return STRATEGIES[strategy.kind]

    def sample(
        self,
        accessor: PixelAccessor,
        config: GenerationConfig,
        analysis: ImageAnalysis | None = None,
        options: SamplerOptions | None = None,
    ) -> list[Sample]:
        options = options or SamplerOptions(seed=config.seed)
        target = config.target_particle_count
        expected = expected_sample_count(accessor, target)
        if target >= accessor.pixel_count:
            logger.debug("Sampler: target %d covers all %d pixels", target, accessor.pixel_count)
            return all_pixels(accessor)

        params = config.tuned_sampling_params(analysis)
        dominant = analysis.dominant_colors if analysis is not None else []
        fn = self.resolve(config)
        raw = fn(accessor, target, params, dominant, options)
        options.check()
        if not raw:
            raise InsufficientSamplesError(0, expected)

        samples = dedupe_and_clamp(raw, accessor.width, accessor.height)[:target]
        if len(samples) < target:
            logger.debug("Sampler: padding %d -> %d", len(samples), target)
            samples = pad_to_target(accessor, samples, target, options)

        first = samples[0]
        logger.debug(
            "Sampler: %s produced %d samples, first (%d, %d) rgba=%.2f,%.2f,%.2f,%.2f",
            config.sampling_strategy.name,
            len(samples),
            first.x,
            first.y,
            *first.color,
        )
        return samples


__all__ = [
    "ALGORITHMS",
    "PixelSampler",
    "STRATEGIES",
    "Sample",
    "SamplerOptions",
    "expected_sample_count",
    "pad_to_target",
]
