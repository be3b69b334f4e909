"""Adaptive sampling: 70% importance at an elevated threshold, 30% uniform fill."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from app.engine.config import SamplingParams
from app.engine.pixels import PixelAccessor
from app.engine.sampling.base import (
    Sample,
    SampleBuilder,
    SamplerOptions,
    all_pixels,
    fill_grid,
    fill_random,
)
from app.engine.sampling.importance import select_important

logger = logging.getLogger(__name__)

IMPORTANT_SHARE = 0.7
THRESHOLD_BOOST = 1.2


def sample_adaptive(
    accessor: PixelAccessor,
    target_count: int,
    params: SamplingParams,
    dominant_colors: Sequence[tuple[float, float, float]] = (),
    options: SamplerOptions | None = None,
) -> list[Sample]:
    options = options or SamplerOptions()
    if target_count >= accessor.pixel_count:
        return all_pixels(accessor)

    builder = SampleBuilder(accessor)
    quota = round(target_count * IMPORTANT_SHARE)
    threshold = min(1.0, params.importance_threshold * THRESHOLD_BOOST)
    select_important(builder, quota, params, dominant_colors, options, threshold=threshold)
    important = len(builder)
    options.check()

    # Grid sized so it spans the whole image for the remaining count
    needed = max(1, target_count - important)
    step = max(1, int(math.sqrt(accessor.pixel_count / needed)))
    fill_grid(builder, target_count, step, step)
    if len(builder) < target_count:
        fill_random(builder, target_count, options.rng(2), attempts_per_sample=5)

    logger.debug("Adaptive: %d important, %d uniform", important, len(builder) - important)
    return builder.samples
