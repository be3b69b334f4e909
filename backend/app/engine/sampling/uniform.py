"""Uniform sampling: deterministic strided scan with a bounded random top-up."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from app.engine.config import SamplingParams
from app.engine.pixels import PixelAccessor
from app.engine.sampling.base import Sample, SampleBuilder, SamplerOptions, all_pixels, fill_random

logger = logging.getLogger(__name__)


def sample_uniform(
    accessor: PixelAccessor,
    target_count: int,
    params: SamplingParams | None = None,
    dominant_colors: Sequence[tuple[float, float, float]] = (),
    options: SamplerOptions | None = None,
) -> list[Sample]:
    options = options or SamplerOptions()
    total = accessor.pixel_count
    if target_count >= total:
        return all_pixels(accessor)

    stride = math.ceil(total / target_count)
    builder = SampleBuilder(accessor)
    for index in range(0, total, stride):
        if len(builder) >= target_count:
            break
        builder.add_index(index)

    if len(builder) < target_count:
        fill_random(builder, target_count, options.rng())

    logger.debug("Uniform: %d samples from %d pixels (stride %d)", len(builder), total, stride)
    return builder.samples
