"""Hybrid sampling: three tiers.

40% "very important" at 1.5x the threshold, 40% "moderately important" at 0.5x
(excluding positions already chosen, scanned on a finer stride), 20% uniform fill.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from app.engine.config import SamplingParams
from app.engine.pixels import LOW_ALPHA_THRESHOLD, PixelAccessor
from app.engine.sampling.base import (
    Sample,
    SampleBuilder,
    SamplerOptions,
    all_pixels,
    fill_random,
    fill_strided,
)
from app.engine.sampling.importance import find_candidates, select_important

logger = logging.getLogger(__name__)

VERY_IMPORTANT_SHARE = 0.4
MODERATE_SHARE = 0.4


def sample_hybrid(
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

    # Tier 1
    tier1 = round(target_count * VERY_IMPORTANT_SHARE)
    high = min(1.0, params.importance_threshold * 1.5)
    select_important(builder, tier1, params, dominant_colors, options, threshold=high, grid_fallback=False)
    n1 = len(builder)
    options.check()

    # Tier 2: fill up to 80% of the target
    tier2_limit = min(target_count, n1 + round(target_count * MODERATE_SHARE))
    low = params.importance_threshold * 0.5
    stride = max(1, accessor.width // 200)
    moderate = find_candidates(accessor, params, dominant_colors, low, options, stride=stride, exclude=builder)
    for c in sorted(moderate, key=lambda c: -c.score):
        if len(builder) >= tier2_limit:
            break
        builder.add(c.x, c.y)
    n2 = len(builder) - n1
    options.check()

    # Tier 3
    fill_strided(builder, target_count, min_alpha=LOW_ALPHA_THRESHOLD)
    if len(builder) < target_count:
        fill_random(builder, target_count, options.rng(3))

    logger.debug("Hybrid: tiers %d / %d / %d", n1, n2, len(builder) - n1 - n2)
    return builder.samples
