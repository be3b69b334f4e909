"""Importance sampling: rank pixels by importance score and keep the best.

Candidates above the threshold are split into top and bottom halves of the image
so that ``top_bottom_ratio`` of the important quota comes from the top half.
With anti-clustering on, each half is picked through stratified bands instead of
a plain top-N, which spreads dense clusters of equally important pixels.
The remaining ``1 - important_sampling_ratio`` of the target is uniform filler.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from app.engine.config import SamplingParams
from app.engine.importance import importance_map, scan_stride
from app.engine.pixels import LOW_ALPHA_THRESHOLD, PixelAccessor
from app.engine.sampling.base import (
    Sample,
    SampleBuilder,
    SamplerOptions,
    all_pixels,
    fill_random,
    fill_strided,
)
from app.engine.sampling.stratified import stratified_select

logger = logging.getLogger(__name__)

# Score assigned to grid fallback candidates
GRID_FALLBACK_IMPORTANCE = 0.1


@dataclass(frozen=True)
class Candidate:
    x: int
    y: int
    score: float


def find_candidates(
    accessor: PixelAccessor,
    params: SamplingParams,
    dominant_colors: Sequence[tuple[float, float, float]],
    threshold: float,
    options: SamplerOptions,
    stride: int | None = None,
    exclude: SampleBuilder | None = None,
) -> list[Candidate]:
    """Scored pixels with ``score >= threshold`` (and > 0), in scan order."""
    step = stride if stride is not None else scan_stride(accessor.width)
    scores, ys, xs = importance_map(
        accessor, params, dominant_colors, stride=step, workers=options.workers
    )
    options.check()
    rows, cols = np.nonzero((scores >= threshold) & (scores > 0.0))
    out: list[Candidate] = []
    for r, c in zip(rows.tolist(), cols.tolist()):
        x, y = int(xs[c]), int(ys[r])
        if exclude is not None and exclude.contains(x, y):
            continue
        out.append(Candidate(x, y, float(scores[r, c])))
    return out


def _grid_fallback(accessor: PixelAccessor, target: int, known: set[tuple[int, int]]) -> list[Candidate]:
    grid = max(1, math.ceil(math.sqrt(target) * 1.5))
    w, h = accessor.width, accessor.height
    out: list[Candidate] = []
    for j in range(grid):
        y = min(h - 1, int((j + 0.5) * h / grid))
        for i in range(grid):
            x = min(w - 1, int((i + 0.5) * w / grid))
            if (x, y) in known or accessor.pixels[y, x, 3] <= LOW_ALPHA_THRESHOLD:
                continue
            known.add((x, y))
            out.append(Candidate(x, y, GRID_FALLBACK_IMPORTANCE))
    return out


def _pick(candidates: list[Candidate], quota: int, anti_clustering: bool, y0: int, height: int) -> list[Candidate]:
    if quota <= 0 or not candidates:
        return []
    if anti_clustering:
        idx = stratified_select(
            [c.y - y0 for c in candidates],
            [c.score for c in candidates],
            quota,
            max(1, height),
            bands=8,
        )
        return [candidates[i] for i in idx]
    ranked = sorted(candidates, key=lambda c: -c.score)  # stable: scan order breaks ties
    return ranked[:quota]


def _nth_score(candidates: list[Candidate], n: int) -> float:
    scores = sorted((c.score for c in candidates), reverse=True)
    return scores[n] if n < len(scores) else -1.0


def balance_top_bottom(
    candidates: list[Candidate],
    quota: int,
    height: int,
    top_bottom_ratio: float,
    anti_clustering: bool = False,
) -> list[Candidate]:
    """Pick ``quota`` candidates, ``top_bottom_ratio`` of them from the top half when available."""
    if len(candidates) <= quota:
        return list(candidates)

    half = height / 2
    top = [c for c in candidates if c.y < half]
    bottom = [c for c in candidates if c.y >= half]
    exact = round(quota * top_bottom_ratio, 6)
    top_quota = int(exact)
    # A fractional share goes to the half whose next pick scores higher
    if exact > top_quota and _nth_score(top, top_quota) > _nth_score(bottom, quota - top_quota - 1):
        top_quota += 1
    bottom_quota = quota - top_quota

    chosen = _pick(top, top_quota, anti_clustering, 0, math.ceil(half))
    chosen += _pick(bottom, bottom_quota, anti_clustering, math.ceil(half), height - math.ceil(half))

    if len(chosen) < quota:
        picked = {(c.x, c.y) for c in chosen}
        leftovers = sorted((c for c in candidates if (c.x, c.y) not in picked), key=lambda c: -c.score)
        chosen += leftovers[: quota - len(chosen)]
    return chosen[:quota]


def select_important(
    builder: SampleBuilder,
    quota: int,
    params: SamplingParams,
    dominant_colors: Sequence[tuple[float, float, float]],
    options: SamplerOptions,
    threshold: float | None = None,
    grid_fallback: bool = True,
) -> int:
    """Add up to ``quota`` important samples to ``builder``. Returns how many were added."""
    acc = builder.accessor
    thr = params.importance_threshold if threshold is None else threshold
    candidates = find_candidates(acc, params, dominant_colors, thr, options, exclude=builder)

    if grid_fallback and len(candidates) < max(quota // 4, 10):
        known = {(c.x, c.y) for c in candidates}
        known |= {(s.x, s.y) for s in builder.samples}
        extra = _grid_fallback(acc, quota, known)
        logger.debug("Importance: %d candidates, adding %d grid fallbacks", len(candidates), len(extra))
        candidates += extra

    chosen = balance_top_bottom(
        candidates, quota, acc.height, params.top_bottom_ratio, params.anti_clustering
    )
    added = 0
    for c in chosen:
        if builder.add(c.x, c.y):
            added += 1
    return added


def sample_importance(
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
    quota = round(target_count * params.important_sampling_ratio)
    important = select_important(builder, quota, params, dominant_colors, options)

    # Filler: spread across the image, visible pixels first
    fill_strided(builder, target_count, min_alpha=LOW_ALPHA_THRESHOLD)
    if len(builder) < target_count:
        fill_random(builder, target_count, options.rng(1))

    logger.debug("Importance: %d important + %d filler", important, len(builder) - important)
    return builder.samples
