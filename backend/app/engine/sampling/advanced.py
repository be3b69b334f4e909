"""Advanced algorithms: blue noise, Van der Corput, hash-based and stratified bands."""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from numpy.typing import NDArray
from scipy.spatial import cKDTree

from app.engine.config import SamplingParams
from app.engine.importance import importance_map
from app.engine.pixels import ALPHA_THRESHOLD, PixelAccessor
from app.engine.sampling.base import (
    Sample,
    SampleBuilder,
    SamplerOptions,
    all_pixels,
    fill_random,
)
from app.engine.sampling.stratified import stratified_select

logger = logging.getLogger(__name__)

BLUE_NOISE_CANDIDATES = 32
# Accepted points are buffered and merged into the KD-tree in batches
_TREE_REBUILD_EVERY = 64
_CANCEL_CHECK_EVERY = 64

HASH_SEED = 0x9E3779B9
_HASH_CHUNK = 4096


# ---------------------------------------------------------------------------
# Blue noise (Mitchell's best candidate)
# ---------------------------------------------------------------------------


def sample_blue_noise(
    accessor: PixelAccessor,
    target_count: int,
    params: SamplingParams | None = None,
    dominant_colors: Sequence[tuple[float, float, float]] = (),
    options: SamplerOptions | None = None,
) -> list[Sample]:
    """Grow a point set; each new point is the best of 32 random candidates,
    best meaning farthest from its nearest accepted neighbour."""
    options = options or SamplerOptions()
    if target_count >= accessor.pixel_count:
        return all_pixels(accessor)

    w, h = accessor.width, accessor.height
    rng = options.rng()
    builder = SampleBuilder(accessor)

    tree: cKDTree | None = None
    pending: list[tuple[int, int]] = []
    max_iterations = target_count * 8
    iteration = 0

    while len(builder) < target_count and iteration < max_iterations:
        iteration += 1
        if iteration % _CANCEL_CHECK_EVERY == 0:
            options.check()

        cx = rng.integers(0, w, BLUE_NOISE_CANDIDATES)
        cy = rng.integers(0, h, BLUE_NOISE_CANDIDATES)
        cand = np.column_stack([cx, cy]).astype(np.float64)

        best = np.full(BLUE_NOISE_CANDIDATES, np.inf)
        if tree is not None:
            dist, _ = tree.query(cand, k=1)
            best = np.minimum(best, dist)
        if pending:
            recent = np.asarray(pending, dtype=np.float64)
            d = np.linalg.norm(cand[:, None, :] - recent[None, :, :], axis=-1).min(axis=1)
            best = np.minimum(best, d)

        used = np.array([builder.contains(int(x), int(y)) for x, y in zip(cx, cy)])
        best[used] = -1.0
        pick = int(np.argmax(best))
        if best[pick] < 0:
            continue

        x, y = int(cx[pick]), int(cy[pick])
        builder.add(x, y)
        pending.append((x, y))
        if len(pending) >= _TREE_REBUILD_EVERY:
            tree = cKDTree([(s.x, s.y) for s in builder.samples])
            pending = []

    logger.debug("BlueNoise: %d samples in %d iterations", len(builder), iteration)
    return builder.samples


# ---------------------------------------------------------------------------
# Van der Corput / Halton (base 2 for x, base 3 for y)
# ---------------------------------------------------------------------------


def radical_inverse(index: int, base: int) -> float:
    result = 0.0
    f = 1.0 / base
    i = index
    while i > 0:
        result += f * (i % base)
        i //= base
        f /= base
    return result


def sample_van_der_corput(
    accessor: PixelAccessor,
    target_count: int,
    params: SamplingParams | None = None,
    dominant_colors: Sequence[tuple[float, float, float]] = (),
    options: SamplerOptions | None = None,
) -> list[Sample]:
    """Deterministic low-discrepancy points; identical inputs give identical output."""
    options = options or SamplerOptions()
    if target_count >= accessor.pixel_count:
        return all_pixels(accessor)

    w, h = accessor.width, accessor.height
    builder = SampleBuilder(accessor)
    index = 1
    limit = target_count * 4
    while len(builder) < target_count and index <= limit:
        x = min(w - 1, int(radical_inverse(index, 2) * w))
        y = min(h - 1, int(radical_inverse(index, 3) * h))
        builder.add(x, y)
        index += 1
        if index % 1024 == 0:
            options.check()
    return builder.samples


# ---------------------------------------------------------------------------
# Hash-based
# ---------------------------------------------------------------------------


def mix_hash(keys: NDArray[np.uint32], seed: int = HASH_SEED) -> NDArray[np.uint32]:
    """MurmurHash3-style integer mixing, uint32 wrap-around."""
    with np.errstate(over="ignore"):
        h = (keys.astype(np.uint32) + np.uint32(seed)).astype(np.uint32)
        h += h << np.uint32(13)
        h ^= h >> np.uint32(7)
        h += h << np.uint32(3)
        h ^= h >> np.uint32(17)
        h += h << np.uint32(5)
    return h


def hash_positions(keys: NDArray[np.uint32], width: int, height: int) -> tuple[NDArray[np.int64], NDArray[np.int64]]:
    h = mix_hash(keys)
    xs = (h % np.uint32(width)).astype(np.int64)
    ys = ((h >> np.uint32(16)) % np.uint32(height)).astype(np.int64)
    return xs, ys


def sample_hash_based(
    accessor: PixelAccessor,
    target_count: int,
    params: SamplingParams | None = None,
    dominant_colors: Sequence[tuple[float, float, float]] = (),
    options: SamplerOptions | None = None,
) -> list[Sample]:
    """Each output index hashes independently to a position.

    Workers append (index, x, y) chunks into one lock-guarded accumulator; the
    accumulator is sorted by index before de-duplication so the output does not
    depend on thread scheduling.
    """
    options = options or SamplerOptions()
    if target_count >= accessor.pixel_count:
        return all_pixels(accessor)

    w, h = accessor.width, accessor.height
    lock = threading.Lock()
    accumulated: list[tuple[int, int, int]] = []

    def work(start: int, stop: int) -> None:
        options.check()
        keys = np.arange(start, stop, dtype=np.uint32)
        xs, ys = hash_positions(keys, w, h)
        chunk = list(zip(range(start, stop), xs.tolist(), ys.tolist()))
        with lock:
            accumulated.extend(chunk)

    builder = SampleBuilder(accessor)
    start = 0
    budget = target_count * 4
    while len(builder) < target_count and start < budget:
        stop = min(budget, start + max(target_count - len(builder), _HASH_CHUNK))
        ranges = [(s, min(s + _HASH_CHUNK, stop)) for s in range(start, stop, _HASH_CHUNK)]
        accumulated.clear()
        if options.workers > 1 and len(ranges) > 1:
            with ThreadPoolExecutor(max_workers=options.workers) as pool:
                list(pool.map(lambda r: work(*r), ranges))
        else:
            for r in ranges:
                work(*r)
        for _, x, y in sorted(accumulated):
            if len(builder) >= target_count:
                break
            builder.add(x, y)
        start = stop

    if len(builder) < target_count:
        fill_random(builder, target_count, options.rng(4))
    return builder.samples


# ---------------------------------------------------------------------------
# Stratified bands (advanced uniform / adaptive)
# ---------------------------------------------------------------------------


def _stratified(
    accessor: PixelAccessor,
    target_count: int,
    weights: NDArray[np.float32],
    ys: NDArray[np.int64],
    xs: NDArray[np.int64],
    options: SamplerOptions,
) -> list[Sample]:
    rows, cols = np.nonzero(accessor.pixels[np.ix_(ys, xs)][..., 3] > ALPHA_THRESHOLD)
    cand_y = ys[rows].tolist()
    cand_x = xs[cols].tolist()
    cand_w = weights[rows, cols].tolist()
    options.check()

    idx = stratified_select(cand_y, cand_w, target_count, accessor.height)
    builder = SampleBuilder(accessor)
    for i in idx:
        builder.add(cand_x[i], cand_y[i])
    if len(builder) < target_count:
        fill_random(builder, target_count, options.rng(5))
    return builder.samples


def _candidate_grid(accessor: PixelAccessor, target_count: int) -> tuple[NDArray[np.int64], NDArray[np.int64], int]:
    # Roughly 4 candidates per requested sample
    step = max(1, int(math.sqrt(accessor.pixel_count / (target_count * 4))))
    ys = np.arange(0, accessor.height, step, dtype=np.int64)
    xs = np.arange(0, accessor.width, step, dtype=np.int64)
    return ys, xs, step


def sample_stratified_uniform(
    accessor: PixelAccessor,
    target_count: int,
    params: SamplingParams | None = None,
    dominant_colors: Sequence[tuple[float, float, float]] = (),
    options: SamplerOptions | None = None,
) -> list[Sample]:
    """Band mass = alpha x mean(r, g, b)."""
    options = options or SamplerOptions()
    if target_count >= accessor.pixel_count:
        return all_pixels(accessor)
    ys, xs, _ = _candidate_grid(accessor, target_count)
    block = accessor.pixels[np.ix_(ys, xs)]
    weights = block[..., 3] * block[..., :3].mean(axis=-1)
    return _stratified(accessor, target_count, weights, ys, xs, options)


def sample_stratified_adaptive(
    accessor: PixelAccessor,
    target_count: int,
    params: SamplingParams | None = None,
    dominant_colors: Sequence[tuple[float, float, float]] = (),
    options: SamplerOptions | None = None,
) -> list[Sample]:
    """Band mass = alpha x mean(r, g, b) x (0.5 + importance)."""
    options = options or SamplerOptions()
    if target_count >= accessor.pixel_count:
        return all_pixels(accessor)
    params = params or SamplingParams()
    ys, xs, step = _candidate_grid(accessor, target_count)
    scores, _, _ = importance_map(accessor, params, dominant_colors, stride=step, workers=options.workers)
    block = accessor.pixels[np.ix_(ys, xs)]
    weights = block[..., 3] * block[..., :3].mean(axis=-1) * (0.5 + scores)
    return _stratified(accessor, target_count, weights, ys, xs, options)
