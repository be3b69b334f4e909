"""Per-pixel importance scoring shared by the content-aware strategies.

score = clamp01(3 · (cw·contrast + sw·saturation + 0.3·uniqueness − 2·background_penalty))

contrast     mean Euclidean RGB distance to the 8 ring neighbours at ``edge_radius``
saturation   L2 distance of the RGB vector from its own channel mean
uniqueness   distance to the nearest dominant colour, capped at 1 (1 when none are known)
penalty      (brightness − 0.8) / 0.2 · (1 − saturation) for bright, unsaturated pixels

Transparent pixels and near-white background pixels score exactly 0.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from numpy.typing import NDArray

from app.engine.config import SamplingParams
from app.engine.pixels import ALPHA_THRESHOLD, PixelAccessor, hsv_saturation, luma

SCORE_SCALE = 3.0
UNIQUENESS_WEIGHT = 0.3
PENALTY_WEIGHT = 2.0
# Scores at or below this are indistinguishable from noise
NOISE_THRESHOLD = 0.05

_RING = ((-1, -1), (0, -1), (1, -1), (-1, 0), (1, 0), (-1, 1), (0, 1), (1, 1))


def scan_stride(width: int) -> int:
    """Row/column step used when scanning for candidates on wide images."""
    return max(1, min(width // 512, width // 16))


def _score_block(
    px: NDArray[np.float32],
    ys: NDArray[np.int64],
    xs: NDArray[np.int64],
    params: SamplingParams,
    dominant: NDArray[np.float32],
) -> NDArray[np.float32]:
    h, w = px.shape[:2]
    center = px[np.ix_(ys, xs)]
    rgb = center[..., :3]

    radius = max(1, params.edge_radius)
    dist_sum = np.zeros(rgb.shape[:2], dtype=np.float32)
    count = np.zeros(rgb.shape[:2], dtype=np.float32)
    for dx, dy in _RING:
        ny = ys + dy * radius
        nx = xs + dx * radius
        valid = ((ny >= 0) & (ny < h))[:, None] & ((nx >= 0) & (nx < w))[None, :]
        neigh = px[np.ix_(np.clip(ny, 0, h - 1), np.clip(nx, 0, w - 1))][..., :3]
        dist_sum += np.linalg.norm(rgb - neigh, axis=-1) * valid
        count += valid
    contrast = np.where(count > 0, dist_sum / np.maximum(count, 1), 0.0)

    mean = rgb.mean(axis=-1, keepdims=True)
    saturation = np.linalg.norm(rgb - mean, axis=-1)

    if len(dominant):
        d = np.linalg.norm(rgb[..., None, :] - dominant[None, None, :, :], axis=-1)
        uniqueness = np.minimum(d.min(axis=-1), 1.0)
    else:
        uniqueness = np.ones(rgb.shape[:2], dtype=np.float32)

    brightness = mean[..., 0]
    penalty = np.where(
        (brightness > 0.8) & (saturation < 0.2),
        (brightness - 0.8) / 0.2 * (1.0 - saturation),
        0.0,
    )

    raw = (
        params.contrast_weight * contrast
        + params.saturation_weight * saturation
        + UNIQUENESS_WEIGHT * uniqueness
        - PENALTY_WEIGHT * penalty
    )
    score = np.clip(raw * SCORE_SCALE, 0.0, 1.0).astype(np.float32)

    transparent = center[..., 3] <= ALPHA_THRESHOLD
    white = (luma(center) > 0.95) & (hsv_saturation(center) < 0.05)
    score[transparent | white] = 0.0
    return score


def importance_map(
    accessor: PixelAccessor,
    params: SamplingParams,
    dominant_colors: Sequence[tuple[float, float, float]] = (),
    stride: int = 1,
    workers: int = 1,
    chunk_rows: int = 128,
) -> tuple[NDArray[np.float32], NDArray[np.int64], NDArray[np.int64]]:
    """Score every ``stride``-th pixel. Returns (scores[len(ys), len(xs)], ys, xs)."""
    px = accessor.pixels
    ys = np.arange(0, accessor.height, max(1, stride), dtype=np.int64)
    xs = np.arange(0, accessor.width, max(1, stride), dtype=np.int64)
    dominant = np.asarray(list(dominant_colors), dtype=np.float32).reshape(-1, 3)

    chunks = [ys[i : i + chunk_rows] for i in range(0, len(ys), chunk_rows)]
    if workers > 1 and len(chunks) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            parts = list(pool.map(lambda rows: _score_block(px, rows, xs, params, dominant), chunks))
    else:
        parts = [_score_block(px, rows, xs, params, dominant) for rows in chunks]
    return np.vstack(parts), ys, xs


def importance_at(
    accessor: PixelAccessor,
    x: int,
    y: int,
    params: SamplingParams,
    dominant_colors: Sequence[tuple[float, float, float]] = (),
) -> float:
    if not accessor.in_bounds(x, y):
        return 0.0
    dominant = np.asarray(list(dominant_colors), dtype=np.float32).reshape(-1, 3)
    score = _score_block(
        accessor.pixels,
        np.array([y], dtype=np.int64),
        np.array([x], dtype=np.int64),
        params,
        dominant,
    )
    return float(score[0, 0])
