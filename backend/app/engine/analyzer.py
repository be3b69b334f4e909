"""Image analysis: one pass over (a subsample of) the image producing aggregate statistics.

The image is split into horizontal row chunks. Each chunk returns its own partial
sums and a quantised colour histogram; the partials are merged once at the end.
With ``workers > 1`` the chunks are evaluated on a thread pool (numpy releases the
GIL for the heavy reductions).
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from app.engine.config import SamplingStrategy
from app.engine.errors import AnalysisFailedError
from app.engine.pixels import ALPHA_THRESHOLD, PixelAccessor, hsv_saturation, luma

logger = logging.getLogger(__name__)

# Longest side analysed at full resolution
MAX_ANALYSIS_SIDE = 2048
# Histogram quantisation: channel values snap to multiples of 1/8
QUANT_LEVELS = 8
DOMINANT_COLOR_COUNT = 5
# Local luminance difference that marks a sample as an edge
EDGE_THRESHOLD = 0.15

_BINS = (QUANT_LEVELS + 1) ** 3


@dataclass
class ImageAnalysis:
    """Aggregate statistics for one image."""

    dominant_colors: list[tuple[float, float, float]] = field(default_factory=list)
    contrast: float = 0.0
    edge_density: float = 0.0
    saturation: float = 0.0
    complexity: float = 0.0
    brightness: float = 0.0
    average_color: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    color_variance: float = 0.0
    dynamic_range: float = 0.0
    pixel_density: float = 0.0
    image_size: tuple[int, int] = (0, 0)

    @property
    def complexity_level(self) -> str:
        if self.complexity < 3.0:
            return "low"
        if self.complexity < 6.0:
            return "medium"
        return "high"

    @property
    def recommended_strategy(self) -> SamplingStrategy:
        level = self.complexity_level
        if level == "high":
            return SamplingStrategy.hybrid()
        if level == "medium":
            return SamplingStrategy.importance()
        return SamplingStrategy.uniform()

    def summary(self) -> dict[str, object]:
        return {
            "dominant_colors": [list(c) for c in self.dominant_colors],
            "contrast": round(self.contrast, 4),
            "edge_density": round(self.edge_density, 4),
            "saturation": round(self.saturation, 4),
            "complexity": round(self.complexity, 3),
            "complexity_level": self.complexity_level,
            "brightness": round(self.brightness, 4),
        }


@dataclass
class _ChunkStats:
    visible: int = 0
    total: int = 0
    brightness_sum: float = 0.0
    saturation_sum: float = 0.0
    contrast_sum: float = 0.0
    edges: int = 0
    rgba_sum: NDArray[np.float64] = field(default_factory=lambda: np.zeros(4))
    rgb_sq_sum: NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    min_brightness: float = math.inf
    max_brightness: float = -math.inf
    histogram: NDArray[np.int64] = field(default_factory=lambda: np.zeros(_BINS, dtype=np.int64))

    def merge(self, other: _ChunkStats) -> None:
        self.visible += other.visible
        self.total += other.total
        self.brightness_sum += other.brightness_sum
        self.saturation_sum += other.saturation_sum
        self.contrast_sum += other.contrast_sum
        self.edges += other.edges
        self.rgba_sum += other.rgba_sum
        self.rgb_sq_sum += other.rgb_sq_sum
        self.min_brightness = min(self.min_brightness, other.min_brightness)
        self.max_brightness = max(self.max_brightness, other.max_brightness)
        self.histogram += other.histogram


def local_contrast_map(grid: NDArray[np.float32]) -> NDArray[np.float32]:
    """Mean |Δluma| to the right and lower neighbours (windowed neighbour difference)."""
    lum = luma(grid)
    total = np.zeros_like(lum)
    count = np.zeros_like(lum)
    dx = np.abs(np.diff(lum, axis=1))
    dy = np.abs(np.diff(lum, axis=0))
    total[:, :-1] += dx
    count[:, :-1] += 1
    total[:-1, :] += dy
    count[:-1, :] += 1
    return np.where(count > 0, total / np.maximum(count, 1), 0.0).astype(np.float32)


def _chunk_stats(grid: NDArray[np.float32], row0: int, row1: int) -> _ChunkStats:
    # One extra row so the vertical difference at the chunk seam is counted
    window = grid[row0 : min(row1 + 1, grid.shape[0])]
    contrast = local_contrast_map(window)[: row1 - row0]
    block = grid[row0:row1]

    stats = _ChunkStats(total=int(block.shape[0] * block.shape[1]))
    mask = block[..., 3] > ALPHA_THRESHOLD
    if not mask.any():
        return stats

    visible = block[mask]
    lum = luma(visible)
    local = contrast[mask]
    stats.visible = int(mask.sum())
    stats.brightness_sum = float(lum.sum())
    stats.saturation_sum = float(hsv_saturation(visible).sum())
    stats.contrast_sum = float(local.sum())
    stats.edges = int((local > EDGE_THRESHOLD).sum())
    stats.rgba_sum = visible.sum(axis=0, dtype=np.float64)
    stats.rgb_sq_sum = (visible[:, :3].astype(np.float64) ** 2).sum(axis=0)
    stats.min_brightness = float(lum.min())
    stats.max_brightness = float(lum.max())

    q = np.rint(visible[:, :3] * QUANT_LEVELS).astype(np.int64)
    codes = q[:, 0] * (QUANT_LEVELS + 1) ** 2 + q[:, 1] * (QUANT_LEVELS + 1) + q[:, 2]
    stats.histogram = np.bincount(codes, minlength=_BINS)
    return stats


def _decode_bin(code: int) -> tuple[float, float, float]:
    base = QUANT_LEVELS + 1
    r, rem = divmod(code, base * base)
    g, b = divmod(rem, base)
    return (r / QUANT_LEVELS, g / QUANT_LEVELS, b / QUANT_LEVELS)


class ImageAnalyzer:
    """Computes ImageAnalysis for a PixelAccessor."""

    def __init__(self, max_side: int = MAX_ANALYSIS_SIDE, chunk_rows: int = 256) -> None:
        self.max_side = max_side
        self.chunk_rows = chunk_rows

    def analyze(self, accessor: PixelAccessor, workers: int = 1) -> ImageAnalysis:
        pixels = accessor.pixels
        longest = max(accessor.width, accessor.height)
        stride = max(1, math.ceil(longest / self.max_side))
        grid = pixels[::stride, ::stride] if stride > 1 else pixels
        if stride > 1:
            logger.debug("Analyzer: downsampling %dx%d by %d", accessor.width, accessor.height, stride)

        bounds = [(r, min(r + self.chunk_rows, grid.shape[0])) for r in range(0, grid.shape[0], self.chunk_rows)]
        merged = _ChunkStats()
        if workers > 1 and len(bounds) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                for part in pool.map(lambda b: _chunk_stats(grid, *b), bounds):
                    merged.merge(part)
        else:
            for r0, r1 in bounds:
                merged.merge(_chunk_stats(grid, r0, r1))

        if merged.visible == 0:
            raise AnalysisFailedError("no pixels with alpha above threshold")

        n = merged.visible
        mean_rgba = merged.rgba_sum / n
        variance = merged.rgb_sq_sum / n - mean_rgba[:3] ** 2
        contrast = merged.contrast_sum / n
        edge_density = merged.edges / n
        saturation = merged.saturation_sum / n
        if merged.max_brightness > 0 and merged.max_brightness > merged.min_brightness:
            dynamic_range = (merged.max_brightness - merged.min_brightness) / merged.max_brightness
        else:
            dynamic_range = 0.5

        order = np.argsort(-merged.histogram, kind="stable")
        dominant = [_decode_bin(int(c)) for c in order[:DOMINANT_COLOR_COUNT] if merged.histogram[c] > 0]

        complexity = min(10.0, edge_density * 20.0 * 0.7 + contrast * 10.0 * 0.2 + saturation * 10.0 * 0.1)

        analysis = ImageAnalysis(
            dominant_colors=dominant,
            contrast=float(contrast),
            edge_density=float(edge_density),
            saturation=float(saturation),
            complexity=float(max(0.0, complexity)),
            brightness=merged.brightness_sum / n,
            average_color=tuple(float(v) for v in mean_rgba),  # type: ignore[arg-type]
            color_variance=float(np.clip(variance, 0.0, None).mean()),
            dynamic_range=float(dynamic_range),
            pixel_density=n / max(1, merged.total),
            image_size=accessor.size,
        )
        logger.debug(
            "Analysis: complexity=%.2f edges=%.3f saturation=%.3f dominant=%d",
            analysis.complexity,
            analysis.edge_density,
            analysis.saturation,
            len(dominant),
        )
        return analysis
