"""Artifact prevention: detect and correct degenerate sample distributions.

Checks run in order: coverage, clustering, vertical balance, corners. Every
correction is a swap: a surplus sample is dropped from an over-represented
region and a replacement is drawn from an under-represented one, so the count
never exceeds ``target_count``. De-duplication and bounds clamping run first
and the final list is padded to exactly the expected count.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Callable

import numpy as np

from app.engine.config import ValidationConfig
from app.engine.pixels import ALPHA_THRESHOLD, PixelAccessor
from app.engine.sampling.base import Sample, SampleBuilder, SamplerOptions, dedupe_and_clamp, fill_strided

logger = logging.getLogger(__name__)

Region = tuple[int, int, int, int]  # x0, y0, x1, y1 (exclusive)


class ArtifactPreventionValidator:
    def __init__(self, config: ValidationConfig | None = None) -> None:
        self.config = config or ValidationConfig()

    # --- Public ---

    def validate_and_correct(
        self,
        samples: list[Sample],
        accessor: PixelAccessor,
        target_count: int,
        top_bottom_ratio: float = 0.5,
        options: SamplerOptions | None = None,
    ) -> list[Sample]:
        options = options or SamplerOptions()
        expected = min(target_count, accessor.pixel_count)
        if expected >= accessor.pixel_count:
            # Every pixel is already present once; nothing can be redistributed
            return dedupe_and_clamp(samples, accessor.width, accessor.height)

        out = dedupe_and_clamp(samples, accessor.width, accessor.height)[:expected]
        rng = options.rng(7)

        out = self._fix_coverage(out, accessor, expected)
        options.check()
        out = self._fix_clustering(out, accessor, expected, rng)
        options.check()
        out = self._fix_vertical_balance(out, accessor, top_bottom_ratio, rng)
        out = self._fix_corners(out, accessor, expected)

        if len(out) < expected:
            builder = SampleBuilder(accessor, out)
            fill_strided(builder, expected, min_alpha=ALPHA_THRESHOLD)
            fill_strided(builder, expected)
            out = builder.samples
        return out[:expected]

    # --- Metrics ---

    def coverage(self, samples: list[Sample], width: int, height: int) -> float:
        g = self.config.coverage_grid
        cells = {self._grid_cell(s.x, s.y, width, height, g) for s in samples}
        return len(cells) / (g * g)

    def clustered_fraction(self, samples: list[Sample], width: int, height: int, target_count: int) -> float:
        if len(samples) <= self.config.cluster_min_samples:
            return 0.0
        counts = self._cell_counts(samples)
        limit = self._cluster_limit(width, height, target_count)
        clustered = sum(1 for s in samples if counts[self._cluster_cell(s)] > limit)
        return clustered / len(samples)

    @staticmethod
    def top_fraction(samples: list[Sample], height: int) -> float:
        if not samples:
            return 0.0
        half = height / 2
        return sum(1 for s in samples if s.y < half) / len(samples)

    # --- Helpers ---

    @staticmethod
    def _grid_cell(x: int, y: int, width: int, height: int, g: int) -> tuple[int, int]:
        return (min(g - 1, x * g // width), min(g - 1, y * g // height))

    def _cluster_cell(self, s: Sample) -> tuple[int, int]:
        c = self.config.cluster_cell
        return (s.x // c, s.y // c)

    def _cell_counts(self, samples: list[Sample]) -> Counter[tuple[int, int]]:
        return Counter(self._cluster_cell(s) for s in samples)

    def _cluster_limit(self, width: int, height: int, target_count: int) -> int:
        """Most samples a cell may hold before its samples count as clustered.

        A sample with ``cluster_neighbors`` or more cell-mates is clustered, unless the
        requested density is so high that a uniform spread would already put that many
        in a cell.
        """
        per_cell = target_count / (width * height) * self.config.cluster_cell ** 2
        return max(self.config.cluster_neighbors, math.ceil(2 * per_cell))

    @staticmethod
    def _visible(accessor: PixelAccessor, x: int, y: int) -> bool:
        return bool(accessor.pixels[y, x, 3] > ALPHA_THRESHOLD)

    def _find_pixel(
        self,
        accessor: PixelAccessor,
        region: Region,
        taken: SampleBuilder,
        rng: np.random.Generator | None = None,
    ) -> tuple[int, int] | None:
        """A visible unused pixel in ``region``: centre first, then random probes, then a scan."""
        x0, y0, x1, y1 = region
        if x1 <= x0 or y1 <= y0:
            return None
        cx, cy = (x0 + x1 - 1) // 2, (y0 + y1 - 1) // 2
        if not taken.contains(cx, cy) and self._visible(accessor, cx, cy):
            return (cx, cy)
        if rng is not None:
            for _ in range(16):
                x = int(rng.integers(x0, x1))
                y = int(rng.integers(y0, y1))
                if not taken.contains(x, y) and self._visible(accessor, x, y):
                    return (x, y)
        alpha = accessor.pixels[y0:y1, x0:x1, 3]
        for dy, dx in zip(*np.nonzero(alpha > ALPHA_THRESHOLD)):
            x, y = x0 + int(dx), y0 + int(dy)
            if not taken.contains(x, y):
                return (x, y)
        return None

    def _swap(
        self,
        samples: list[Sample],
        accessor: PixelAccessor,
        target: int,
        additions: list[tuple[int, int]],
        droppable: Callable[[Sample], bool] = lambda s: True,
    ) -> list[Sample]:
        """Add ``additions``; when at target, drop one sample per addition from the densest cells."""
        if not additions:
            return samples
        room = max(0, target - len(samples))
        to_drop = max(0, len(additions) - room)
        if to_drop:
            counts = self._cell_counts(samples)
            order = sorted(
                (i for i, s in enumerate(samples) if droppable(s)),
                key=lambda i: (-counts[self._cluster_cell(samples[i])], -i),
            )
            dropped = set(order[:to_drop])
            additions = additions[: room + len(dropped)]
            samples = [s for i, s in enumerate(samples) if i not in dropped]
        builder = SampleBuilder(accessor, samples)
        for x, y in additions:
            builder.add(x, y)
        return builder.samples

    # --- Corrections ---

    def _fix_coverage(self, samples: list[Sample], accessor: PixelAccessor, target: int) -> list[Sample]:
        w, h = accessor.width, accessor.height
        g = self.config.coverage_grid
        if self.coverage(samples, w, h) >= self.config.min_coverage:
            return samples

        occupied = {self._grid_cell(s.x, s.y, w, h, g) for s in samples}
        taken = SampleBuilder(accessor, samples)
        additions: list[tuple[int, int]] = []
        for gy in range(g):
            for gx in range(g):
                if (gx, gy) in occupied:
                    continue
                region = (gx * w // g, gy * h // g, (gx + 1) * w // g, (gy + 1) * h // g)
                found = self._find_pixel(accessor, region, taken)
                if found is not None:
                    taken.add(*found)
                    additions.append(found)
        if additions:
            logger.debug("Validator: coverage fix adds %d samples to empty cells", len(additions))
        return self._swap(samples, accessor, target, additions)

    def _fix_clustering(
        self,
        samples: list[Sample],
        accessor: PixelAccessor,
        target: int,
        rng: np.random.Generator,
    ) -> list[Sample]:
        w, h = accessor.width, accessor.height
        if self.clustered_fraction(samples, w, h, target) <= self.config.cluster_fraction:
            return samples

        limit = self._cluster_limit(w, h, target)
        kept: list[Sample] = []
        seen: Counter[tuple[int, int]] = Counter()
        for s in samples:
            cell = self._cluster_cell(s)
            if seen[cell] < limit:
                kept.append(s)
                seen[cell] += 1
        removed = len(samples) - len(kept)
        logger.debug("Validator: thinning %d clustered samples", removed)

        # Replacements go to cells still below the limit
        builder = SampleBuilder(accessor, kept)
        budget = removed * 20
        while len(builder) < len(samples) and budget > 0:
            budget -= 1
            x = int(rng.integers(0, w))
            y = int(rng.integers(0, h))
            cell = (x // self.config.cluster_cell, y // self.config.cluster_cell)
            if seen[cell] >= limit or not self._visible(accessor, x, y):
                continue
            if builder.add(x, y):
                seen[cell] += 1
        return builder.samples

    def _fix_vertical_balance(
        self,
        samples: list[Sample],
        accessor: PixelAccessor,
        ratio: float,
        rng: np.random.Generator,
    ) -> list[Sample]:
        n = len(samples)
        if n == 0:
            return samples
        h, w = accessor.height, accessor.width
        top = self.top_fraction(samples, h)
        drift = top - ratio
        if abs(drift) <= self.config.vertical_tolerance:
            return samples

        half = math.ceil(h / 2)
        moves = math.ceil((abs(drift) - self.config.vertical_tolerance) * n)
        region: Region = (0, half, w, h) if drift > 0 else (0, 0, w, half)
        over_top = drift > 0

        taken = SampleBuilder(accessor, samples)
        additions: list[tuple[int, int]] = []
        for _ in range(moves):
            found = self._find_pixel(accessor, region, taken, rng)
            if found is None:
                break
            taken.add(*found)
            additions.append(found)
        if not additions:
            return samples

        logger.debug("Validator: moving %d samples %s", len(additions), "down" if over_top else "up")
        return self._swap(
            samples,
            accessor,
            n,
            additions,
            droppable=lambda s: (s.y < h / 2) == over_top,
        )

    def _fix_corners(self, samples: list[Sample], accessor: PixelAccessor, target: int) -> list[Sample]:
        w, h = accessor.width, accessor.height
        mx = max(1, int(w * self.config.corner_margin))
        my = max(1, int(h * self.config.corner_margin))
        corners: list[Region] = [
            (0, 0, mx, my),
            (w - mx, 0, w, my),
            (0, h - my, mx, h),
            (w - mx, h - my, w, h),
        ]
        taken = SampleBuilder(accessor, samples)
        additions: list[tuple[int, int]] = []
        for x0, y0, x1, y1 in corners:
            if any(x0 <= s.x < x1 and y0 <= s.y < y1 for s in samples):
                continue
            found = self._find_pixel(accessor, (x0, y0, x1, y1), taken)
            if found is not None:
                taken.add(*found)
                additions.append(found)
        if not additions:
            return samples

        def outside_corners(s: Sample) -> bool:
            return not any(x0 <= s.x < x1 and y0 <= s.y < y1 for x0, y0, x1, y1 in corners)

        return self._swap(samples, accessor, target, additions, droppable=outside_corners)
