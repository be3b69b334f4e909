"""Shared sampling types and fill helpers.

Every strategy returns at most ``target_count`` samples with no duplicate (x, y).
Random fills are bounded by an attempt budget and may come up short; the
dispatcher closes any remaining gap with a deterministic sweep.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

from app.engine.cancellation import CancellationToken
from app.engine.pixels import RGBA, PixelAccessor


@dataclass(frozen=True)
class Sample:
    """One (x, y, colour) observation in source-image pixel space."""

    x: int
    y: int
    color: RGBA

    def to_row(self) -> list[float]:
        return [self.x, self.y, *self.color]

    @classmethod
    def from_row(cls, row: list[float]) -> Sample:
        x, y, r, g, b, a = row
        return cls(int(x), int(y), (float(r), float(g), float(b), float(a)))


@dataclass
class SamplerOptions:
    seed: int = 42
    workers: int = 1
    cancel: CancellationToken | None = None

    def check(self) -> None:
        if self.cancel is not None:
            self.cancel.raise_if_cancelled()

    def rng(self, salt: int = 0) -> np.random.Generator:
        return np.random.default_rng(self.seed + salt)


class SampleBuilder:
    """Accumulates unique samples against a PixelAccessor."""

    def __init__(self, accessor: PixelAccessor, samples: Iterable[Sample] = ()) -> None:
        self.accessor = accessor
        self.samples: list[Sample] = []
        self.used: set[int] = set()
        for s in samples:
            self.add(s.x, s.y)

    def __len__(self) -> int:
        return len(self.samples)

    def contains(self, x: int, y: int) -> bool:
        return self.accessor.index_of(x, y) in self.used

    def add(self, x: int, y: int) -> bool:
        acc = self.accessor
        if not acc.in_bounds(x, y):
            return False
        key = acc.index_of(x, y)
        if key in self.used:
            return False
        self.used.add(key)
        self.samples.append(Sample(x, y, acc.color_at(x, y)))
        return True

    def add_index(self, index: int) -> bool:
        return self.add(index % self.accessor.width, index // self.accessor.width)


def all_pixels(accessor: PixelAccessor) -> list[Sample]:
    """Every pixel exactly once, in scan order."""
    px = accessor.pixels
    return [
        Sample(x, y, tuple(float(c) for c in px[y, x]))  # type: ignore[arg-type]
        for y in range(accessor.height)
        for x in range(accessor.width)
    ]


def fill_random(
    builder: SampleBuilder,
    target: int,
    rng: np.random.Generator,
    attempts_per_sample: int = 10,
    min_alpha: float | None = None,
) -> int:
    """Add uniformly random unused positions until ``target`` or the attempt budget runs out."""
    acc = builder.accessor
    needed = target - len(builder)
    if needed <= 0:
        return 0
    budget = needed * attempts_per_sample
    added = 0
    while budget > 0 and len(builder) < target:
        batch = min(budget, max(64, (target - len(builder)) * 2))
        xs = rng.integers(0, acc.width, batch)
        ys = rng.integers(0, acc.height, batch)
        budget -= batch
        for x, y in zip(xs.tolist(), ys.tolist()):
            if min_alpha is not None and acc.pixels[y, x, 3] <= min_alpha:
                continue
            if builder.add(x, y):
                added += 1
                if len(builder) >= target:
                    break
    return added


def fill_strided(builder: SampleBuilder, target: int, min_alpha: float | None = None) -> int:
    """Deterministic fill: interleaved strided sweeps over all pixels.

    Always reaches ``target`` when ``target <= pixel_count`` and ``min_alpha`` is None.
    """
    acc = builder.accessor
    needed = target - len(builder)
    if needed <= 0:
        return 0
    total = acc.pixel_count
    stride = max(1, math.ceil(total / needed))
    added = 0
    for offset in range(stride):
        for index in range(offset, total, stride):
            x, y = index % acc.width, index // acc.width
            if min_alpha is not None and acc.pixels[y, x, 3] <= min_alpha:
                continue
            if builder.add(x, y):
                added += 1
                if len(builder) >= target:
                    return added
    return added


def fill_grid(builder: SampleBuilder, target: int, step_x: int, step_y: int) -> int:
    """Add unused positions on a regular grid until ``target``."""
    acc = builder.accessor
    added = 0
    for y in range(0, acc.height, max(1, step_y)):
        for x in range(0, acc.width, max(1, step_x)):
            if len(builder) >= target:
                return added
            if builder.add(x, y):
                added += 1
    return added


def dedupe_and_clamp(samples: Iterable[Sample], width: int, height: int) -> list[Sample]:
    """Clamp coordinates into bounds and drop repeated positions (first wins)."""
    seen: set[tuple[int, int]] = set()
    out: list[Sample] = []
    for s in samples:
        x = min(max(s.x, 0), width - 1)
        y = min(max(s.y, 0), height - 1)
        if (x, y) in seen:
            continue
        seen.add((x, y))
        out.append(s if (x, y) == (s.x, s.y) else Sample(x, y, s.color))
    return out
