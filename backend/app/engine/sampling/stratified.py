"""Stratified band selection.

Candidates are bucketed into horizontal bands. Each band receives a share of the
quota proportional to its mass; the integer remainder goes to the heaviest bands,
one each. Within a band candidates are ranked by weight and picked with an even
stride, and a second pass tops up from whatever was not picked.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

DEFAULT_BANDS = 16


def stratified_select(
    ys: Sequence[int],
    weights: Sequence[float],
    quota: int,
    height: int,
    bands: int = DEFAULT_BANDS,
) -> list[int]:
    """Return indices into the candidate sequences, at most ``quota`` of them."""
    n = len(ys)
    if quota <= 0 or n == 0:
        return []
    if quota >= n:
        return list(range(n))

    bands = max(1, min(bands, height))
    band_height = max(1, math.ceil(height / bands))
    buckets: list[list[int]] = [[] for _ in range(bands)]
    for i, y in enumerate(ys):
        buckets[min(bands - 1, max(0, y) // band_height)].append(i)

    mass = [sum(weights[i] for i in bucket) for bucket in buckets]
    total = sum(mass)
    if total <= 0:
        mass = [float(len(b)) for b in buckets]
        total = float(n)

    quotas = [min(len(buckets[b]), int(mass[b] / total * quota)) for b in range(bands)]
    remainder = quota - sum(quotas)
    by_mass = sorted(range(bands), key=lambda b: -mass[b])
    while remainder > 0:
        progressed = False
        for b in by_mass:
            if remainder == 0:
                break
            if quotas[b] < len(buckets[b]):
                quotas[b] += 1
                remainder -= 1
                progressed = True
        if not progressed:
            break

    chosen: list[int] = []
    taken: set[int] = set()
    for b, bucket in enumerate(buckets):
        q = quotas[b]
        if q <= 0:
            continue
        ranked = sorted(bucket, key=lambda i: -weights[i])
        step = max(1, len(ranked) // q)
        for k in range(0, len(ranked), step)[:q]:
            chosen.append(ranked[k])
            taken.add(ranked[k])

    if len(chosen) < quota:
        leftovers = sorted((i for i in range(n) if i not in taken), key=lambda i: -weights[i])
        chosen.extend(leftovers[: quota - len(chosen)])
    return chosen[:quota]
