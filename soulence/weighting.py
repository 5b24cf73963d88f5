"""
Weighting primitives shared by the engagement scorer and metric aggregator.

Sums are computed with ``math.fsum`` over a canonically ordered sequence of
terms, so the result does not depend on the order the caller supplied them
in and is bit-identical on re-computation.
"""

from __future__ import annotations

import math
from collections.abc import Iterable


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp *value* into ``[lower, upper]``."""
    return max(lower, min(upper, value))


def stable_sum(values: Iterable[float]) -> float:
    """Order-independent, correctly rounded sum."""
    return math.fsum(sorted(values))


def weighted_mean(pairs: Iterable[tuple[float, float]]) -> tuple[float, float]:
    """Weighted mean of ``(value, weight)`` pairs.

    Pairs with a non-positive weight are ignored.

    Returns:
        ``(mean, total_weight)``; ``(0.0, 0.0)`` when no pair carries
        positive weight.
    """
    kept = [(v, w) for v, w in pairs if w > 0]
    total = stable_sum(w for _, w in kept)
    if total <= 0:
        return 0.0, 0.0
    return stable_sum(v * w for v, w in kept) / total, total
