"""Stateless statistics helpers shared by detection and projection"""

import math
from typing import Hashable, Iterable, Optional, Sequence, TypeVar

T = TypeVar("T", bound=Hashable)


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence"""
    if not values:
        return 0.0
    return sum(values) / len(values)


def pstdev(values: Sequence[float]) -> float:
    """Population standard deviation, 0.0 for an empty sequence"""
    if not values:
        return 0.0
    avg = mean(values)
    return math.sqrt(sum((v - avg) ** 2 for v in values) / len(values))


def coefficient_of_variation(values: Sequence[float]) -> Optional[float]:
    """stddev / mean, or None when the mean is zero (undefined)"""
    avg = mean(values)
    if avg == 0:
        return None
    return pstdev(values) / abs(avg)


def clamp(value: float, lower: Optional[float] = None, upper: Optional[float] = None) -> float:
    """Clamp to optional bounds; a missing bound is not enforced"""
    if lower is not None and value < lower:
        return lower
    if upper is not None and value > upper:
        return upper
    return value


def most_common(values: Iterable[T]) -> Optional[T]:
    """Most frequent value; ties go to the value seen first"""
    counts: dict = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    if not counts:
        return None

    best = None
    best_count = 0
    # dicts keep insertion order, so the first-seen value wins a tie
    for value, count in counts.items():
        if count > best_count:
            best, best_count = value, count
    return best
