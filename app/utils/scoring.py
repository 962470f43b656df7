import math
from typing import Iterable, Optional, Sequence


def round_half_up(value: float) -> int:
    """0.5 는 항상 올림 (파이썬 round 의 banker's rounding 대신)"""
    return int(math.floor(value + 0.5))


def round_half_up_1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def mean(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def population_std(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    avg = sum(values) / len(values)
    return math.sqrt(sum((v - avg) ** 2 for v in values) / len(values))


def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def numbers(values: Iterable) -> list:
    return [v for v in values if is_number(v)]
