"""Closed ranges over scalar traffic parameters.

A range is either degenerate (``low == high``), in which case it always yields
its single value, or a true range that yields a uniformly drawn value per call.
The same class is used for payload lengths (integers, inclusive on both ends)
and for gaps (seconds as floats, linearly interpolated between the endpoints).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Generic, Optional, TypeVar

import numpy as np


T = TypeVar("T", int, float)


def interpolate_int(low: int, high: int, u: float) -> int:
    # floor(u * (n + 1)) with u in [0, 1) covers every integer in [low, high]
    return min(high, low + int(math.floor(u * (high - low + 1))))


def interpolate_seconds(low: float, high: float, u: float) -> float:
    return low + u * (high - low)


@dataclass(frozen=True)
class SampledRange(Generic[T]):
    low: T
    high: T
    interpolate: Callable[[T, T, float], T] = field(repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.high < self.low:
            raise ValueError(f"Range start {self.low} is above range end {self.high}")

    @property
    def is_range(self) -> bool:
        return self.low != self.high

    def sample(self, rng: np.random.Generator) -> T:
        if not self.is_range:
            return self.low
        return self.interpolate(self.low, self.high, float(rng.random()))

    def describe(self, formatter: Callable[[T], str] = str) -> str:
        if not self.is_range:
            return formatter(self.low)
        return f"{formatter(self.low)} to {formatter(self.high)}"


def length_range(low: int, high: Optional[int] = None) -> SampledRange[int]:
    return SampledRange(int(low), int(low if high is None else high), interpolate_int)


def gap_range(low: float, high: Optional[float] = None) -> SampledRange[float]:
    return SampledRange(float(low), float(low if high is None else high), interpolate_seconds)


def format_duration(seconds: float) -> str:
    """Render a duration with an automatically chosen unit.

    Below one millisecond the value is shown in microseconds, from one second
    upwards in seconds, otherwise in milliseconds. At most three fractional
    digits are kept and thousands are separated with commas, e.g. ``12.5µs``,
    ``250ms``, ``1.25s`` or ``3,600s``.
    """
    # Units are picked on the rounded value so 999.9996ms shows as 1s.
    micros = round(seconds * 1e6, 3)
    millis = round(seconds * 1000.0, 3)
    if micros < 1000.0:
        value, unit = micros, "µs"
    elif millis < 1000.0:
        value, unit = millis, "ms"
    else:
        value, unit = seconds, "s"

    text = f"{value:,.3f}".rstrip("0").rstrip(".")
    return f"{text}{unit}"
