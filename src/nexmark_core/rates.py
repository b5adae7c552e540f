"""Rate shaping: convert target event rates into per-generator delay schedules."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from .errors import InvalidArgument

SINE_STEPS = 10
SQUARE_STEPS = 2


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _require_positive(value: int, name: str) -> None:
    if value <= 0:
        raise InvalidArgument(f"RateModel: {name} must be > 0, got {value}.")


class RateUnit(Enum):
    PER_SECOND = 1_000_000
    PER_MINUTE = 60_000_000

    @property
    def us_per_unit(self) -> int:
        return self.value

    def rate_to_period_us(self, rate: int) -> int:
        """Microseconds between events at ``rate`` events per unit."""

        _require_positive(rate, "rate")
        return (self.us_per_unit + rate // 2) // rate


class RateShape(Enum):
    SQUARE = "square"
    SINE = "sine"

    def steps(self, sine_steps: int = SINE_STEPS) -> int:
        if self is RateShape.SQUARE:
            return SQUARE_STEPS
        _require_positive(sine_steps, "sine_steps")
        return sine_steps

    def inter_event_delays_us(
        self,
        first_rate: int,
        next_rate: int,
        unit: RateUnit,
        generator_count: int,
        sine_steps: int = SINE_STEPS,
    ) -> tuple[int, ...]:
        """Successive inter-event delays each generator follows to trace this shape."""

        _require_positive(first_rate, "first_rate")
        _require_positive(next_rate, "next_rate")
        if first_rate == next_rate:
            return (delay_for_constant_rate(first_rate, unit, generator_count),)
        if self is RateShape.SQUARE:
            return (
                delay_for_constant_rate(first_rate, unit, generator_count),
                delay_for_constant_rate(next_rate, unit, generator_count),
            )
        steps = self.steps(sine_steps)
        mid = (first_rate + next_rate) / 2.0
        amp = (first_rate - next_rate) / 2.0  # may be negative
        delays = []
        for i in range(steps):
            angle = (2.0 * math.pi * i) / steps
            rate = round_half_up(mid + amp * math.cos(angle))
            delays.append(delay_for_constant_rate(rate, unit, generator_count))
        return tuple(delays)

    def step_length_sec(self, rate_period_sec: int, sine_steps: int = SINE_STEPS) -> int:
        """Seconds to dwell on each step so the whole shape cycles once per period."""

        if rate_period_sec < 0:
            raise InvalidArgument(
                f"RateModel: rate_period_sec must be >= 0, got {rate_period_sec}."
            )
        n = self.steps(sine_steps)
        return (rate_period_sec + n - 1) // n


@dataclass(frozen=True, slots=True)
class DelaySchedule:
    """Immutable sequence of inter-event delays cycled through by every generator."""

    delays_us: tuple[int, ...]
    step_length_sec: int = 0

    def __post_init__(self) -> None:
        if not self.delays_us:
            raise InvalidArgument("DelaySchedule: at least one delay is required.")

    def __len__(self) -> int:
        return len(self.delays_us)

    def __getitem__(self, index: int) -> int:
        return self.delays_us[index]

    @property
    def is_constant(self) -> bool:
        return len(self.delays_us) == 1

    @property
    def step_length_us(self) -> int:
        return self.step_length_sec * 1_000_000

    def mean_delay_us(self) -> float:
        return sum(self.delays_us) / len(self.delays_us)


def delay_for_constant_rate(rate: int, unit: RateUnit, generator_count: int) -> int:
    """Inter-event delay for one of ``generator_count`` generators sharing ``rate``."""

    _require_positive(generator_count, "generator_count")
    return unit.rate_to_period_us(rate) * generator_count


def delay_schedule(
    first_rate: int,
    next_rate: int,
    unit: RateUnit,
    generator_count: int,
    shape: RateShape,
    *,
    rate_period_sec: int = 0,
    sine_steps: int = SINE_STEPS,
) -> DelaySchedule:
    delays = shape.inter_event_delays_us(first_rate, next_rate, unit, generator_count, sine_steps)
    step_length = 0
    if len(delays) > 1:
        step_length = shape.step_length_sec(rate_period_sec, sine_steps)
    return DelaySchedule(delays_us=delays, step_length_sec=step_length)


def step_length_for_period(
    rate_period_sec: int, shape: RateShape, sine_steps: int = SINE_STEPS
) -> int:
    return shape.step_length_sec(rate_period_sec, sine_steps)
