"""Assign simulated timestamps to domain events and pace their emission."""

from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar

from .config import GeneratorSettings
from .errors import ExhaustedSource, InvalidArgument
from .rates import SINE_STEPS, DelaySchedule, RateShape, RateUnit, delay_schedule

logger = logging.getLogger(__name__)

T = TypeVar("T")

# All events are stamped relative to this instant unless wallclock event time is requested.
BASE_TIME_MS = int(dt.datetime(2015, 7, 15, tzinfo=dt.UTC).timestamp() * 1000)

SourceFactory = Callable[[int], Iterable[T]]


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


class _AnyOf:
    """Reports set as soon as any of the wrapped events is set."""

    def __init__(self, *events: CancelToken | None) -> None:
        self._events = [event for event in events if event is not None]

    def is_set(self) -> bool:
        return any(event.is_set() for event in self._events)


@dataclass(frozen=True, slots=True)
class TimedEvent(Generic[T]):
    value: T
    timestamp_ms: int


@dataclass(frozen=True, slots=True)
class GeneratorConfig:
    """Everything a generator worker needs to reproduce its timeline."""

    first_rate: int
    next_rate: int
    rate_unit: RateUnit = RateUnit.PER_SECOND
    rate_shape: RateShape = RateShape.SQUARE
    rate_period_sec: int = 0
    generator_count: int = 1
    num_events: int | None = None
    base_time_ms: int = BASE_TIME_MS
    watermark_holdback_sec: int = 0
    is_rate_limited: bool = True
    sine_steps: int = SINE_STEPS

    def __post_init__(self) -> None:
        if self.generator_count <= 0:
            raise InvalidArgument(
                f"EventTimeline: generator_count must be > 0, got {self.generator_count}."
            )
        if self.num_events is not None and self.num_events <= 0:
            raise InvalidArgument(
                f"EventTimeline: num_events must be > 0 when bounded, got {self.num_events}."
            )
        if self.watermark_holdback_sec < 0:
            raise InvalidArgument("EventTimeline: watermark_holdback_sec must be >= 0.")
        if self.first_rate != self.next_rate and self.rate_period_sec <= 0:
            raise InvalidArgument(
                "EventTimeline: rate_period_sec must be > 0 when first and next rates differ."
            )
        # Builds the schedule once so bad rates fail at configuration time.
        self.schedule()

    @classmethod
    def from_settings(cls, settings: GeneratorSettings) -> GeneratorConfig:
        base_time = BASE_TIME_MS
        if settings.use_wallclock_event_time:
            base_time = int(time.time() * 1000)
        return cls(
            first_rate=settings.first_event_rate,
            next_rate=settings.effective_next_rate,
            rate_unit=settings.rate_unit,
            rate_shape=settings.rate_shape,
            rate_period_sec=settings.rate_period_sec,
            generator_count=settings.num_event_generators,
            num_events=settings.num_events or None,
            base_time_ms=base_time,
            watermark_holdback_sec=settings.watermark_holdback_sec,
            is_rate_limited=settings.is_rate_limited,
            sine_steps=settings.sine_steps,
        )

    def schedule(self) -> DelaySchedule:
        return delay_schedule(
            self.first_rate,
            self.next_rate,
            self.rate_unit,
            self.generator_count,
            self.rate_shape,
            rate_period_sec=self.rate_period_sec,
            sine_steps=self.sine_steps,
        )


@dataclass(slots=True)
class ScheduleCursor:
    """Position of one worker within the shared, immutable delay schedule."""

    schedule: DelaySchedule
    index: int = 0
    elapsed_in_step_us: int = 0

    def current_delay_us(self) -> int:
        return self.schedule[self.index]

    def next_delay_us(self) -> int:
        delay = self.schedule[self.index]
        if self.schedule.is_constant or self.schedule.step_length_us <= 0:
            return delay
        self.elapsed_in_step_us += delay
        if self.elapsed_in_step_us >= self.schedule.step_length_us:
            self.index = (self.index + 1) % len(self.schedule)
            # Carry the overshoot so a full cycle still spans rate_period_sec.
            self.elapsed_in_step_us -= self.schedule.step_length_us
            logger.debug(
                "Advanced to schedule step %d (delay=%dus)", self.index, self.schedule[self.index]
            )
        return delay


@dataclass
class GeneratorWorker(Generic[T]):
    """One of ``generator_count`` producers, owning its own cursor and clock."""

    index: int
    config: GeneratorConfig
    sleep: Callable[[float], None] = time.sleep
    cursor: ScheduleCursor = field(init=False)
    offset_us: int = field(init=False, default=0)
    emitted: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if not 0 <= self.index < self.config.generator_count:
            raise InvalidArgument(
                f"EventTimeline: worker index {self.index} outside "
                f"[0, {self.config.generator_count})."
            )
        schedule = self.config.schedule()
        self.cursor = ScheduleCursor(schedule=schedule)
        # Stagger workers so their events interleave at the aggregate rate.
        self.offset_us = self.index * (schedule[0] // self.config.generator_count)

    def _timestamp_ms(self) -> int:
        return self.config.base_time_ms + self.offset_us // 1000

    def _next(self, value: T) -> TimedEvent[T]:
        if self.emitted:
            self.offset_us += self.cursor.next_delay_us()
        self.emitted += 1
        return TimedEvent(value=value, timestamp_ms=self._timestamp_ms())

    def watermark_ms(self) -> int:
        """Event-time progress, held back by the configured holdback."""

        return self._timestamp_ms() - self.config.watermark_holdback_sec * 1000

    def materialize(self, source: Iterable[T], count: int) -> list[TimedEvent[T]]:
        """Timestamp ``count`` events arithmetically, without any real pacing."""

        if count < 0:
            raise InvalidArgument(f"EventTimeline: count must be >= 0, got {count}.")
        events: list[TimedEvent[T]] = []
        iterator = iter(source)
        for _ in range(count):
            try:
                value = next(iterator)
            except StopIteration:
                raise ExhaustedSource(self.index, count, len(events)) from None
            events.append(self._next(value))
        return events

    def stream(
        self,
        source: Iterable[T],
        count: int | None = None,
        cancel: CancelToken | None = None,
    ) -> Iterator[TimedEvent[T]]:
        """Yield events in real time, sleeping each gap before emitting the next event."""

        iterator = iter(source)
        produced = 0
        while count is None or produced < count:
            if cancel is not None and cancel.is_set():
                logger.info("Generator %d cancelled after %d events", self.index, produced)
                return
            if self.emitted and self.config.is_rate_limited:
                self.sleep(self.cursor.current_delay_us() / 1_000_000)
                if cancel is not None and cancel.is_set():
                    logger.info("Generator %d cancelled after %d events", self.index, produced)
                    return
            try:
                value = next(iterator)
            except StopIteration:
                logger.info("Generator %d source ended after %d events", self.index, produced)
                return
            produced += 1
            yield self._next(value)


class EventTimeline(Generic[T]):
    def __init__(
        self, config: GeneratorConfig, sleep: Callable[[float], None] = time.sleep
    ) -> None:
        self.config = config
        self.schedule = config.schedule()
        self._sleep = sleep

    def workers(self) -> list[GeneratorWorker[T]]:
        return [
            GeneratorWorker(index=i, config=self.config, sleep=self._sleep)
            for i in range(self.config.generator_count)
        ]

    def split_counts(self, total: int) -> list[int]:
        if total < 0:
            raise InvalidArgument(f"EventTimeline: total must be >= 0, got {total}.")
        n = self.config.generator_count
        base, extra = divmod(total, n)
        return [base + (1 if i < extra else 0) for i in range(n)]

    def materialize(
        self, source_factory: SourceFactory[T], count: int | None = None
    ) -> list[TimedEvent[T]]:
        """Batch mode: every worker timestamps its share of ``count`` events."""

        total = count if count is not None else self.config.num_events
        if total is None:
            raise InvalidArgument("EventTimeline: batch mode requires a bounded event count.")
        events: list[TimedEvent[T]] = []
        for worker, share in zip(self.workers(), self.split_counts(total), strict=True):
            events.extend(worker.materialize(source_factory(worker.index), share))
        logger.info(
            "Materialized %d events across %d generators",
            len(events),
            self.config.generator_count,
        )
        return events

    def stream(
        self,
        source_factory: SourceFactory[T],
        emit: Callable[[TimedEvent[T]], None],
        cancel: CancelToken | None = None,
        count: int | None = None,
    ) -> int:
        """Streaming mode: run every worker on its own thread, paced in real time.

        Returns the number of events emitted. ``emit`` is called from worker
        threads and must be thread-safe. If any worker raises, the others stop
        at their next cancellation check and the error is re-raised here.
        """

        total = count if count is not None else self.config.num_events
        shares: list[int | None]
        if total is None:
            shares = [None] * self.config.generator_count
        else:
            shares = list(self.split_counts(total))
        workers = self.workers()
        failed = threading.Event()
        stop = _AnyOf(cancel, failed)

        def run(worker: GeneratorWorker[T], share: int | None) -> int:
            logger.info("Generator %d starting (share=%s)", worker.index, share)
            emitted = 0
            try:
                for event in worker.stream(source_factory(worker.index), share, stop):
                    emit(event)
                    emitted += 1
            except Exception:
                # Stop the sibling workers before the error surfaces to the caller.
                failed.set()
                logger.error("Generator %d failed after %d events", worker.index, emitted)
                raise
            return emitted

        with ThreadPoolExecutor(max_workers=len(workers)) as executor:
            futures = [executor.submit(run, w, s) for w, s in zip(workers, shares, strict=True)]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            for future in done:
                error = future.exception()
                if error is not None:
                    raise error
            return sum(future.result() for future in futures)
