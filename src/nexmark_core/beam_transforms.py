"""Apache Beam bindings for the verification signature and load injectors.

Requires the optional ``beam`` extra. The signature transform declares the
window policy on the engine: a single global window, fired once after
``num_events`` elements, discarding fired panes. Because that trigger can
finish before every element is seen, pipelines using it must be run with
``--allow_unsafe_triggers``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import apache_beam as beam
from apache_beam.metrics import Metrics
from apache_beam.transforms import trigger, window
from apache_beam.utils.timestamp import Duration, Timestamp

from .config import DEFAULT_MAX_CHUNK_BYTES, ONE_DAY_SEC
from .load import CpuCalibration, FileSink, cpu_delay, disk_busy
from .timeline import TimedEvent
from .verification import MASK_64, WindowPolicy, element_hash

logger = logging.getLogger(__name__)

UNSAFE_TRIGGER_FLAG = "--allow_unsafe_triggers"


class XorCombineFn(beam.CombineFn):
    def create_accumulator(self):
        return 0

    def add_input(self, accumulator, element):
        return accumulator ^ (element & MASK_64)

    def merge_accumulators(self, accumulators):
        result = 0
        for acc in accumulators:
            result ^= acc
        return result

    def extract_output(self, accumulator):
        return accumulator


class _HashFn(beam.DoFn):
    def process(self, element, timestamp=beam.DoFn.TimestampParam):
        yield element_hash(timestamp.micros // 1000, element)


class SignatureTransform(beam.PTransform):
    """Reduce a PCollection to one order-invariant 64-bit signature."""

    def __init__(
        self,
        num_events: int,
        allowed_lateness_sec: int = ONE_DAY_SEC,
        label: str | None = None,
    ) -> None:
        super().__init__(label)
        self.policy = WindowPolicy(
            num_events=num_events, allowed_lateness_sec=allowed_lateness_sec
        )

    def expand(self, pcoll):
        return (
            pcoll
            | "Window"
            >> beam.WindowInto(
                window.GlobalWindows(),
                trigger=trigger.AfterCount(self.policy.num_events),
                accumulation_mode=trigger.AccumulationMode.DISCARDING,
                allowed_lateness=Duration(seconds=self.policy.allowed_lateness_sec),
            )
            | "Hash" >> beam.ParDo(_HashFn())
            | "Xor" >> beam.CombineGlobally(XorCombineFn()).without_defaults()
        )


class _EventTimeFn(beam.DoFn):
    def process(self, element):
        stamp = Timestamp(micros=element.timestamp_ms * 1000)
        yield window.TimestampedValue(element.value, stamp)


def with_event_timestamps(label: str = "Stamp") -> beam.PTransform:
    """Attach each :class:`TimedEvent`'s timestamp as the element's event time."""

    return label >> beam.ParDo(_EventTimeFn())


class _SnoopFn(beam.DoFn):
    def __init__(self, name: str) -> None:
        super().__init__()
        self.name = name
        self.events = Metrics.counter(name, "events")

    def process(self, element):
        self.events.inc()
        kind = getattr(element, "kind", None)
        if kind is not None:
            Metrics.counter(self.name, str(kind)).inc()
        logger.debug("%s snooping element %s", self.name, element)
        yield element


def snoop(name: str) -> beam.PTransform:
    """Pass elements through unchanged, counting them (and their ``kind``) as they go."""

    return f"{name}.Snoop" >> beam.ParDo(_SnoopFn(name))


class _DevNullFn(beam.DoFn):
    def __init__(self, name: str) -> None:
        super().__init__()
        self.discarded = Metrics.counter(name, "discarded")

    def process(self, element):
        self.discarded.inc()
        return []


def dev_null(name: str) -> beam.PTransform:
    """Count and discard every element."""

    return f"{name}.DevNull" >> beam.ParDo(_DevNullFn(name))


class _LogFn(beam.DoFn):
    def __init__(self, name: str) -> None:
        super().__init__()
        self.name = name

    def process(self, element):
        logger.info("%s: %s", self.name, element)
        yield element


def log(name: str) -> beam.PTransform:
    return f"{name}.Log" >> beam.ParDo(_LogFn(name))


class _FormatFn(beam.DoFn):
    def __init__(self, name: str) -> None:
        super().__init__()
        self.records = Metrics.counter(name, "records")

    def process(self, element):
        self.records.inc()
        yield str(element)


def format_elements(name: str) -> beam.PTransform:
    """Render each element with ``str``, counting records as they go."""

    return f"{name}.Format" >> beam.ParDo(_FormatFn(name))


class _StampFn(beam.DoFn):
    def process(self, element, timestamp=beam.DoFn.TimestampParam):
        yield TimedEvent(value=element, timestamp_ms=timestamp.micros // 1000)


def stamp(name: str) -> beam.PTransform:
    """Pair each element with its event time as a :class:`TimedEvent`."""

    return f"{name}.Stamp" >> beam.ParDo(_StampFn())


class _CpuDelayFn(beam.DoFn):
    def __init__(self, delay_ms: int, mask_bits: int) -> None:
        super().__init__()
        self.delay_ms = delay_ms
        self.mask_bits = mask_bits

    def setup(self) -> None:
        self.calibration = CpuCalibration(mask_bits=self.mask_bits)

    def process(self, element):
        yield cpu_delay(element, self.delay_ms, self.calibration)


def cpu_delay_transform(name: str, delay_ms: int, mask_bits: int = 10) -> beam.PTransform:
    return f"{name}.CpuDelay" >> beam.ParDo(_CpuDelayFn(delay_ms, mask_bits))


class _DiskBusyFn(beam.DoFn):
    def __init__(self, nbytes: int, path: str, max_chunk: int) -> None:
        super().__init__()
        self.nbytes = nbytes
        self.path = path
        self.max_chunk = max_chunk

    def setup(self) -> None:
        self.sink = FileSink(Path(self.path))

    def process(self, element):
        yield disk_busy(element, self.nbytes, self.sink, self.max_chunk)


def disk_busy_transform(
    name: str, nbytes: int, path: Path, max_chunk: int = DEFAULT_MAX_CHUNK_BYTES
) -> beam.PTransform:
    return f"{name}.DiskBusy" >> beam.ParDo(_DiskBusyFn(nbytes, str(path), max_chunk))
