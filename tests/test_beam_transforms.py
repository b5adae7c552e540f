from pathlib import Path

import pytest

beam = pytest.importorskip("apache_beam")

from apache_beam.options.pipeline_options import PipelineOptions  # noqa: E402
from apache_beam.testing.util import assert_that, equal_to  # noqa: E402

from nexmark_core.beam_transforms import (  # noqa: E402
    UNSAFE_TRIGGER_FLAG,
    SignatureTransform,
    XorCombineFn,
    cpu_delay_transform,
    dev_null,
    disk_busy_transform,
    format_elements,
    log,
    snoop,
    stamp,
    with_event_timestamps,
)
from nexmark_core.config import AppConfig  # noqa: E402
from nexmark_core.errors import ConfigurationError  # noqa: E402
from nexmark_core.timeline import TimedEvent  # noqa: E402
from nexmark_core.verification import fold  # noqa: E402


def _events(count: int) -> list[TimedEvent[str]]:
    return [TimedEvent(f"bid-{i}", 1_436_918_400_000 + i * 10) for i in range(count)]


def _options() -> PipelineOptions:
    return PipelineOptions([UNSAFE_TRIGGER_FLAG])


def test_xor_combine_fn_merges_partials() -> None:
    fn = XorCombineFn()
    left = fn.add_input(fn.create_accumulator(), 0b1010)
    right = fn.add_input(fn.create_accumulator(), 0b0110)
    assert fn.extract_output(fn.merge_accumulators([left, right])) == 0b1100


def test_signature_transform_matches_fold() -> None:
    events = _events(20)
    expected = fold(events).value
    with beam.Pipeline(options=_options()) as pipeline:
        result = (
            pipeline
            | beam.Create(list(reversed(events)))
            | with_event_timestamps()
            | SignatureTransform(num_events=len(events))
        )
        assert_that(result, equal_to([expected]))


def test_signature_transform_requires_count() -> None:
    with pytest.raises(ConfigurationError):
        SignatureTransform(num_events=0)


def test_signature_transform_takes_configured_lateness() -> None:
    lateness = AppConfig.from_env().verification.allowed_lateness_sec
    transform = SignatureTransform(num_events=5, allowed_lateness_sec=lateness)
    assert transform.policy.allowed_lateness_sec == lateness
    minute = SignatureTransform(num_events=5, allowed_lateness_sec=60)
    assert minute.policy.allowed_lateness_sec == 60
    with pytest.raises(ConfigurationError):
        SignatureTransform(num_events=5, allowed_lateness_sec=-1)


def test_load_transforms_pass_elements_through(tmp_path: Path) -> None:
    target = tmp_path / "beam" / "disk.bin"
    with beam.Pipeline(options=_options()) as pipeline:
        result = (
            pipeline
            | beam.Create([1, 2, 3])
            | snoop("source")
            | cpu_delay_transform("query", 1)
            | disk_busy_transform("query", 64, target)
        )
        assert_that(result, equal_to([1, 2, 3]))
    assert target.stat().st_size == 64


def test_stamp_recovers_event_times() -> None:
    events = _events(5)
    with beam.Pipeline(options=_options()) as pipeline:
        result = pipeline | beam.Create(events) | with_event_timestamps() | stamp("query")
        assert_that(result, equal_to(events))


def test_output_helpers() -> None:
    with beam.Pipeline(options=_options()) as pipeline:
        source = pipeline | beam.Create([1, 2, 3])
        formatted = source | log("source") | format_elements("query")
        discarded = source | dev_null("sink")
        assert_that(formatted, equal_to(["1", "2", "3"]), label="CheckFormatted")
        assert_that(discarded, equal_to([]), label="CheckDiscarded")
