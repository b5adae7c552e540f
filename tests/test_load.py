import time
from pathlib import Path

import pytest

from nexmark_core.config import DEFAULT_MAX_CHUNK_BYTES
from nexmark_core.errors import InvalidArgument
from nexmark_core.load import (
    CountingSink,
    CpuCalibration,
    FileSink,
    _hash_long,
    cpu_delay,
    disk_busy,
    search_once,
)


def _elapsed(delay_ms: int) -> float:
    start = time.perf_counter()
    result = cpu_delay("element", delay_ms)
    assert result == "element"
    return time.perf_counter() - start


def test_cpu_delay_elapsed_grows_with_budget() -> None:
    zero = _elapsed(0)
    ten = _elapsed(10)
    hundred = _elapsed(100)
    assert zero < 0.01
    assert ten >= 0.009
    assert hundred >= 0.099
    assert zero <= ten <= hundred


def test_cpu_search_finds_masked_target() -> None:
    calibration = CpuCalibration(mask_bits=8)
    plaintext = search_once(calibration)
    assert plaintext >= calibration.initial_plaintext
    assert _hash_long(plaintext) & calibration.mask == calibration.target & calibration.mask
    assert search_once(calibration) == plaintext


@pytest.mark.parametrize("bits", [0, 65])
def test_cpu_calibration_rejects_bad_mask(bits: int) -> None:
    with pytest.raises(InvalidArgument):
        CpuCalibration(mask_bits=bits)


def test_cpu_delay_rejects_negative_budget() -> None:
    with pytest.raises(InvalidArgument):
        cpu_delay("x", -1)


def test_disk_busy_small_budget_single_chunk() -> None:
    sink = CountingSink()
    assert disk_busy("bid", 100, sink) == "bid"
    assert sink.chunks == [100]


def test_disk_busy_large_budget_is_chunked_exactly() -> None:
    sink = CountingSink()
    disk_busy("bid", 50_000_000, sink)
    assert sink.total_bytes == 50_000_000
    assert max(sink.chunks) <= DEFAULT_MAX_CHUNK_BYTES
    assert sink.chunks == [DEFAULT_MAX_CHUNK_BYTES] * 2 + [50_000_000 - 2 * DEFAULT_MAX_CHUNK_BYTES]


def test_disk_busy_zero_budget_writes_nothing() -> None:
    sink = CountingSink()
    disk_busy("bid", 0, sink)
    assert sink.chunks == []


def test_disk_busy_rejects_bad_arguments() -> None:
    with pytest.raises(InvalidArgument):
        disk_busy("bid", -1, CountingSink())
    with pytest.raises(InvalidArgument):
        disk_busy("bid", 10, CountingSink(), max_chunk=0)


def test_file_sink_writes_durably(tmp_path: Path) -> None:
    target = tmp_path / "busy" / "disk.bin"
    disk_busy("bid", 1_000, FileSink(target), max_chunk=300)
    assert target.stat().st_size == 1_000


def test_file_sink_footprint_stays_bounded_across_elements(tmp_path: Path) -> None:
    target = tmp_path / "busy" / "disk.bin"
    sink = FileSink(target)
    for element in range(5):
        disk_busy(element, 1_000, sink, max_chunk=300)
        assert target.stat().st_size == 1_000


def test_counting_sink_sees_one_write_per_element() -> None:
    sink = CountingSink()
    for element in range(3):
        disk_busy(element, 100, sink, max_chunk=40)
    assert sink.calls == 3
    assert sink.chunks == [40, 40, 20] * 3


def test_sink_failures_propagate(tmp_path: Path) -> None:
    directory = tmp_path / "not-a-file"
    directory.mkdir()
    with pytest.raises(OSError):
        disk_busy("bid", 10, FileSink(directory))
