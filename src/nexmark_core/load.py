"""Synthetic per-element CPU and disk cost, used to exercise back-pressure."""

from __future__ import annotations

import hashlib
import logging
import os
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, TypeVar

from .config import DEFAULT_MAX_CHUNK_BYTES
from .errors import InvalidArgument

logger = logging.getLogger(__name__)

T = TypeVar("T")

TARGET_HASH = 0x243F6A8885A308D3
INIT_PLAINTEXT = 50_000


def _now_ms() -> int:
    return time.monotonic_ns() // 1_000_000


def _hash_long(value: int) -> int:
    digest = hashlib.blake2b(value.to_bytes(8, "big", signed=True), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=False)


@dataclass(frozen=True, slots=True)
class CpuCalibration:
    """Search parameters for one unit of busy work.

    The mask width sets how long a single search takes; the default was chosen
    so one search costs on the order of a millisecond. Tune it per host.
    """

    mask_bits: int = 10
    target: int = TARGET_HASH
    initial_plaintext: int = INIT_PLAINTEXT

    def __post_init__(self) -> None:
        if not 0 < self.mask_bits <= 64:
            raise InvalidArgument(
                f"LoadInjector: mask_bits must be within (0, 64], got {self.mask_bits}."
            )

    @property
    def mask(self) -> int:
        return (1 << self.mask_bits) - 1


def search_once(calibration: CpuCalibration) -> int:
    """Find a plaintext whose hash matches the target in the masked low bits."""

    mask = calibration.mask
    wanted = calibration.target & mask
    plaintext = calibration.initial_plaintext
    while (_hash_long(plaintext) & mask) != wanted:
        plaintext += 1
    return plaintext


def cpu_delay(element: T, delay_ms: int, calibration: CpuCalibration | None = None) -> T:
    """Keep the CPU busy for ``delay_ms`` milliseconds, then return ``element``."""

    if delay_ms < 0:
        raise InvalidArgument(f"LoadInjector: delay_ms must be >= 0, got {delay_ms}.")
    calibration = calibration or CpuCalibration()
    now = _now_ms()
    end = now + delay_ms
    while now < end:
        search_once(calibration)
        now = _now_ms()
    return element


class ByteSink(Protocol):
    def write(self, chunks: Iterable[bytes]) -> None: ...


@dataclass
class CountingSink:
    """Records chunk sizes without keeping the payload."""

    chunks: list[int] = field(default_factory=list)
    calls: int = 0

    def write(self, chunks: Iterable[bytes]) -> None:
        self.calls += 1
        self.chunks.extend(len(chunk) for chunk in chunks)

    @property
    def total_bytes(self) -> int:
        return sum(self.chunks)


class FileSink:
    """Rewrites ``path`` with each element's chunks and forces it to stable storage.

    Every call replaces the previous contents, so the file never holds more
    than one element's budget.
    """

    def __init__(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.path = path

    def write(self, chunks: Iterable[bytes]) -> None:
        with self.path.open("wb") as fp:
            for chunk in chunks:
                fp.write(chunk)
            fp.flush()
            os.fsync(fp.fileno())


def disk_busy(
    element: T,
    nbytes: int,
    sink: ByteSink,
    max_chunk: int = DEFAULT_MAX_CHUNK_BYTES,
) -> T:
    """Write ``nbytes`` to ``sink`` in bounded chunks, then return ``element``."""

    if nbytes < 0:
        raise InvalidArgument(f"LoadInjector: nbytes must be >= 0, got {nbytes}.")
    if max_chunk <= 0:
        raise InvalidArgument(f"LoadInjector: max_chunk must be > 0, got {max_chunk}.")
    if nbytes:
        sink.write(_chunks(nbytes, max_chunk))
    logger.debug("Wrote %d bytes for one element", nbytes)
    return element


def _chunks(nbytes: int, max_chunk: int) -> Iterator[bytes]:
    remain = nbytes
    while remain > 0:
        this_bytes = min(remain, max_chunk)
        remain -= this_bytes
        yield bytes((_now_ms() & 0xFF,)) * this_bytes
