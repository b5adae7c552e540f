"""Order-invariant signatures for comparing batch and streaming results.

Each element is hashed together with its event timestamp and the hashes are
XOR-ed together. XOR is commutative and associative, so the final signature
does not depend on arrival order, parallel fan-out, or how many merge stages
partial signatures pass through.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .config import ONE_DAY_SEC
from .errors import ConfigurationError
from .timeline import TimedEvent

logger = logging.getLogger(__name__)

MASK_64 = (1 << 64) - 1
PERSON = b"nexmark-verify"


def element_hash(timestamp_ms: int, element: object) -> int:
    """128-bit content hash of ``(timestamp, str(element))`` folded to its low 64 bits."""

    hasher = hashlib.blake2b(digest_size=16, person=PERSON)
    hasher.update(timestamp_ms.to_bytes(8, "big", signed=True))
    hasher.update(str(element).encode("utf-8"))
    digest = hasher.digest()
    return int.from_bytes(digest[8:], "big", signed=False)


@dataclass(slots=True)
class Signature:
    value: int = 0
    count: int = 0
    frozen: bool = field(default=False, compare=False)

    def _check_open(self) -> None:
        if self.frozen:
            raise ConfigurationError(
                "VerificationHash: signature is frozen after its window fired."
            )

    def combine(self, element_digest: int) -> Signature:
        self._check_open()
        self.value ^= element_digest & MASK_64
        self.count += 1
        return self

    def add(self, timestamp_ms: int, element: object) -> Signature:
        return self.combine(element_hash(timestamp_ms, element))

    def merge(self, other: Signature) -> Signature:
        self._check_open()
        self.value ^= other.value
        self.count += other.count
        return self

    def freeze(self) -> Signature:
        self.frozen = True
        return self

    def hex(self) -> str:
        return f"{self.value:016x}"


def fold(events: Iterable[TimedEvent[object]]) -> Signature:
    signature = Signature()
    for event in events:
        signature.add(event.timestamp_ms, event.value)
    return signature


def merge_all(partials: Sequence[Signature]) -> Signature:
    """Merge partial signatures pairwise, as a multi-stage combiner would."""

    level = [Signature(value=p.value, count=p.count) for p in partials]
    if not level:
        return Signature()
    while len(level) > 1:
        merged = []
        for i in range(0, len(level) - 1, 2):
            merged.append(level[i].merge(level[i + 1]))
        if len(level) % 2:
            merged.append(level[-1])
        level = merged
    return level[0]


@dataclass(frozen=True, slots=True)
class WindowPolicy:
    """Global window fired once when at least ``num_events`` elements have arrived."""

    num_events: int
    allowed_lateness_sec: int = ONE_DAY_SEC
    discarding: bool = True

    def __post_init__(self) -> None:
        if self.num_events is None:
            raise ConfigurationError("VerificationHash: num_events must be supplied.")
        if isinstance(self.num_events, bool) or not isinstance(self.num_events, int):
            raise ConfigurationError(
                f"VerificationHash: num_events must be an integer, got {self.num_events!r}."
            )
        if self.num_events <= 0:
            raise ConfigurationError(
                f"VerificationHash: num_events must be > 0, got {self.num_events}."
            )
        if self.allowed_lateness_sec < 0:
            raise ConfigurationError("VerificationHash: allowed_lateness_sec must be >= 0.")
        if not self.discarding:
            raise ConfigurationError(
                "VerificationHash: accumulating panes would fold elements twice."
            )


class SignatureWindow:
    """Engine-neutral rendition of :class:`WindowPolicy` over a single signature."""

    def __init__(self, policy: WindowPolicy) -> None:
        self.policy = policy
        self.signature = Signature()
        self.dropped = 0

    @property
    def fired(self) -> bool:
        return self.signature.frozen

    def offer(self, timestamp_ms: int, element: object) -> Signature | None:
        if self.fired:
            self.dropped += 1
            logger.warning(
                "Dropping element at %d after verification window fired (%d dropped)",
                timestamp_ms,
                self.dropped,
            )
            return None
        self.signature.add(timestamp_ms, element)
        if self.signature.count >= self.policy.num_events:
            logger.info(
                "Verification window fired after %d elements: %s",
                self.signature.count,
                self.signature.hex(),
            )
            return self.signature.freeze()
        return None


def sign(
    events: Iterable[TimedEvent[object]],
    num_events: int,
    allowed_lateness_sec: int = ONE_DAY_SEC,
) -> Signature:
    """Reduce a timestamped stream to its signature under the standard window policy.

    Raises :class:`ConfigurationError` if the stream ends before the trigger fires.
    """

    policy = WindowPolicy(num_events=num_events, allowed_lateness_sec=allowed_lateness_sec)
    window = SignatureWindow(policy)
    result: Signature | None = None
    for event in events:
        fired = window.offer(event.timestamp_ms, event.value)
        if fired is not None:
            result = fired
    if result is None:
        raise ConfigurationError(
            f"VerificationHash: stream ended after {window.signature.count} elements, "
            f"before the trigger at {num_events}."
        )
    return result
