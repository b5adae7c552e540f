import hypothesis.strategies as st
import pytest
from hypothesis import given, settings

from nexmark_core.errors import ConfigurationError
from nexmark_core.timeline import TimedEvent
from nexmark_core.verification import (
    MASK_64,
    Signature,
    SignatureWindow,
    WindowPolicy,
    element_hash,
    fold,
    merge_all,
    sign,
)

timed_events = st.lists(
    st.builds(
        TimedEvent,
        value=st.text(max_size=20),
        timestamp_ms=st.integers(min_value=0, max_value=2**40),
    ),
    min_size=1,
    max_size=40,
)


def test_element_hash_is_deterministic_64_bit() -> None:
    first = element_hash(1_436_918_400_000, "Bid(auction=1000, price=42)")
    assert first == element_hash(1_436_918_400_000, "Bid(auction=1000, price=42)")
    assert 0 <= first <= MASK_64


def test_element_hash_depends_on_timestamp_and_content() -> None:
    base = element_hash(10, "bid")
    assert element_hash(11, "bid") != base
    assert element_hash(10, "bids") != base


def test_element_hash_uses_string_form() -> None:
    assert element_hash(5, 42) == element_hash(5, "42")


def test_empty_signature_is_zero() -> None:
    assert Signature().value == 0
    assert fold([]).hex() == "0" * 16


def test_duplicate_pairs_cancel_out() -> None:
    signature = Signature().add(1, "x").add(1, "x")
    assert signature.value == 0
    assert signature.count == 2


@given(events=timed_events, data=st.data())
@settings(max_examples=100)
def test_signature_is_order_invariant(events: list[TimedEvent[str]], data: st.DataObject) -> None:
    shuffled = data.draw(st.permutations(events))
    assert fold(shuffled).value == fold(events).value


@given(events=timed_events, data=st.data())
@settings(max_examples=100)
def test_partial_merges_match_sequential_fold(
    events: list[TimedEvent[str]], data: st.DataObject
) -> None:
    cuts = sorted(
        data.draw(st.lists(st.integers(min_value=0, max_value=len(events)), max_size=6))
    )
    bounds = [0, *cuts, len(events)]
    partials = [fold(events[start:end]) for start, end in zip(bounds, bounds[1:])]
    shuffled = data.draw(st.permutations(partials))
    expected = fold(events)
    assert merge_all(shuffled) == expected

    sequential = Signature()
    for partial in reversed(partials):
        sequential.merge(partial)
    assert sequential == expected


def test_merge_all_leaves_partials_untouched() -> None:
    partials = [fold([TimedEvent("a", 1)]), fold([TimedEvent("b", 2)])]
    before = [p.value for p in partials]
    merge_all(partials)
    assert [p.value for p in partials] == before


@pytest.mark.parametrize("num_events", [None, 0, -3, 2.5, True])
def test_window_policy_requires_positive_count(num_events: object) -> None:
    with pytest.raises(ConfigurationError):
        WindowPolicy(num_events=num_events)  # type: ignore[arg-type]


def test_window_policy_defaults() -> None:
    policy = WindowPolicy(num_events=10)
    assert policy.allowed_lateness_sec == 24 * 60 * 60
    assert policy.discarding


def test_accumulating_panes_rejected() -> None:
    with pytest.raises(ConfigurationError):
        WindowPolicy(num_events=10, discarding=False)


def test_window_fires_once_and_discards_late_elements() -> None:
    window = SignatureWindow(WindowPolicy(num_events=3))
    assert window.offer(1, "a") is None
    assert window.offer(2, "b") is None
    fired = window.offer(3, "c")
    assert fired is not None
    assert fired.count == 3
    assert window.fired

    assert window.offer(4, "d") is None
    assert window.dropped == 1
    assert fired.value == fold([TimedEvent("a", 1), TimedEvent("b", 2), TimedEvent("c", 3)]).value


def test_fired_signature_is_frozen() -> None:
    window = SignatureWindow(WindowPolicy(num_events=1))
    fired = window.offer(1, "a")
    assert fired is not None
    with pytest.raises(ConfigurationError):
        fired.add(2, "b")
    with pytest.raises(ConfigurationError):
        fired.merge(Signature())


def test_sign_matches_fold_when_count_reached() -> None:
    events = [TimedEvent(f"bid-{i}", i * 10) for i in range(5)]
    assert sign(reversed(events), 5).value == fold(events).value


def test_sign_rejects_short_stream() -> None:
    events = [TimedEvent("bid", 1)]
    with pytest.raises(ConfigurationError):
        sign(events, 2)


def test_sign_validates_before_processing() -> None:
    def exploding():
        raise AssertionError("stream should not be consumed")
        yield  # pragma: no cover

    with pytest.raises(ConfigurationError):
        sign(exploding(), 0)


def test_sign_applies_configured_lateness() -> None:
    events = [TimedEvent("bid", 1), TimedEvent("ask", 2)]
    assert sign(events, 2, allowed_lateness_sec=0).value == fold(events).value
    with pytest.raises(ConfigurationError):
        sign(events, 2, allowed_lateness_sec=-1)
