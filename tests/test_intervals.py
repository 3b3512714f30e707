"""Unit tests for interval coalescing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from models.records import Interval
from services.intervals import coalesce

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


def test_empty_input_yields_nothing() -> None:
    assert list(coalesce([])) == []
    assert list(coalesce([], bound=10)) == []


def test_single_event_without_bound_is_degenerate() -> None:
    assert list(coalesce([(5, "a")])) == [Interval(start=5, end=5, value="a")]


def test_single_event_with_bound() -> None:
    assert list(coalesce([(5, "a")], bound=9)) == [Interval(start=5, end=9, value="a")]


def test_activity_scenario() -> None:
    events = [(_at(0), False), (_at(10), False), (_at(20), True)]

    intervals = list(coalesce(events, bound=_at(30)))

    assert intervals == [
        Interval(start=_at(0), end=_at(20), value=False),
        Interval(start=_at(20), end=_at(30), value=True),
    ]


def test_unbounded_last_interval_ends_at_last_event() -> None:
    intervals = list(coalesce([(0, "x"), (3, "y"), (7, "y")]))

    assert intervals == [Interval(0, 3, "x"), Interval(3, 3, "y")]


def test_change_exactly_at_bound_is_dropped() -> None:
    intervals = list(coalesce([(0, "a"), (4, "b"), (10, "c")], bound=10))

    assert intervals == [Interval(0, 4, "a"), Interval(4, 10, "b")]
    assert all(interval.start < interval.end for interval in intervals)


def test_only_event_at_bound_stays_degenerate() -> None:
    assert list(coalesce([(10, "a")], bound=10)) == [Interval(10, 10, "a")]


def test_result_is_restartable() -> None:
    result = coalesce(iter([(0, 1), (1, 2), (2, 2)]), bound=5)

    assert list(result) == list(result)
    assert len(result) == 2


def test_same_timestamp_later_sample_wins() -> None:
    intervals = list(coalesce([(0, "a"), (0, "b"), (4, "c")], bound=6))

    assert intervals == [Interval(0, 4, "b"), Interval(4, 6, "c")]


def test_same_timestamp_revert_merges_with_previous_run() -> None:
    intervals = list(coalesce([(0, "a"), (5, "b"), (5, "a"), (8, "a")], bound=10))

    assert intervals == [Interval(0, 10, "a")]


def test_no_adjacent_equal_values_and_full_coverage() -> None:
    values = [1, 1, 2, 2, 2, 3, 1, 1, 3, 3, 2]
    events = [(index * 2, value) for index, value in enumerate(values)]
    bound = 30

    intervals = list(coalesce(events, bound=bound))

    for left, right in zip(intervals, intervals[1:]):
        assert left.value != right.value
        assert left.end == right.start
        assert left.start < left.end
    assert intervals[0].start == events[0][0]
    assert intervals[-1].end == bound


def test_value_at_each_instant_matches_last_observation() -> None:
    events = [(0, "a"), (2, "a"), (3, "b"), (7, "a"), (9, "c")]
    intervals = list(coalesce(events, bound=12))

    for instant in range(0, 12):
        observed = [value for timestamp, value in events if timestamp <= instant][-1]
        covering = [i for i in intervals if i.start <= instant < i.end]
        assert len(covering) == 1
        assert covering[0].value == observed


def test_recoalescing_output_is_idempotent() -> None:
    events = [(0, "a"), (1, "b"), (1, "c"), (4, "c"), (6, "a"), (9, "b")]
    first = list(coalesce(events, bound=12))

    second = list(coalesce([(i.start, i.value) for i in first], bound=12))

    assert second == first


def test_recoalescing_unbounded_output_is_idempotent() -> None:
    first = list(coalesce([(0, True), (2, False), (5, True)]))

    second = list(coalesce([(i.start, i.value) for i in first]))

    assert second == first
