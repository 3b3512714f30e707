"""Coalescing of timestamped samples into runs of constant value."""

from __future__ import annotations

from typing import Any, Generic, Iterable, Iterator, Optional, Sequence, Tuple, TypeVar

from models.records import Interval

T = TypeVar("T")

_MISSING: Any = object()


class CoalescedIntervals(Generic[T]):
    """Lazy, restartable view of ``events`` coalesced into intervals.

    Events are ``(timestamp, value)`` pairs ordered by timestamp. Each
    interval spans from the event that introduced its value up to the event
    that changed it, so adjacent intervals never carry equal values.

    The last interval ends at ``bound`` when a bound later than its start is
    supplied. A change of value exactly at ``bound`` is dropped, since the
    intervals are half-open and it covers nothing before the bound. Without a
    bound, or when the only run starts at the bound, the last interval is
    degenerate, ``start == end``: the value is known to hold from ``start``
    on but not for how long.
    """

    def __init__(
        self,
        events: Iterable[Tuple[Any, T]],
        bound: Optional[Any] = None,
    ) -> None:
        self._events: Sequence[Tuple[Any, T]] = tuple(events)
        self.bound = bound

    def __iter__(self) -> Iterator[Interval[T]]:
        closed: Optional[Interval[T]] = None
        start: Any = None
        value: Any = _MISSING

        for timestamp, incoming in self._events:
            if value is _MISSING:
                start, value = timestamp, incoming
                continue
            if incoming == value:
                continue
            if timestamp == start:
                # Same instant: the later sample wins and no empty run is kept.
                if closed is not None and closed.value == incoming:
                    start, value, closed = closed.start, closed.value, None
                else:
                    value = incoming
                continue
            if closed is not None:
                yield closed
            closed = Interval(start=start, end=timestamp, value=value)
            start, value = timestamp, incoming

        if value is _MISSING:
            return
        if closed is not None:
            yield closed
            if self.bound is not None and start >= self.bound:
                # a change at the bound covers no instant before it
                return
        end = self.bound if self.bound is not None and self.bound > start else start
        yield Interval(start=start, end=end, value=value)

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __bool__(self) -> bool:
        return bool(self._events)


def coalesce(
    events: Iterable[Tuple[Any, T]],
    bound: Optional[Any] = None,
) -> CoalescedIntervals[T]:
    """Coalesce ordered ``(timestamp, value)`` events, closing the last run at ``bound``."""
    return CoalescedIntervals(events, bound=bound)
