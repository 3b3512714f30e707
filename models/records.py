"""Domain models shared across services."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Generic, Optional, TypeVar

from models.errors import ConfigError, InvalidRange

T = TypeVar("T")

_ADDRESS_PATTERN = re.compile(r"^[0-9A-F]{2}([:-]?)[0-9A-F]{2}(?:\1[0-9A-F]{2}){4}$")


class Verdict(str, Enum):
    """Tri-state answer to "is there excess PV power right now?"."""

    no = "No"
    maybe = "Maybe"
    yes = "Yes"

    @property
    def rank(self) -> int:
        """Display ordering, No < Maybe < Yes."""
        return _VERDICT_RANK[self]


_VERDICT_RANK = {Verdict.no: 0, Verdict.maybe: 1, Verdict.yes: 2}


@dataclass(frozen=True, slots=True)
class Reading:
    """A single PV telemetry sample."""

    timestamp: datetime
    battery_voltage: float
    pv_voltage: float
    pv_current: float
    temperature: float


@dataclass(frozen=True, slots=True)
class ThresholdPolicy:
    """Voltage and current thresholds used to decide on excess power."""

    battery_low: float
    battery_high: float
    current_low: float
    current_high: float

    def __post_init__(self) -> None:
        if self.battery_low > self.battery_high:
            raise ConfigError(
                f"battery_low ({self.battery_low}) must not exceed battery_high ({self.battery_high})."
            )
        if self.current_low > self.current_high:
            raise ConfigError(
                f"current_low ({self.current_low}) must not exceed current_high ({self.current_high})."
            )


@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """A worker status report as stored in the time-series backend."""

    timestamp: datetime
    address: str
    status: bool


@dataclass(frozen=True, slots=True)
class Worker:
    """Registry record for a wakeable machine, keyed by its MAC address."""

    address: str
    last_wake_time: Optional[datetime] = None
    last_reported_status: Optional[bool] = None
    last_report_time: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class Interval(Generic[T]):
    """A run of constant ``value`` over ``[start, end)``."""

    start: datetime
    end: datetime
    value: T


@dataclass(frozen=True, slots=True)
class QueryRange:
    """Closed time range ``[start, end]`` for history queries."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidRange(
                f"Range start {self.start.isoformat()} is after end {self.end.isoformat()}."
            )

    @property
    def span(self) -> timedelta:
        return self.end - self.start

    def check_span(self, max_span: Optional[timedelta]) -> None:
        if max_span is not None and self.span > max_span:
            raise InvalidRange(f"'{self.span}' exceeded max query duration of {max_span}!")


def normalize_address(value: str) -> str:
    """Return ``value`` as an upper-case, colon separated MAC address."""
    candidate = value.strip().upper()
    if not _ADDRESS_PATTERN.match(candidate):
        raise ValueError(f"Malformed hardware address {value!r}.")
    digits = candidate.replace(":", "").replace("-", "")
    return ":".join(digits[i : i + 2] for i in range(0, 12, 2))


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
