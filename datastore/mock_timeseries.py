"""In-memory time series store for readings and worker activity with JSON persistence."""

from __future__ import annotations
import json
from dataclasses import asdict
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional

from models.records import ActivityEvent, Reading, ensure_utc
from settings import get_settings


class MockTimeSeriesStore:
    """In-memory stand-in for the telemetry database.

    Serves both PV readings and worker activity, optionally persisted to a
    JSON file so a development server keeps its history across restarts.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._readings: List[Reading] = []
        self._activity: Dict[str, List[ActivityEvent]] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def put_readings(self, readings: Iterable[Reading]) -> None:
        with self._lock:
            self._readings.extend(readings)
            self._persist()

    async def fetch_readings(self, start: datetime, end: datetime) -> List[Reading]:
        with self._lock:
            selected = [r for r in self._readings if start <= r.timestamp <= end]
        return sorted(selected, key=lambda reading: reading.timestamp)

    async def append_activity(self, event: ActivityEvent) -> None:
        with self._lock:
            self._activity.setdefault(event.address, []).append(event)
            self._persist()

    async def fetch_activity(
        self, address: str, start: datetime, end: datetime
    ) -> List[ActivityEvent]:
        with self._lock:
            events = list(self._activity.get(address, ()))
        selected = [e for e in events if start <= e.timestamp <= end]
        return sorted(selected, key=lambda event: event.timestamp)

    async def latest_activity(
        self, address: str, before: Optional[datetime] = None
    ) -> Optional[ActivityEvent]:
        with self._lock:
            events = list(self._activity.get(address, ()))
        if before is not None:
            events = [e for e in events if e.timestamp < before]
        if not events:
            return None
        return max(reversed(events), key=lambda event: event.timestamp)

    async def known_addresses(self) -> List[str]:
        with self._lock:
            return sorted(address for address, events in self._activity.items() if events)

    async def close(self) -> None:
        return None

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            "readings": [_dump(asdict(reading)) for reading in self._readings],
            "activity": [
                _dump(asdict(event))
                for events in self._activity.values()
                for event in events
            ],
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for payload in data.get("readings", []):
            payload["timestamp"] = _parse_timestamp(payload["timestamp"])
            self._readings.append(Reading(**payload))
        for payload in data.get("activity", []):
            payload["timestamp"] = _parse_timestamp(payload["timestamp"])
            event = ActivityEvent(**payload)
            self._activity.setdefault(event.address, []).append(event)


def _dump(payload: dict) -> dict:
    payload["timestamp"] = payload["timestamp"].isoformat()
    return payload


def _parse_timestamp(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value))


@lru_cache
def build_default_store(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> MockTimeSeriesStore:
    settings = get_settings()
    store_path = settings.mock_timeseries_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return MockTimeSeriesStore(name=name or "timeseries", persistence_path=persistence)
