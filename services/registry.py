"""Registry of wakeable workers and their reported activity."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from models.errors import UnknownWorker
from models.records import (
    ActivityEvent,
    Interval,
    QueryRange,
    Worker,
    normalize_address,
    utc_now,
)
from services.intervals import coalesce
from storage.base import ActivityStore

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


class WorkerRegistry:
    """Single writer for worker records, readable from any task.

    Mutations serialize on a lock and publish a fresh copy of the worker map,
    so readers holding a reference always see a complete snapshot. The lock
    is never held while awaiting the activity store.
    """

    def __init__(
        self,
        store: ActivityStore,
        clock: Callable[[], datetime] = utc_now,
        max_span: Optional[timedelta] = None,
    ) -> None:
        self.store = store
        self.max_span = max_span
        self._clock = clock
        self._workers: Dict[str, Worker] = {}
        self._last_stamp: Dict[str, datetime] = {}
        self._lock = Lock()

    def register(self, address: str) -> Tuple[Worker, bool]:
        """Create the worker record if absent; returns ``(worker, created)``."""
        address = normalize_address(address)
        with self._lock:
            existing = self._workers.get(address)
            if existing is not None:
                return existing, False
            worker = Worker(address=address)
            self._workers = {**self._workers, address: worker}
        logger.info("Registered worker", extra={"address": address})
        return worker, True

    async def report(self, address: str, status: bool) -> ActivityEvent:
        """Record a status report stamped with the registry clock.

        Concurrent reports for one address may reach the store out of stamp
        order; stores return events sorted by timestamp, so reads are unaffected.
        """
        address = normalize_address(address)
        with self._lock:
            if address not in self._workers:
                raise UnknownWorker(address, f"Worker {address} must be registered before reporting.")
            timestamp = self._clock()
            previous = self._last_stamp.get(address)
            if previous is not None and timestamp <= previous:
                timestamp = previous + _TICK
            self._last_stamp[address] = timestamp

        event = ActivityEvent(timestamp=timestamp, address=address, status=status)
        await self.store.append_activity(event)

        with self._lock:
            worker = self._workers[address]
            if worker.last_report_time is None or worker.last_report_time < timestamp:
                updated = replace(worker, last_reported_status=status, last_report_time=timestamp)
                self._workers = {**self._workers, address: updated}
        logger.info("Worker reported", extra={"address": address, "status": status})
        return event

    def mark_woken(self, address: str, when: datetime) -> None:
        with self._lock:
            worker = self._workers.get(address)
            if worker is None:
                raise UnknownWorker(address)
            self._workers = {**self._workers, address: replace(worker, last_wake_time=when)}

    def get(self, address: str) -> Optional[Worker]:
        return self._workers.get(address)

    def workers(self) -> List[Worker]:
        snapshot = self._workers
        return [snapshot[address] for address in sorted(snapshot)]

    def wake_candidates(self, now: datetime, stale_after: timedelta) -> set[str]:
        """Workers that are not known to be busy right now.

        A worker counts as busy only while its last report says it is working
        and that report is younger than ``stale_after``.
        """
        candidates = set()
        for worker in self._workers.values():
            busy = (
                worker.last_reported_status is True
                and worker.last_report_time is not None
                and now - worker.last_report_time < stale_after
            )
            if not busy:
                candidates.add(worker.address)
        return candidates

    async def query_activity_intervals(
        self, address: str, query: QueryRange
    ) -> List[Interval[bool]]:
        """Working/not-working intervals for ``address`` over ``query``.

        The status in force when the range opens seeds the first interval.
        Raises ``UnknownWorker`` when the address never reported.
        """
        address = normalize_address(address)
        query.check_span(self.max_span)
        if await self.store.latest_activity(address) is None:
            raise UnknownWorker(address, f"Worker {address} has no recorded activity.")

        events = await self.store.fetch_activity(address, query.start, query.end)
        pairs = [(event.timestamp, event.status) for event in events]
        seed = await self.store.latest_activity(address, before=query.start)
        if seed is not None:
            pairs.insert(0, (query.start, seed.status))
        return list(coalesce(pairs, bound=query.end))

    async def rehydrate(self) -> int:
        """Register every address the store already knows; returns how many were added."""
        added = 0
        for address in await self.store.known_addresses():
            latest = await self.store.latest_activity(address)
            with self._lock:
                if address in self._workers:
                    continue
                worker = Worker(address=address)
                if latest is not None:
                    worker = replace(
                        worker,
                        last_reported_status=latest.status,
                        last_report_time=latest.timestamp,
                    )
                    self._last_stamp[address] = latest.timestamp
                self._workers = {**self._workers, address: worker}
            added += 1
        if added:
            logger.info("Restored workers from activity store", extra={"worker_count": added})
        return added
