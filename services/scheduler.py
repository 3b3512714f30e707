"""Periodic fetch, decide and dispatch cycle."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Set, Tuple

from models.errors import NeighborLookupError, StorageUnavailable
from models.records import Verdict, utc_now
from network.neighbors import NeighborResolver
from services.decision import PolicyHolder, decide
from services.dispatcher import DispatchResult, WakeDispatcher
from services.registry import WorkerRegistry
from storage.base import ReadingSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickOutcome:
    verdict: Verdict
    checked_at: datetime
    dispatch: DispatchResult


class PollScheduler:
    """Runs one background task that ticks every ``interval``."""

    def __init__(
        self,
        source: ReadingSource,
        policy: PolicyHolder,
        registry: WorkerRegistry,
        dispatcher: WakeDispatcher,
        interval: timedelta,
        lookback: timedelta,
        stale_after: timedelta,
        clock: Callable[[], datetime] = utc_now,
        neighbors: Optional[NeighborResolver] = None,
    ) -> None:
        self.source = source
        self.policy = policy
        self.registry = registry
        self.dispatcher = dispatcher
        self.interval = interval
        self.lookback = lookback
        self.stale_after = stale_after
        self._clock = clock
        self.neighbors = neighbors
        self._task: Optional[asyncio.Task[None]] = None
        self.last_outcome: Optional[TickOutcome] = None

    async def tick(self) -> TickOutcome:
        """Run one cycle; ``StorageUnavailable`` propagates to the caller."""
        now = self._clock()
        readings = await self.source.fetch_readings(now - self.lookback, now)
        if readings:
            verdict = decide(readings[-1], self.policy.current)
        else:
            logger.warning(
                "No PV readings in lookback window, assuming no excess power",
                extra={"range_start": now - self.lookback, "range_end": now},
            )
            verdict = Verdict.no

        candidates = self.registry.wake_candidates(now, self.stale_after)
        logger.info(
            "PV excess evaluated",
            extra={"decision": verdict.value, "candidate_count": len(candidates)},
        )
        hosts: Dict[str, Optional[str]] = {}
        if verdict is Verdict.yes and candidates and self.neighbors is not None:
            hosts, awake = await self._locate(candidates)
            candidates -= awake
        dispatch = await self.dispatcher.on_tick(verdict, candidates, now, hosts=hosts)
        outcome = TickOutcome(verdict=verdict, checked_at=now, dispatch=dispatch)
        self.last_outcome = outcome
        return outcome

    async def _locate(self, candidates: Set[str]) -> Tuple[Dict[str, Optional[str]], Set[str]]:
        """Known hosts of ``candidates`` and the ones already awake.

        A failed neighbour lookup wakes every candidate by broadcast.
        """
        try:
            hosts = await self.neighbors.hosts_for(candidates)
        except NeighborLookupError as exc:
            logger.warning("Neighbour lookup failed, waking by broadcast", extra={"reason": str(exc)})
            return {}, set()
        awake = await self.neighbors.awake(hosts)
        if awake:
            logger.info("Skipping workers that are already awake", extra={"awake": awake})
        return hosts, awake

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except StorageUnavailable as exc:
                logger.error(
                    "Skipping tick, storage unavailable",
                    extra={"reason": str(exc), "backend": exc.backend or None},
                )
            except Exception:
                logger.exception("Unexpected error during poll tick")
            await asyncio.sleep(self.interval.total_seconds())
