"""Debounced dispatch of wake signals to idle workers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Set

from models.errors import InformantError, UnknownWorker, WakeSignalFailure
from models.records import Verdict
from services.registry import WorkerRegistry
from storage.base import WakeSender

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Outcome of one dispatch round."""

    succeeded: Set[str] = field(default_factory=set)
    failed: Dict[str, InformantError] = field(default_factory=dict)
    skipped: Set[str] = field(default_factory=set)


class WakeDispatcher:
    """Sends wake signals on Yes verdicts, at most once per cooldown per worker."""

    def __init__(
        self,
        registry: WorkerRegistry,
        sender: WakeSender,
        cooldown: timedelta,
    ) -> None:
        self.registry = registry
        self.sender = sender
        self.cooldown = cooldown
        self._in_flight: Set[str] = set()
        self._in_flight_lock = Lock()
        self._last_woken: FrozenSet[str] = frozenset()

    async def on_tick(
        self,
        verdict: Verdict,
        candidates: Iterable[str],
        now: datetime,
        hosts: Optional[Mapping[str, Optional[str]]] = None,
    ) -> DispatchResult:
        """Wake due candidates on a Yes verdict; ``hosts`` maps addresses to known network addresses."""
        result = DispatchResult()
        if verdict is not Verdict.yes:
            self._last_woken = frozenset()
            return result

        due: list[str] = []
        for address in sorted(set(candidates)):
            worker = self.registry.get(address)
            if worker is None:
                result.failed[address] = UnknownWorker(address)
                continue
            if worker.last_wake_time is not None and now - worker.last_wake_time < self.cooldown:
                result.skipped.add(address)
                continue
            with self._in_flight_lock:
                if address in self._in_flight:
                    result.skipped.add(address)
                    continue
                self._in_flight.add(address)
            due.append(address)

        known_hosts = hosts or {}
        try:
            errors = await asyncio.gather(
                *(self._wake(address, known_hosts.get(address)) for address in due)
            )
        finally:
            with self._in_flight_lock:
                self._in_flight.difference_update(due)

        for address, error in zip(due, errors):
            if error is None:
                self.registry.mark_woken(address, now)
                result.succeeded.add(address)
            else:
                result.failed[address] = error

        self._last_woken = frozenset(result.succeeded)
        if result.succeeded or result.failed:
            logger.info(
                "Wake dispatch finished",
                extra={
                    "decision": verdict.value,
                    "succeeded": result.succeeded or None,
                    "failed": sorted(result.failed) or None,
                },
            )
        return result

    def was_woken(self, address: str) -> bool:
        """Whether ``address`` was signalled in the most recent dispatch round."""
        return address in self._last_woken

    async def _wake(self, address: str, host: Optional[str]) -> Optional[WakeSignalFailure]:
        try:
            await self.sender.send_wake_signal(address, host=host)
        except Exception as exc:
            logger.warning(
                "Wake signal failed",
                extra={"address": address, "reason": str(exc)},
            )
            return WakeSignalFailure(address, str(exc))
        return None
