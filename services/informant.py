"""Wiring of the informant components into one service object."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Callable, Iterable, Optional, Union

from datastore.mock_timeseries import MockTimeSeriesStore, build_default_store
from models.errors import StorageUnavailable
from models.records import ThresholdPolicy, utc_now
from network.neighbors import LinuxNeighborGateway, NeighborResolver
from network.wake_on_lan import MagicPacketSender
from services.decision import PolicyHolder
from services.dispatcher import WakeDispatcher
from services.power_history import PowerHistoryReporter
from services.registry import WorkerRegistry
from services.scheduler import PollScheduler
from settings import Settings, get_settings
from storage.base import ActivityStore, NeighborGateway, ReadingSource, WakeSender
from storage.influx import InfluxTimeSeries, parse_influx_dsn

logger = logging.getLogger(__name__)


class InformantService:
    """Owns the registry, policy and background scheduler for one process."""

    def __init__(
        self,
        readings: ReadingSource,
        activity: ActivityStore,
        sender: WakeSender,
        policy: ThresholdPolicy,
        wake_cooldown: timedelta,
        poll_interval: timedelta,
        reading_lookback: timedelta,
        worker_stale_after: timedelta,
        max_query_span: Optional[timedelta] = None,
        polling_enabled: bool = True,
        worker_addresses: Iterable[str] = (),
        clock: Callable[[], datetime] = utc_now,
        neighbors: Optional[NeighborGateway] = None,
    ) -> None:
        self.readings = readings
        self.activity = activity
        self.polling_enabled = polling_enabled
        self.worker_addresses = tuple(worker_addresses)
        self.neighbors = NeighborResolver(neighbors) if neighbors is not None else None
        self.policy = PolicyHolder(policy)
        self.registry = WorkerRegistry(activity, clock=clock, max_span=max_query_span)
        self.power_history = PowerHistoryReporter(readings, self.policy, max_span=max_query_span)
        self.dispatcher = WakeDispatcher(self.registry, sender, cooldown=wake_cooldown)
        self.scheduler = PollScheduler(
            readings,
            self.policy,
            self.registry,
            self.dispatcher,
            interval=poll_interval,
            lookback=reading_lookback,
            stale_after=worker_stale_after,
            clock=clock,
            neighbors=self.neighbors,
        )

    async def start(self) -> None:
        """Restore known workers, register configured ones and start polling."""
        try:
            await self.registry.rehydrate()
        except StorageUnavailable as exc:
            logger.error(
                "Could not restore workers, storage unavailable",
                extra={"reason": str(exc), "backend": exc.backend or None},
            )
        for address in self.worker_addresses:
            self.registry.register(address)
        if self.polling_enabled:
            self.scheduler.start()
            logger.info(
                "Wake polling started every %ss",
                self.scheduler.interval.total_seconds(),
            )
        else:
            logger.info("Wake polling disabled")

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.readings.close()
        if self.activity is not self.readings:
            await self.activity.close()


def build_store(settings: Settings) -> Union[MockTimeSeriesStore, InfluxTimeSeries]:
    if settings.storage_backend == "influx":
        return InfluxTimeSeries(
            parse_influx_dsn(settings.influx_client),
            pv_measurement=settings.pv_measurement,
            worker_measurement=settings.worker_measurement,
        )
    return build_default_store()


@lru_cache
def build_default_service() -> InformantService:
    """Factory that wires the service from environment settings."""
    settings = get_settings()
    store = build_store(settings)
    return InformantService(
        readings=store,
        activity=store,  # both backends serve readings and activity
        sender=MagicPacketSender(settings.wake_broadcast_address, settings.wake_port),
        policy=settings.policy,
        wake_cooldown=timedelta(seconds=settings.wake_cooldown_seconds),
        poll_interval=timedelta(seconds=settings.poll_interval_seconds),
        reading_lookback=timedelta(seconds=settings.reading_lookback_seconds),
        worker_stale_after=timedelta(seconds=settings.worker_stale_seconds),
        max_query_span=timedelta(days=settings.max_query_days),
        polling_enabled=settings.polling_enabled,
        worker_addresses=settings.worker_addresses,
        neighbors=LinuxNeighborGateway() if settings.neighbor_lookup_enabled else None,
    )
