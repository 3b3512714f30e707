"""Interfaces of the external collaborators the informant depends on."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

from models.records import ActivityEvent, Reading


@runtime_checkable
class ReadingSource(Protocol):
    """Read access to PV telemetry."""

    async def fetch_readings(self, start: datetime, end: datetime) -> List[Reading]:
        """Return readings in ``[start, end]`` ordered by timestamp.

        Raises ``StorageUnavailable`` when the backend cannot answer.
        """
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class ActivityStore(Protocol):
    """Append-only log of worker status reports."""

    async def fetch_activity(
        self, address: str, start: datetime, end: datetime
    ) -> List[ActivityEvent]:
        """Events for ``address`` in ``[start, end]`` sorted by timestamp, whatever the append order."""
        ...

    async def append_activity(self, event: ActivityEvent) -> None:
        ...

    async def latest_activity(
        self, address: str, before: Optional[datetime] = None
    ) -> Optional[ActivityEvent]:
        """Most recent event for ``address``, strictly before ``before`` when given."""
        ...

    async def known_addresses(self) -> List[str]:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class WakeSender(Protocol):
    """Emits the layer-2 wake signal for a single worker."""

    async def send_wake_signal(self, address: str, host: Optional[str] = None) -> None:
        """Raise on failure; returning normally means the signal went out.

        ``host`` is the last known network address of the worker, if any.
        """
        ...


@runtime_checkable
class NeighborGateway(Protocol):
    """Access to the host's view of its local network."""

    async def ping(self, host: str) -> bool:
        """Whether ``host`` answered; must not raise for unreachable hosts."""
        ...

    async def neighbors(self) -> str:
        """Raw neighbour table in ``ip neigh`` format.

        Raises ``NeighborLookupError`` when the table cannot be read.
        """
        ...
