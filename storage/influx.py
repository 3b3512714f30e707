"""InfluxDB 1.x backend for PV readings and worker activity."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from models.errors import ConfigError, StorageUnavailable
from models.records import ActivityEvent, Reading

logger = logging.getLogger(__name__)

_READING_FIELDS = ("battery_voltage", "pv_voltage", "pv_current", "temperature")


@dataclass(frozen=True)
class InfluxDsn:
    url: str
    database: str
    username: Optional[str] = None
    password: Optional[str] = None


def parse_influx_dsn(value: str) -> InfluxDsn:
    """Parse ``[user[:password]@]http[s]://host[:port]:dbname``.

    A missing password reuses the user name.
    """
    auth, _, connection = value.strip().rpartition("@")
    url, _, database = connection.rpartition(":")
    if not url.startswith(("http://", "https://")) or not database or url.endswith("/"):
        raise ConfigError(f"Invalid influxdb client config {value!r}!")
    username = password = None
    if auth:
        username, _, password = auth.partition(":")
        password = password or username
    return InfluxDsn(url=url, database=database, username=username, password=password)


def _time_literal(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("'%Y-%m-%dT%H:%M:%S.%fZ'")


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _from_epoch_us(value: int) -> datetime:
    return _EPOCH + timedelta(microseconds=value)


def _to_epoch_us(value: datetime) -> int:
    return (value - _EPOCH) // timedelta(microseconds=1)


class InfluxTimeSeries:
    """Reads ``pvstatus`` and reads/writes ``workerstatus`` over the HTTP API."""

    def __init__(
        self,
        dsn: InfluxDsn,
        pv_measurement: str = "pvstatus",
        worker_measurement: str = "workerstatus",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.dsn = dsn
        self.pv_measurement = pv_measurement
        self.worker_measurement = worker_measurement
        auth = (dsn.username, dsn.password or "") if dsn.username else None
        self._client = httpx.AsyncClient(
            base_url=dsn.url,
            timeout=timeout,
            auth=auth,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_readings(self, start: datetime, end: datetime) -> List[Reading]:
        rows = await self._select(
            f"SELECT {', '.join(_READING_FIELDS)} FROM {self.pv_measurement} "
            f"WHERE time >= {_time_literal(start)} AND time <= {_time_literal(end)} "
            "ORDER BY time ASC"
        )
        readings = []
        for row in rows:
            if any(row.get(name) is None for name in _READING_FIELDS):
                # incomplete points are skipped
                continue
            readings.append(
                Reading(
                    timestamp=_from_epoch_us(row["time"]),
                    battery_voltage=float(row["battery_voltage"]),
                    pv_voltage=float(row["pv_voltage"]),
                    pv_current=float(row["pv_current"]),
                    temperature=float(row["temperature"]),
                )
            )
        return readings

    async def fetch_activity(
        self, address: str, start: datetime, end: datetime
    ) -> List[ActivityEvent]:
        rows = await self._select(
            f"SELECT working FROM {self.worker_measurement} WHERE mac = '{address}' "
            f"AND time >= {_time_literal(start)} AND time <= {_time_literal(end)} "
            "ORDER BY time ASC"
        )
        return [self._to_event(address, row) for row in rows]

    async def latest_activity(
        self, address: str, before: Optional[datetime] = None
    ) -> Optional[ActivityEvent]:
        condition = f"mac = '{address}'"
        if before is not None:
            condition += f" AND time < {_time_literal(before)}"
        rows = await self._select(
            f"SELECT working FROM {self.worker_measurement} WHERE {condition} "
            "ORDER BY time DESC LIMIT 1"
        )
        if not rows:
            return None
        return self._to_event(address, rows[0])

    async def known_addresses(self) -> List[str]:
        rows = await self._select(
            f'SHOW TAG VALUES FROM {self.worker_measurement} WITH KEY = "mac"'
        )
        return sorted({row["value"] for row in rows if row.get("value")})

    async def append_activity(self, event: ActivityEvent) -> None:
        line = (
            f"{self.worker_measurement},mac={event.address} "
            f"working={'true' if event.status else 'false'} {_to_epoch_us(event.timestamp)}"
        )
        try:
            response = await self._client.post(
                "/write",
                params={"db": self.dsn.database, "precision": "u"},
                content=line.encode("utf-8"),
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageUnavailable(f"Writing activity failed: {exc}", backend="influx") from exc

    async def _select(self, query: str) -> List[Dict[str, Any]]:
        logger.debug("InfluxQL query: %s", query)
        try:
            response = await self._client.get(
                "/query",
                params={"db": self.dsn.database, "q": query, "epoch": "u"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise StorageUnavailable(f"Query failed: {exc}", backend="influx") from exc
        except ValueError as exc:
            raise StorageUnavailable(f"Malformed response: {exc}", backend="influx") from exc

        if payload.get("error"):
            raise StorageUnavailable(str(payload["error"]), backend="influx")
        results = payload.get("results") or [{}]
        statement = results[0]
        if statement.get("error"):
            raise StorageUnavailable(str(statement["error"]), backend="influx")

        rows: List[Dict[str, Any]] = []
        for series in statement.get("series") or []:
            columns = series.get("columns") or []
            for values in series.get("values") or []:
                rows.append(dict(zip(columns, values)))
        return rows

    @staticmethod
    def _to_event(address: str, row: Dict[str, Any]) -> ActivityEvent:
        return ActivityEvent(
            timestamp=_from_epoch_us(row["time"]),
            address=address,
            status=bool(row.get("working")),
        )
