from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from models.errors import ConfigError
from models.records import ThresholdPolicy, normalize_address


_BATTERY_LOW_ENV = "PV_BATTERY_LOW"
_BATTERY_HIGH_ENV = "PV_BATTERY_HIGH"
_CURRENT_LOW_ENV = "PV_CURRENT_LOW"
_CURRENT_HIGH_ENV = "PV_CURRENT_HIGH"
_WAKE_INTERVAL_ENV = "WAKE_INTERVAL_SECONDS"
_POLL_INTERVAL_ENV = "POLL_INTERVAL_SECONDS"
_DISABLE_POLLING_ENV = "DISABLE_WAKE_INTERVAL"
_LOOKBACK_ENV = "READING_LOOKBACK_SECONDS"
_STALE_ENV = "WORKER_STALE_SECONDS"
_MAX_QUERY_DAYS_ENV = "MAX_QUERY_DAYS"
_WORKER_ADDRESSES_ENV = "WORKER_ADDRESSES"
_STORAGE_BACKEND_ENV = "STORAGE_BACKEND"
_MOCK_PATH_ENV = "MOCK_TIMESERIES_PATH"
_INFLUX_CLIENT_ENV = "INFLUXDB_CLIENT"
_PV_MEASUREMENT_ENV = "PV_MEASUREMENT"
_WORKER_MEASUREMENT_ENV = "WORKER_MEASUREMENT"
_BROADCAST_ENV = "WAKE_BROADCAST_ADDRESS"
_WAKE_PORT_ENV = "WAKE_PORT"
_DISABLE_NEIGHBOR_ENV = "DISABLE_NEIGHBOR_LOOKUP"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_STORAGE_BACKENDS = ("mock", "influx")


@dataclass(frozen=True)
class Settings:
    policy: ThresholdPolicy
    wake_cooldown_seconds: float
    poll_interval_seconds: float
    polling_enabled: bool
    reading_lookback_seconds: float
    worker_stale_seconds: float
    max_query_days: int
    worker_addresses: Tuple[str, ...]
    storage_backend: str
    mock_timeseries_path: Optional[str]
    influx_client: str
    pv_measurement: str
    worker_measurement: str
    wake_broadcast_address: str
    wake_port: int
    neighbor_lookup_enabled: bool
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        return float(candidate)
    except ValueError:
        return default


def _read_positive_float_env(name: str, default: float) -> float:
    parsed = _read_float_env(name, default)
    return parsed if parsed > 0 else default


def _read_positive_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_addresses(default: Tuple[str, ...]) -> Tuple[str, ...]:
    value = os.getenv(_WORKER_ADDRESSES_ENV)
    if value is None:
        return default
    addresses = []
    for part in value.split(","):
        candidate = part.strip()
        if not candidate:
            continue
        try:
            addresses.append(normalize_address(candidate))
        except ValueError as exc:
            raise ConfigError(f"{_WORKER_ADDRESSES_ENV}: {exc}") from exc
    return tuple(dict.fromkeys(addresses))


def _read_storage_backend(default: str) -> str:
    backend = _read_str_env(_STORAGE_BACKEND_ENV, default).lower()
    if backend not in _STORAGE_BACKENDS:
        raise ConfigError(
            f"{_STORAGE_BACKEND_ENV} must be one of {', '.join(_STORAGE_BACKENDS)}, got {backend!r}."
        )
    return backend


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    """Load settings from the environment; invalid thresholds raise ``ConfigError``."""
    policy = ThresholdPolicy(
        battery_low=_read_float_env(_BATTERY_LOW_ENV, 12.0),
        battery_high=_read_float_env(_BATTERY_HIGH_ENV, 13.2),
        current_low=_read_float_env(_CURRENT_LOW_ENV, 0.5),
        current_high=_read_float_env(_CURRENT_HIGH_ENV, 2.0),
    )
    return Settings(
        policy=policy,
        wake_cooldown_seconds=_read_positive_float_env(_WAKE_INTERVAL_ENV, 600.0),
        poll_interval_seconds=_read_positive_float_env(_POLL_INTERVAL_ENV, 60.0),
        polling_enabled=os.getenv(_DISABLE_POLLING_ENV) is None,
        reading_lookback_seconds=_read_positive_float_env(_LOOKBACK_ENV, 900.0),
        worker_stale_seconds=_read_positive_float_env(_STALE_ENV, 600.0),
        max_query_days=_read_positive_int_env(_MAX_QUERY_DAYS_ENV, 20),
        worker_addresses=_read_addresses(()),
        storage_backend=_read_storage_backend("mock"),
        mock_timeseries_path=_read_optional_env(_MOCK_PATH_ENV, "./tmp/timeseries.json"),
        influx_client=_read_str_env(_INFLUX_CLIENT_ENV, "http://127.0.0.1:8086:test"),
        pv_measurement=_read_str_env(_PV_MEASUREMENT_ENV, "pvstatus"),
        worker_measurement=_read_str_env(_WORKER_MEASUREMENT_ENV, "workerstatus"),
        wake_broadcast_address=_read_str_env(_BROADCAST_ENV, "255.255.255.255"),
        wake_port=_read_positive_int_env(_WAKE_PORT_ENV, 9),
        neighbor_lookup_enabled=os.getenv(_DISABLE_NEIGHBOR_ENV) is None,
        log_level=_read_log_level("INFO"),
    )
