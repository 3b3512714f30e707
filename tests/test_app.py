import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional

import pytest
from fastapi.testclient import TestClient

from app.api import requester_host
from app.main import create_app
from datastore.mock_timeseries import MockTimeSeriesStore, build_default_store
from models.errors import NeighborLookupError, StorageUnavailable
from models.records import Reading, ThresholdPolicy, utc_now
from network.neighbors import NeighborResolver
from services.informant import InformantService, build_default_service
from settings import get_settings

ADDRESS = "AA:BB:CC:DD:EE:FF"
T0 = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)
POLICY = ThresholdPolicy(battery_low=12.0, battery_high=13.2, current_low=0.5, current_high=2.0)


class RecordingSender:
    def __init__(self) -> None:
        self.sent: List[str] = []
        self.hosts: Dict[str, Optional[str]] = {}

    async def send_wake_signal(self, address: str, host: Optional[str] = None) -> None:
        self.hosts[address] = host
        self.sent.append(address)


def _reading(timestamp: datetime, battery_voltage: float, pv_current: float) -> Reading:
    return Reading(
        timestamp=timestamp,
        battery_voltage=battery_voltage,
        pv_voltage=18.0,
        pv_current=pv_current,
        temperature=22.0,
    )


def _build_service(store: MockTimeSeriesStore) -> InformantService:
    return InformantService(
        readings=store,
        activity=store,
        sender=RecordingSender(),
        policy=POLICY,
        wake_cooldown=timedelta(minutes=10),
        poll_interval=timedelta(seconds=60),
        reading_lookback=timedelta(minutes=15),
        worker_stale_after=timedelta(minutes=10),
        max_query_span=timedelta(days=20),
        polling_enabled=False,
    )


@pytest.fixture
def service(tmp_path) -> InformantService:
    return _build_service(MockTimeSeriesStore("test", persistence_path=tmp_path / "ts.json"))


@pytest.fixture
def api_client(service: InformantService, monkeypatch) -> Iterator[TestClient]:
    def build_test_service() -> InformantService:
        return service

    build_test_service.cache_clear = lambda: None  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_service", build_test_service)
    monkeypatch.setattr("app.api.build_default_service", build_test_service)

    app = create_app()
    with TestClient(app) as client:
        yield client


def _range(start: datetime, end: datetime) -> dict:
    return {"from": start.isoformat(), "to": end.isoformat()}


def test_lifespan_starts_and_clears_default_service(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("MOCK_TIMESERIES_PATH", str(tmp_path / "ts.json"))
    monkeypatch.setenv("DISABLE_WAKE_INTERVAL", "1")
    monkeypatch.setenv("WORKER_ADDRESSES", "aa:bb:cc:dd:ee:ff")
    for cache in (get_settings, build_default_store, build_default_service):
        cache.cache_clear()

    try:
        app = create_app()
        with TestClient(app) as client:
            service_during = build_default_service()
            assert [w.address for w in service_during.registry.workers()] == [ADDRESS]
            assert client.get("/health").json() == {"status": "ok", "polling": "stopped"}

        assert build_default_service() is not service_during
    finally:
        for cache in (get_settings, build_default_store, build_default_service):
            cache.cache_clear()


def test_pv_intervals(api_client: TestClient, service: InformantService) -> None:
    service.readings.put_readings(
        [
            _reading(T0, 13.5, 2.1),
            _reading(T0 + timedelta(minutes=5), 13.6, 2.4),
            _reading(T0 + timedelta(minutes=10), 11.5, 2.1),
            _reading(T0 + timedelta(minutes=15), 12.8, 1.0),
        ]
    )

    response = api_client.get("/pv", params=_range(T0, T0 + timedelta(minutes=20)))

    assert response.status_code == 200
    payload = response.json()
    assert [item["decision"] for item in payload] == ["Yes", "No", "Maybe"]
    assert payload[0]["start"].startswith("2024-06-01T10:00:00")
    assert payload[-1]["end"].startswith("2024-06-01T10:20:00")


def test_pv_empty_range(api_client: TestClient) -> None:
    response = api_client.get("/pv", params=_range(T0, T0 + timedelta(hours=1)))

    assert response.status_code == 200
    assert response.json() == []


def test_pv_naive_timestamps_are_utc(api_client: TestClient, service: InformantService) -> None:
    service.readings.put_readings([_reading(T0, 13.5, 2.1)])

    response = api_client.get("/pv", params={"from": "2024-06-01T10:00:00", "to": "2024-06-01T10:30:00"})

    assert response.status_code == 200
    assert len(response.json()) == 1


def test_pv_rejects_inverted_and_too_wide_ranges(api_client: TestClient) -> None:
    inverted = api_client.get("/pv", params=_range(T0, T0 - timedelta(minutes=1)))
    too_wide = api_client.get("/pv", params=_range(T0, T0 + timedelta(days=21)))
    missing = api_client.get("/pv")

    assert inverted.status_code == 400
    assert too_wide.status_code == 400
    assert "max query duration" in too_wide.json()["detail"]
    assert missing.status_code == 422


def test_pv_storage_unavailable(api_client: TestClient, service: InformantService, monkeypatch) -> None:
    async def unavailable(start, end):
        raise StorageUnavailable("influx down", backend="influx")

    monkeypatch.setattr(service.readings, "fetch_readings", unavailable)

    response = api_client.get("/pv", params=_range(T0, T0 + timedelta(minutes=5)))

    assert response.status_code == 502
    assert response.json()["detail"] == "influx down"


def test_register_is_idempotent(api_client: TestClient) -> None:
    first = api_client.post("/worker/aa-bb-cc-dd-ee-ff")
    second = api_client.post(f"/worker/{ADDRESS}")

    assert first.status_code == 201
    assert first.json()["address"] == ADDRESS
    assert first.json()["created"] is True
    assert second.status_code == 200
    assert second.json()["created"] is False
    assert [w["address"] for w in api_client.get("/workers").json()] == [ADDRESS]


def test_report_requires_registration(api_client: TestClient) -> None:
    response = api_client.post(f"/worker/{ADDRESS}/report", json={"status": True})

    assert response.status_code == 409
    assert ADDRESS in response.json()["detail"]


def test_report_rejects_malformed_address_and_body(api_client: TestClient) -> None:
    bad_address = api_client.post("/worker/zz:zz/report", json={"status": True})
    bad_body = api_client.post(f"/worker/{ADDRESS}/report", json={"status": "yes"})

    assert bad_address.status_code == 400
    assert bad_body.status_code == 422


def test_report_and_query_activity(api_client: TestClient) -> None:
    api_client.post(f"/worker/{ADDRESS}")
    start = utc_now() - timedelta(seconds=1)

    first = api_client.post(f"/worker/{ADDRESS}/report", json={"status": False})
    second = api_client.post(f"/worker/{ADDRESS}/report", json={"status": True})
    end = utc_now() + timedelta(minutes=1)

    assert first.status_code == 200
    assert first.json()["woken"] is False
    assert second.status_code == 200
    response = api_client.get(f"/worker/{ADDRESS}", params=_range(start, end))
    assert response.status_code == 200
    assert [item["status"] for item in response.json()] == [False, True]
    assert response.json()[1]["start"] == second.json()["recorded_at"]


def test_query_unknown_worker_is_not_found(api_client: TestClient) -> None:
    response = api_client.get(f"/worker/{ADDRESS}", params=_range(T0, T0 + timedelta(hours=1)))

    assert response.status_code == 404


def test_excess_and_woken_after_tick(api_client: TestClient, service: InformantService) -> None:
    assert api_client.get("/excess").status_code == 404
    api_client.post(f"/worker/{ADDRESS}")
    service.readings.put_readings([_reading(utc_now() - timedelta(minutes=1), 13.6, 2.5)])

    asyncio.run(service.scheduler.tick())

    excess = api_client.get("/excess")
    assert excess.status_code == 200
    assert excess.json()["decision"] == "Yes"
    assert service.dispatcher.sender.sent == [ADDRESS]
    report = api_client.post(f"/worker/{ADDRESS}/report", json={"status": True})
    assert report.json()["woken"] is True


def test_policy_roundtrip(api_client: TestClient) -> None:
    assert api_client.get("/policy").json() == {
        "battery_low": 12.0,
        "battery_high": 13.2,
        "current_low": 0.5,
        "current_high": 2.0,
    }

    updated = api_client.put(
        "/policy",
        json={"battery_low": 12.2, "battery_high": 13.0, "current_low": 1.0, "current_high": 3.0},
    )
    invalid = api_client.put(
        "/policy",
        json={"battery_low": 13.2, "battery_high": 12.0, "current_low": 1.0, "current_high": 3.0},
    )

    assert updated.status_code == 200
    assert invalid.status_code == 400
    assert api_client.get("/policy").json()["battery_high"] == 13.0


def test_health_and_root(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok", "polling": "stopped"}
    assert api_client.get("/").json()["status"] == "ok"


class NeighborTable:
    def __init__(self, table: str = "", failing: bool = False) -> None:
        self.table = table
        self.failing = failing

    async def ping(self, host: str) -> bool:
        return False

    async def neighbors(self) -> str:
        if self.failing:
            raise NeighborLookupError("'ip neigh' could not be run")
        return self.table


def _as_requester(client: TestClient, host: str) -> None:
    client.app.dependency_overrides[requester_host] = lambda: host


def test_report_and_intervals_resolve_requester(api_client: TestClient, service: InformantService) -> None:
    service.neighbors = NeighborResolver(
        NeighborTable("192.168.1.20 dev eth0 lladdr aa:bb:cc:dd:ee:ff REACHABLE\n")
    )
    _as_requester(api_client, "192.168.1.20")
    api_client.post(f"/worker/{ADDRESS}")
    start = utc_now() - timedelta(seconds=1)

    report = api_client.post("/report", json={"status": True})
    intervals = api_client.get("/interval", params=_range(start, utc_now() + timedelta(minutes=1)))

    assert report.status_code == 200
    assert service.registry.get(ADDRESS).last_reported_status is True
    assert intervals.status_code == 200
    assert [item["status"] for item in intervals.json()] == [True]


def test_unresolvable_requester_is_rejected(api_client: TestClient, service: InformantService) -> None:
    _as_requester(api_client, "192.168.1.99")
    disabled = api_client.post("/report", json={"status": True})

    service.neighbors = NeighborResolver(NeighborTable(""))
    unknown = api_client.post("/report", json={"status": True})

    service.neighbors = NeighborResolver(NeighborTable(failing=True))
    failed = api_client.get("/interval", params=_range(T0, T0 + timedelta(hours=1)))

    assert disabled.status_code == 400
    assert "disabled" in disabled.json()["detail"]
    assert unknown.status_code == 400
    assert "192.168.1.99" in unknown.json()["detail"]
    assert failed.status_code == 502
