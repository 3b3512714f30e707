"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from app.schemas import (
    ActivityInterval,
    ExcessStatus,
    PolicyPayload,
    PowerInterval,
    RegistrationResponse,
    ReportRequest,
    ReportResponse,
    WorkerRecord,
)
from models.errors import (
    ConfigError,
    InvalidRange,
    NeighborLookupError,
    StorageUnavailable,
    UnknownWorker,
)
from models.records import QueryRange, ensure_utc, normalize_address
from services.informant import InformantService, build_default_service

router = APIRouter()


def get_service() -> InformantService:
    return build_default_service()


def _query_range(start: datetime, end: datetime) -> QueryRange:
    try:
        return QueryRange(start=ensure_utc(start), end=ensure_utc(end))
    except InvalidRange as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _address(raw: str) -> str:
    try:
        return normalize_address(raw)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _storage_error(exc: StorageUnavailable) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


def requester_host(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def _requester_address(service: InformantService, host: Optional[str]) -> str:
    """Hardware address of the calling machine, looked up in the neighbour table."""
    if service.neighbors is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Neighbour lookup is disabled; use /worker/{address} instead.",
        )
    try:
        address = await service.neighbors.address_for_host(host)
    except NeighborLookupError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    if address is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Could not resolve the hardware address of {host}.",
        )
    return address


@router.get(
    "/pv",
    response_model=List[PowerInterval],
    summary="Excess power windows between two timestamps.",
)
async def get_pv_intervals(
    start: datetime = Query(..., alias="from", description="Range start (ISO-8601)."),
    end: datetime = Query(..., alias="to", description="Range end (ISO-8601)."),
    service: InformantService = Depends(get_service),
) -> List[PowerInterval]:
    query = _query_range(start, end)
    try:
        intervals = await service.power_history.query_excess_intervals(query)
    except InvalidRange as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StorageUnavailable as exc:
        raise _storage_error(exc) from exc
    return [PowerInterval.from_interval(interval) for interval in intervals]


@router.get(
    "/excess",
    response_model=ExcessStatus,
    summary="Most recent verdict of the wake polling loop.",
)
async def get_excess(service: InformantService = Depends(get_service)) -> ExcessStatus:
    outcome = service.scheduler.last_outcome
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No excess power decision has been made yet.",
        )
    return ExcessStatus(decision=outcome.verdict, checked_at=outcome.checked_at)


@router.get(
    "/workers",
    response_model=List[WorkerRecord],
    summary="List registered workers.",
)
async def list_workers(service: InformantService = Depends(get_service)) -> List[WorkerRecord]:
    return [WorkerRecord.from_worker(worker) for worker in service.registry.workers()]


@router.get(
    "/worker/{address}",
    response_model=List[ActivityInterval],
    summary="Activity windows reported by a worker.",
)
async def get_worker_intervals(
    address: str,
    start: datetime = Query(..., alias="from", description="Range start (ISO-8601)."),
    end: datetime = Query(..., alias="to", description="Range end (ISO-8601)."),
    service: InformantService = Depends(get_service),
) -> List[ActivityInterval]:
    return await _activity_intervals(service, _address(address), start, end)


@router.get(
    "/interval",
    response_model=List[ActivityInterval],
    summary="Activity windows of the calling machine.",
)
async def get_own_intervals(
    start: datetime = Query(..., alias="from", description="Range start (ISO-8601)."),
    end: datetime = Query(..., alias="to", description="Range end (ISO-8601)."),
    host: Optional[str] = Depends(requester_host),
    service: InformantService = Depends(get_service),
) -> List[ActivityInterval]:
    address = await _requester_address(service, host)
    return await _activity_intervals(service, address, start, end)


@router.post(
    "/worker/{address}",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a worker so it can report and be woken.",
)
async def register_worker(
    address: str,
    response: Response,
    service: InformantService = Depends(get_service),
) -> RegistrationResponse:
    worker, created = service.registry.register(_address(address))
    if not created:
        response.status_code = status.HTTP_200_OK
    return RegistrationResponse(**WorkerRecord.from_worker(worker).model_dump(), created=created)


@router.post(
    "/worker/{address}/report",
    response_model=ReportResponse,
    summary="Record the current status of a worker.",
)
async def report_worker_status(
    address: str,
    payload: ReportRequest,
    service: InformantService = Depends(get_service),
) -> ReportResponse:
    return await _report(service, _address(address), payload.status)


@router.post(
    "/report",
    response_model=ReportResponse,
    summary="Record the status of the calling machine.",
)
async def report_own_status(
    payload: ReportRequest,
    host: Optional[str] = Depends(requester_host),
    service: InformantService = Depends(get_service),
) -> ReportResponse:
    address = await _requester_address(service, host)
    return await _report(service, address, payload.status)


async def _activity_intervals(
    service: InformantService, address: str, start: datetime, end: datetime
) -> List[ActivityInterval]:
    query = _query_range(start, end)
    try:
        intervals = await service.registry.query_activity_intervals(address, query)
    except InvalidRange as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except UnknownWorker as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StorageUnavailable as exc:
        raise _storage_error(exc) from exc
    return [ActivityInterval.from_interval(interval) for interval in intervals]


async def _report(service: InformantService, address: str, working: bool) -> ReportResponse:
    try:
        event = await service.registry.report(address, working)
    except UnknownWorker as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StorageUnavailable as exc:
        raise _storage_error(exc) from exc
    return ReportResponse(
        recorded_at=event.timestamp,
        woken=service.dispatcher.was_woken(address),
    )


@router.get(
    "/policy",
    response_model=PolicyPayload,
    summary="Thresholds currently used for excess power decisions.",
)
async def get_policy(service: InformantService = Depends(get_service)) -> PolicyPayload:
    return PolicyPayload.from_policy(service.policy.current)


@router.put(
    "/policy",
    response_model=PolicyPayload,
    summary="Replace the decision thresholds.",
)
async def replace_policy(
    payload: PolicyPayload,
    service: InformantService = Depends(get_service),
) -> PolicyPayload:
    try:
        policy = payload.to_policy()
    except ConfigError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    service.policy.replace(policy)
    return PolicyPayload.from_policy(policy)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(service: InformantService = Depends(get_service)) -> dict[str, str]:
    polling = "running" if service.scheduler.running else "stopped"
    return {"status": "ok", "polling": polling}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {
        "status": "ok",
        "detail": "GET /pv, /excess, /workers, /worker/{address} or /interval; POST /worker/{address}/report or /report.",
    }
