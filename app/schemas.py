"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, StrictBool

from models.records import Interval, ThresholdPolicy, Verdict, Worker


class PowerInterval(BaseModel):
    """Window of constant excess power decision, ``end`` exclusive."""

    start: datetime
    end: datetime
    decision: Verdict

    @classmethod
    def from_interval(cls, interval: Interval[Verdict]) -> "PowerInterval":
        return cls(start=interval.start, end=interval.end, decision=interval.value)

    def to_interval(self) -> Interval[Verdict]:
        return Interval(start=self.start, end=self.end, value=self.decision)


class ActivityInterval(BaseModel):
    """Window during which a worker reported the same status, ``end`` exclusive."""

    start: datetime
    end: datetime
    status: bool

    @classmethod
    def from_interval(cls, interval: Interval[bool]) -> "ActivityInterval":
        return cls(start=interval.start, end=interval.end, status=interval.value)

    def to_interval(self) -> Interval[bool]:
        return Interval(start=self.start, end=self.end, value=self.status)


class ExcessStatus(BaseModel):
    """Most recent verdict of the polling loop."""

    decision: Verdict
    checked_at: datetime


class WorkerRecord(BaseModel):
    address: str = Field(..., description="Normalized hardware address.")
    last_wake_time: Optional[datetime] = None
    last_reported_status: Optional[bool] = None
    last_report_time: Optional[datetime] = None

    @classmethod
    def from_worker(cls, worker: Worker) -> "WorkerRecord":
        return cls(
            address=worker.address,
            last_wake_time=worker.last_wake_time,
            last_reported_status=worker.last_reported_status,
            last_report_time=worker.last_report_time,
        )


class RegistrationResponse(WorkerRecord):
    created: bool


class ReportRequest(BaseModel):
    status: StrictBool = Field(..., description="Whether the worker is currently working.")


class ReportResponse(BaseModel):
    """Acknowledgement returned to a reporting worker."""

    recorded_at: datetime
    woken: bool = Field(
        ..., description="Whether the worker was sent a wake signal in the last polling round."
    )


class PolicyPayload(BaseModel):
    battery_low: float
    battery_high: float
    current_low: float
    current_high: float

    @classmethod
    def from_policy(cls, policy: ThresholdPolicy) -> "PolicyPayload":
        return cls(
            battery_low=policy.battery_low,
            battery_high=policy.battery_high,
            current_low=policy.current_low,
            current_high=policy.current_high,
        )

    def to_policy(self) -> ThresholdPolicy:
        return ThresholdPolicy(
            battery_low=self.battery_low,
            battery_high=self.battery_high,
            current_low=self.current_low,
            current_high=self.current_high,
        )
