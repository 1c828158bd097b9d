"""Domain types for the telemetry / alerting engine."""

from __future__ import annotations

import time
from collections.abc import Mapping
from datetime import datetime
from enum import IntEnum, StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

# ── Telemetry Types ─────────────────────────────────────────────


class Sample(BaseModel):
    """A single tag-labeled metric point as returned by the Telemetry API."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    field: str
    value: float
    tags: dict[str, str] = Field(default_factory=dict)


class StitchedRow(BaseModel):
    """One timestamp with one column per (optionally entity-qualified) field."""

    model_config = ConfigDict(frozen=True)

    time: datetime
    values: Mapping[str, float] = Field(default_factory=dict, validate_default=True)

    @field_validator("values", mode="after")
    @classmethod
    def _freeze_values(cls, v: Mapping[str, float]) -> Mapping[str, float]:
        return MappingProxyType(dict(v))

    @field_serializer("values")
    def _dump_values(self, v: Mapping[str, float]) -> dict[str, float]:
        return dict(v)


class SeriesKey(BaseModel):
    """Identifies one logical cacheable series, e.g. ("db1", "collections", "1h")."""

    model_config = ConfigDict(frozen=True)

    entity: str
    dataset: str
    range: str

    def __str__(self) -> str:
        return f"{self.entity}/{self.dataset}/{self.range}"


class CapacityStatus(StrEnum):
    """Classification of a capacity projection."""

    STABLE = "stable"  # no growth, nothing to project
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


class GrowthSample(BaseModel):
    """Linear growth fit over the lookback window."""

    model_config = ConfigDict(frozen=True)

    window_days: float
    start_value: float
    end_value: float
    daily_rate: float
    projected_exhaustion_days: float | None = None
    status: CapacityStatus = CapacityStatus.STABLE


class FetchWarning(BaseModel):
    """A dropped poll update; the previous value is kept and this is surfaced."""

    model_config = ConfigDict(frozen=True)

    source: str
    message: str
    error_type: str = ""
    timestamp: float = Field(default_factory=time.time)


class CapacityAlert(BaseModel):
    """Projection for one capacity dimension of one series."""

    model_config = ConfigDict(frozen=True)

    key: SeriesKey
    field: str
    growth: GrowthSample
    timestamp: float = Field(default_factory=time.time)


class FitStatus(StrEnum):
    """How the estimated working set fits into RAM."""

    EXCELLENT = "excellent"
    TIGHT = "tight"
    TOO_LARGE = "too-large"


class WorkingSetEstimate(BaseModel):
    """Composite working-set estimate and its RAM fit."""

    model_config = ConfigDict(frozen=True)

    working_set_mb: float
    ram_mb: float
    ratio: float
    status: FitStatus


# ── Alarm Types ─────────────────────────────────────────────────


_SEVERITY_RANK: dict[str, int] = {"info": 1, "warning": 2, "critical": 3}


class AlarmSeverity(StrEnum):
    """Alarm severity as reported by the Alarm API."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self.value]


class AlarmEvent(BaseModel):
    """A single alarm from the recent-alarms feed. Identity is ``id``."""

    model_config = ConfigDict(frozen=True)

    id: str
    severity: AlarmSeverity
    message: str = ""
    timestamp: datetime | None = None
    host: str = ""
    type: str = ""


class BadgeLevel(StrEnum):
    """Colour of the unacknowledged-alarm badge."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class AlarmCounts(BaseModel):
    """Unacknowledged alarm counts over the badge window."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    critical: int = 0
    level: BadgeLevel = BadgeLevel.OK
    updated_at: float = 0.0


# ── Job Types ───────────────────────────────────────────────────


class JobStatus(IntEnum):
    """Job lifecycle status, using the Job API's numeric codes."""

    PENDING = 1
    RUNNING = 2
    COMPLETED = 3
    FAILED = 4

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @classmethod
    def parse(cls, value: object) -> JobStatus | None:
        """Parse a numeric code or a case-insensitive name; None if unknown."""
        if isinstance(value, JobStatus):
            return value
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return None
        if isinstance(value, str):
            name = value.strip().upper()
            if name.isdigit():
                return cls.parse(int(name))
            return cls.__members__.get(name)
        return None


class StatusSource(StrEnum):
    """Which signal produced a job status observation."""

    JOB_LIST = "job_list"
    PROCESS_STATUS = "process_status"
    FINAL_STATUS = "final_status"


class Job(BaseModel):
    """Job as listed by ``GET /jobs``."""

    model_config = ConfigDict(extra="ignore")

    job_id: str
    type: int | str = ""
    status: int | str | None = None
    agent_id: str = ""
    created_at: Any = None
    updated_at: Any = None
    error_message: str | None = None
    result: str | None = None


class JobLogPayload(BaseModel):
    """Response of ``GET /process-logs?process_id=...``."""

    model_config = ConfigDict(extra="ignore")

    status: str = ""
    logs: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    process_status: str | None = None


class JobStatusChange(BaseModel):
    """Published whenever a job's reconciled status actually changes."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    previous: JobStatus | None
    current: JobStatus
    source: StatusSource
    timestamp: float = Field(default_factory=time.time)
