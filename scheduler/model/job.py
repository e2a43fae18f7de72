"""
스케줄 잡 엔티티 및 스케줄 모델 정의
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """naive datetime은 UTC로 간주"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class JobStatus(str, Enum):
    """잡 상태"""
    SCHEDULED = "scheduled"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    CANCELLED = "cancelled"
    PAUSED = "paused"


# 디스패처가 조회하는 상태
DISPATCHABLE_STATUSES = (JobStatus.SCHEDULED, JobStatus.RETRYING)

# 자동 전이가 더 이상 일어나지 않는 상태
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobPriority(str, Enum):
    """잡 우선순위"""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    JobPriority.LOW: 0,
    JobPriority.NORMAL: 1,
    JobPriority.HIGH: 2,
    JobPriority.CRITICAL: 3,
}


class ScheduleType(str, Enum):
    """스케줄 유형"""
    ONCE = "once"
    RECURRING = "recurring"


class IntervalUnit(str, Enum):
    """반복 간격 단위"""
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


class DependencyKind(str, Enum):
    """선행 잡 조건"""
    MUST_COMPLETE = "must_complete"
    MUST_SUCCEED = "must_succeed"


class Interval(BaseModel):
    """고정 간격"""
    value: int = Field(..., ge=1)
    unit: IntervalUnit


class Schedule(BaseModel):
    """
    스케줄 정의

    - once: run_at에 한 번 실행 (없으면 즉시)
    - recurring: interval 또는 cron_expression 중 정확히 하나
    timezone은 참고용이며 계산은 모두 UTC 기준입니다.
    """
    type: ScheduleType = ScheduleType.ONCE
    run_at: datetime | None = None
    interval: Interval | None = None
    cron_expression: str | None = None
    timezone: str = "UTC"

    @field_validator("run_at")
    @classmethod
    def _normalize_run_at(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @field_validator("cron_expression")
    @classmethod
    def _strip_cron(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = " ".join(value.split())
        return value or None

    @model_validator(mode="after")
    def _check_shape(self) -> "Schedule":
        if self.type == ScheduleType.RECURRING:
            if (self.interval is None) == (self.cron_expression is None):
                raise ValueError("recurring schedule requires exactly one of 'interval' or 'cron_expression'")
        elif self.interval is not None or self.cron_expression is not None:
            raise ValueError("once schedule does not take 'interval' or 'cron_expression'")
        return self

    @property
    def is_recurring(self) -> bool:
        return self.type == ScheduleType.RECURRING


class Dependency(BaseModel):
    """선행 잡 의존성"""
    job_id: str
    kind: DependencyKind = DependencyKind.MUST_COMPLETE


class ErrorInfo(BaseModel):
    """구조화된 에러 정보"""
    message: str
    code: str | None = None
    details: Any = None
    stack: str | None = None


class JobResult(BaseModel):
    """마지막 실행 결과 스냅샷"""
    success: bool
    data: Any = None
    error: ErrorInfo | None = None
    duration_ms: int | None = None
    records_processed: int | None = None
    records_affected: int | None = None


class Job(BaseModel):
    """스케줄 잡 엔티티 (현재 상태를 가진 단일 레코드)"""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    owner: str = "default"
    name: str
    job_type: str
    schedule: Schedule = Field(default_factory=Schedule)
    status: JobStatus = JobStatus.SCHEDULED
    priority: JobPriority = JobPriority.NORMAL

    run_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None

    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay_seconds: float = Field(default=60.0, gt=0)
    timeout_seconds: float = Field(default=3600.0, gt=0)

    dependencies: list[Dependency] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)
    result: JobResult | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    # 리스 (스토어가 관리, save()로는 갱신되지 않음)
    locked_by: str | None = None
    lock_expires_at: datetime | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator(
        "run_at", "started_at", "completed_at", "failed_at", "last_run_at",
        "next_run_at", "lock_expires_at", "created_at", "updated_at",
    )
    @classmethod
    def _normalize_datetime(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @property
    def run_key(self) -> str:
        """프로세스 내 실행 집합 키"""
        return f"{self.owner}/{self.name}"

    @property
    def is_recurring(self) -> bool:
        return self.schedule.is_recurring

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts

    @property
    def has_completed(self) -> bool:
        """완료 여부 (반복 잡은 한 번이라도 완료했으면 True)"""
        if self.status == JobStatus.COMPLETED:
            return True
        return self.is_recurring and self.last_run_at is not None and self.status != JobStatus.FAILED

    @property
    def last_succeeded(self) -> bool:
        return self.result is not None and self.result.success
