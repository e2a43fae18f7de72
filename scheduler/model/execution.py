"""
실행 이력 및 라이프사이클 이벤트 모델 정의
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from scheduler.model.job import ensure_utc, utcnow


class ExecutionStatus(str, Enum):
    """실행 상태"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class Execution(BaseModel):
    """실행 이력 엔티티 (종료 기록 이후 변경 없음)"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    job_id: str
    job_name: str
    owner: str = "default"
    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    duration_ms: int | None = None
    retry_count: int = 0
    error: str | None = None
    error_code: str | None = None
    result: Any = None
    manual: bool = False

    @field_validator("started_at", "completed_at")
    @classmethod
    def _normalize_datetime(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @property
    def is_finished(self) -> bool:
        return self.completed_at is not None


class HistoryAction(str, Enum):
    """라이프사이클 이벤트 종류"""
    SCHEDULED = "scheduled"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    MODIFIED = "modified"


class HistoryEntry(BaseModel):
    """라이프사이클 이벤트 (한 번 기록 후 불변)"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    job_id: str
    job_name: str
    owner: str = "default"
    action: HistoryAction
    timestamp: datetime = Field(default_factory=utcnow)
    actor: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _normalize_datetime(cls, value: datetime) -> datetime:
        return ensure_utc(value)
