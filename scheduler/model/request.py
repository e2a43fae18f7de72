"""스케줄링 API 요청/응답 모델 정의"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scheduler.model.execution import ExecutionStatus
from scheduler.model.job import (
    Dependency,
    JobPriority,
    JobStatus,
    Schedule,
)


class JobDefinition(BaseModel):
    """잡 등록 요청 (동일 owner/name이 있으면 수정)"""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    job_type: str = Field(..., min_length=1, max_length=100)
    owner: str = Field(default="default", min_length=1, max_length=100)
    schedule: Schedule = Field(default_factory=Schedule)
    parameters: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    priority: JobPriority = JobPriority.NORMAL
    max_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay_seconds: float = Field(default=60.0, gt=0, le=86400)
    timeout_seconds: float | None = Field(default=None, gt=0, le=86400, description="없으면 executor.default_timeout_seconds")
    dependencies: list[Dependency] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    actor: str | None = None

    @field_validator("name", "job_type", "owner")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        return [t.strip().lower() for t in value if t and t.strip()]


class ScheduleResult(BaseModel):
    """잡 등록 결과"""
    job_id: str
    job_name: str
    next_run_at: datetime | None = None
    created: bool = True


class RunNowResult(BaseModel):
    """즉시 실행 결과"""
    job_id: str
    execution_id: str
    status: ExecutionStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobSummary(BaseModel):
    """잡 목록 항목"""
    id: str
    owner: str
    job_name: str
    job_type: str
    status: JobStatus
    priority: JobPriority
    schedule: Schedule
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    attempts: int = 0
    max_attempts: int = 3


class JobStats(BaseModel):
    """잡 실행 통계"""
    total: int = 0
    completed: int = 0
    failed: int = 0
    running: int = 0
    retrying: int = 0
    average_duration_ms: float = 0.0
    success_rate: float = 0.0
