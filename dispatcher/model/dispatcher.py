"""
Dispatcher 설정 모델 정의
"""

from pydantic import BaseModel, Field


class DispatcherConfig(BaseModel):
    """Dispatcher 설정"""
    database: str = Field(default="default", description="database.yaml에 정의된 DB 이름")
    tick_interval_seconds: float = Field(default=60, gt=0, le=3600)
    max_jobs_per_tick: int = Field(default=100, ge=1, le=10000)
    max_concurrent_jobs: int = Field(default=10, ge=1, le=1000)
    shutdown_timeout_seconds: float = Field(default=30, ge=0)
    instance_id: str | None = Field(default=None, description="리스 보유자 식별자 (없으면 호스트명-PID)")
    recover_stale_on_start: bool = True
