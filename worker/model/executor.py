"""
Worker 모델 - Executor 관련 구조체
"""

import asyncio
import os
import socket
from dataclasses import dataclass, field

from pydantic import BaseModel, Field


def default_instance_id() -> str:
    """리스 보유자 식별자 (호스트명-PID)"""
    return f"{socket.gethostname()}-{os.getpid()}"


class ExecutorConfig(BaseModel):
    """실행기 설정"""
    instance_id: str = Field(default_factory=default_instance_id)
    default_timeout_seconds: float = Field(default=3600, gt=0, le=86400)
    max_retry_delay_seconds: float = Field(default=3600, gt=0)
    lease_margin_seconds: float = Field(default=60, ge=0)


@dataclass
class RunSlot:
    """
    프로세스 내 실행 집합의 한 자리

    같은 run_key로 동시에 하나만 존재합니다. 반환은 슬롯 객체 기준이라
    늦게 도착한 반환 요청이 다음 실행의 자리를 지우지 않습니다.
    """
    key: str
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
