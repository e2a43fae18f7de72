"""
핸들러 입출력 모델

모든 핸들러가 공통으로 사용하는 파라미터, 실행 컨텍스트, 결과 모델.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict


class HandlerParams(BaseModel):
    """
    핸들러 입력 파라미터 기본 모델

    핸들러별 파라미터는 이 모델을 상속해 정의하고 BaseHandler.params_model로 지정합니다.
    """
    model_config = ConfigDict(extra='allow')  # 정의 안 된 필드도 허용


class HandlerResult(BaseModel):
    """핸들러 실행 결과 (공통)"""
    model_config = ConfigDict(extra='allow')

    success: bool = True
    data: Any = None
    message: str | None = None
    records_processed: int | None = None
    records_affected: int | None = None


@dataclass
class HandlerContext:
    """
    실행 컨텍스트

    cancel_event는 cancel_job/delete_job 호출 시 설정됩니다.
    오래 걸리는 핸들러는 context.cancelled를 주기적으로 확인하여 조기 종료할 수 있습니다.
    """
    job_id: str
    job_name: str
    owner: str
    attempt: int
    execution_id: str
    manual: bool = False
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()
