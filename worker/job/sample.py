"""샘플 핸들러 - 테스트/데모용"""

import asyncio
import logging
from typing import Any

from worker.base import BaseHandler, HandlerContext, HandlerParams, HandlerResult, handler
from worker.exception import HandlerError

logger = logging.getLogger(__name__)


class SampleParams(HandlerParams):
    """샘플 핸들러 파라미터 (정의 외 필드는 그대로 에코)"""
    should_fail: bool = False
    sleep_seconds: float = 0.0


@handler("sample")
class SampleHandler(BaseHandler):
    """받은 파라미터를 그대로 돌려주는 핸들러"""

    params_model = SampleParams

    async def execute(self, params: SampleParams, context: HandlerContext) -> HandlerResult:
        logger.info(f"SampleHandler executed: job={context.job_name}, attempt={context.attempt}")

        if params.sleep_seconds > 0:
            await asyncio.sleep(params.sleep_seconds)

        if params.should_fail:
            raise HandlerError("Sample failure requested", code="SAMPLE_FAILURE")

        echoed: dict[str, Any] = dict(params.model_extra or {})
        return HandlerResult(
            success=True,
            data={"received_params": echoed},
            records_processed=len(echoed),
        )
