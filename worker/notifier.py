"""
최종 실패 알림

재시도를 모두 소진했거나 재시도할 수 없는 실패에서 한 번 호출됩니다.
알림 실패는 잡 상태에 영향을 주지 않습니다.
"""

import logging
from abc import ABC, abstractmethod

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class FailureNotice(BaseModel):
    """실패 알림 내용"""
    job_id: str
    job_name: str
    owner: str = "default"
    attempts: int
    error_message: str
    error_code: str | None = None


class Notifier(ABC):
    """알림 채널 기본 클래스"""

    @abstractmethod
    async def notify_failure(self, notice: FailureNotice) -> None:
        ...


class LoggingNotifier(Notifier):
    """로그로만 남기는 기본 알림"""

    async def notify_failure(self, notice: FailureNotice) -> None:
        logger.error(
            f"Job failed permanently: job={notice.owner}/{notice.job_name}, "
            f"attempts={notice.attempts}, error={notice.error_message}"
        )


async def send_failure_notice(notifier: Notifier, notice: FailureNotice) -> None:
    """알림 전송 (예외는 로그만 남기고 삼킴)"""
    try:
        await notifier.notify_failure(notice)
    except Exception as e:
        logger.error(f"Failure notification error: job={notice.job_name}, error={e}", exc_info=True)
