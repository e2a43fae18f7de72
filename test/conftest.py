"""
공용 테스트 픽스처

- clock: 수동으로 진행시키는 가짜 시계 (Executor/Dispatcher/SchedulerService의 clock 인자)
- notifier: 최종 실패 알림을 기록만 하는 Notifier
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from worker.notifier import FailureNotice, Notifier

T0 = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """호출 시 현재 설정된 시각을 반환"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier(Notifier):
    """받은 알림을 리스트에 쌓음"""

    def __init__(self):
        self.notices: list[FailureNotice] = []

    async def notify_failure(self, notice: FailureNotice) -> None:
        self.notices.append(notice)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()
