"""
재시도 백오프 / 의존성 정책 테스트

테스트 항목:
1. backoff 단조 증가 및 상한
2. must_complete / must_succeed 의존성 판정
3. 의존성 사이클 탐지

실행: python -m pytest test/policy_test.py -v
"""

import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).parent.parent))

from scheduler.model import (
    Dependency,
    DependencyKind,
    Interval,
    IntervalUnit,
    Job,
    JobResult,
    JobStatus,
    Schedule,
    ScheduleType,
)
from scheduler.policy import (
    backoff,
    dependencies_satisfied,
    find_dependency_cycle,
    unsatisfied_dependencies,
)
from scheduler.store.memory import MemoryJobStore

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

T0 = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def job_store():
    return MemoryJobStore()


async def make_job(store: MemoryJobStore, name: str, **fields) -> Job:
    job = Job(name=name, job_type="sample", **fields)
    await store.save(job)
    return job


class TestBackoff:
    """지수 백오프"""

    def test_exponential(self):
        """base * 2^attempts"""
        assert backoff(0, 60, 3600) == timedelta(seconds=60)
        assert backoff(1, 60, 3600) == timedelta(seconds=120)
        assert backoff(3, 60, 3600) == timedelta(seconds=480)

    def test_monotonic_and_capped(self):
        """attempts에 대해 단조 증가, cap 이하"""
        delays = [backoff(n, 60, 3600) for n in range(0, 100)]
        assert all(a <= b for a, b in zip(delays, delays[1:]))
        assert max(delays) == timedelta(seconds=3600)

    def test_negative_attempts_treated_as_zero(self):
        """음수 attempts는 0으로 취급"""
        assert backoff(-3, 10, 100) == timedelta(seconds=10)


class TestDependencies:
    """선행 잡 판정"""

    @pytest.mark.asyncio
    async def test_no_dependencies(self, job_store):
        """의존성이 없으면 항상 충족"""
        job = await make_job(job_store, "solo")
        assert await dependencies_satisfied(job, job_store) is True

    @pytest.mark.asyncio
    async def test_must_complete_ignores_outcome(self, job_store):
        """must_complete: completed 상태면 결과와 무관하게 충족"""
        upstream = await make_job(
            job_store, "upstream",
            status=JobStatus.COMPLETED,
            result=JobResult(success=False),
        )
        job = await make_job(job_store, "downstream", dependencies=[Dependency(job_id=upstream.id)])
        assert await dependencies_satisfied(job, job_store) is True

    @pytest.mark.asyncio
    async def test_must_complete_pending(self, job_store):
        """must_complete: 아직 scheduled면 미충족"""
        upstream = await make_job(job_store, "upstream")
        job = await make_job(job_store, "downstream", dependencies=[Dependency(job_id=upstream.id)])
        assert await unsatisfied_dependencies(job, job_store) == [upstream.id]

    @pytest.mark.asyncio
    async def test_must_succeed_requires_success(self, job_store):
        """must_succeed: completed + result.success 필요"""
        failed_run = await make_job(
            job_store, "failed-run",
            status=JobStatus.COMPLETED,
            result=JobResult(success=False),
        )
        ok_run = await make_job(
            job_store, "ok-run",
            status=JobStatus.COMPLETED,
            result=JobResult(success=True),
        )
        job = await make_job(job_store, "downstream", dependencies=[
            Dependency(job_id=failed_run.id, kind=DependencyKind.MUST_SUCCEED),
            Dependency(job_id=ok_run.id, kind=DependencyKind.MUST_SUCCEED),
        ])
        assert await unsatisfied_dependencies(job, job_store) == [failed_run.id]

    @pytest.mark.asyncio
    async def test_recurring_dependency_counts_after_first_run(self, job_store):
        """반복 잡은 한 번 실행(last_run_at) 후부터 완료로 취급"""
        schedule = Schedule(type=ScheduleType.RECURRING, interval=Interval(value=1, unit=IntervalUnit.HOURS))
        upstream = await make_job(job_store, "hourly", schedule=schedule)
        job = await make_job(job_store, "downstream", dependencies=[Dependency(job_id=upstream.id)])
        assert await dependencies_satisfied(job, job_store) is False

        upstream.last_run_at = T0
        upstream.result = JobResult(success=True)
        await job_store.save(upstream)
        assert await dependencies_satisfied(job, job_store) is True

    @pytest.mark.asyncio
    async def test_missing_dependency_ignored(self, job_store):
        """삭제된 선행 잡은 무시"""
        job = await make_job(job_store, "downstream", dependencies=[Dependency(job_id="gone")])
        assert await dependencies_satisfied(job, job_store) is True


class TestDependencyCycle:
    """사이클 탐지"""

    @pytest.mark.asyncio
    async def test_self_dependency(self, job_store):
        """자기 자신 의존"""
        job = await make_job(job_store, "self")
        assert await find_dependency_cycle(job.id, [job.id], job_store) == [job.id, job.id]

    @pytest.mark.asyncio
    async def test_indirect_cycle(self, job_store):
        """A → B → C → A"""
        a = await make_job(job_store, "a")
        b = await make_job(job_store, "b", dependencies=[Dependency(job_id=a.id)])
        c = await make_job(job_store, "c", dependencies=[Dependency(job_id=b.id)])

        cycle = await find_dependency_cycle(a.id, [c.id], job_store)
        assert cycle == [a.id, c.id, b.id, a.id]

    @pytest.mark.asyncio
    async def test_no_cycle(self, job_store):
        """공유 선행 잡(다이아몬드)은 사이클 아님"""
        root = await make_job(job_store, "root")
        left = await make_job(job_store, "left", dependencies=[Dependency(job_id=root.id)])
        right = await make_job(job_store, "right", dependencies=[Dependency(job_id=root.id)])
        sink = await make_job(job_store, "sink")

        assert await find_dependency_cycle(sink.id, [left.id, right.id], job_store) is None
