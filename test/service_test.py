"""
스케줄링 API (SchedulerService) 테스트

테스트 항목:
1. 잡 등록 / 정의 검증 / 같은 이름 재등록(수정) / 기본 타임아웃
2. 즉시 실행 (파라미터 덮어쓰기, 잡 전용 핸들러)
3. 일시정지 / 재개 / 활성 전환 / 취소 / 삭제
4. 조회 (목록, 실행 이력, 이벤트, 통계)
5. 오래된 종료 잡 정리
6. 의존성 사이클 거부

실행: python -m pytest test/service_test.py -v
"""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio

# 프로젝트 루트 경로 추가
sys.path.insert(0, str(Path(__file__).parent.parent))

from dispatcher.model.dispatcher import DispatcherConfig
from nexusjobs.app import SchedulerApp
from scheduler.exception import (
    InvalidTransitionError,
    JobAlreadyRunningError,
    JobNotFoundError,
    JobValidationError,
)
from scheduler.model import (
    ExecutionStatus,
    HistoryAction,
    JobDefinition,
    JobStatus,
    Schedule,
)
from worker.base import HandlerRegistry
from worker.model import ExecutorConfig
from worker.model.handler import HandlerContext

# 테스트용 로깅 설정
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

HOURLY = {"type": "recurring", "interval": {"value": 1, "unit": "hours"}}


@pytest_asyncio.fixture
async def app(clock, notifier):
    app = SchedulerApp.in_memory(
        registry=HandlerRegistry(use_decorated=False),
        notifier=notifier,
        dispatcher_config=DispatcherConfig(tick_interval_seconds=0.05),
        executor_config=ExecutorConfig(instance_id="service-test"),
        clock=clock,
    )

    async def echo(params, context: HandlerContext):
        return {"params": params}

    async def always_fail(params, context: HandlerContext):
        raise RuntimeError("boom")

    app.registry.register("echo", echo)
    app.registry.register("fail", always_fail)
    yield app
    await app.close()


@pytest_asyncio.fixture
async def service(app):
    return app.service


async def run_tick(app: SchedulerApp) -> list[asyncio.Task]:
    tasks = await app.dispatcher.tick()
    await app.dispatcher.wait_idle()
    return tasks


class TestScheduleJob:
    """잡 등록"""

    @pytest.mark.asyncio
    async def test_schedule_new_job(self, service, clock):
        """신규 등록 → scheduled, SCHEDULED 이벤트"""
        result = await service.schedule_job({
            "name": "nightly-sync",
            "job_type": "echo",
            "schedule": {"type": "recurring", "cron_expression": "0 2 * * *"},
            "parameters": {"source": "crm"},
            "tags": [" Sync ", "CRM"],
            "actor": "alice",
        })

        assert result.created is True
        assert result.job_name == "nightly-sync"
        assert result.next_run_at == clock().replace(day=11, hour=2, minute=0)

        job = await service.get_job("nightly-sync")
        assert job.id == result.job_id
        assert job.status == JobStatus.SCHEDULED
        assert job.run_at == result.next_run_at
        assert job.tags == ["sync", "crm"]

        events = await service.job_events("nightly-sync")
        assert len(events) == 1
        assert events[0].action == HistoryAction.SCHEDULED
        assert events[0].actor == "alice"

    @pytest.mark.asyncio
    async def test_accepts_model(self, service):
        """JobDefinition 인스턴스도 허용"""
        result = await service.schedule_job(JobDefinition(name="typed", job_type="echo", schedule=Schedule()))
        assert result.created is True

    @pytest.mark.asyncio
    async def test_disabled_job_is_paused(self, service):
        """enabled=false → paused로 등록"""
        await service.schedule_job({"name": "later", "job_type": "echo", "enabled": False})
        job = await service.get_job("later")
        assert job.status == JobStatus.PAUSED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("definition", [
        {"job_type": "echo"},
        {"name": "   ", "job_type": "echo"},
        {"name": "x", "job_type": "echo", "unknown_field": 1},
        {"name": "x", "job_type": "echo", "max_attempts": 0},
        {"name": "x", "job_type": "echo", "schedule": {"type": "recurring"}},
        {"name": "x", "job_type": "echo", "schedule": {"type": "once", "cron_expression": "0 9 * * *"}},
        {"name": "x", "job_type": "echo", "schedule": {"type": "recurring", "interval": {"value": 0, "unit": "hours"}}},
    ])
    async def test_invalid_definition(self, service, definition):
        """잘못된 정의 → JobValidationError, 잡 레코드 생성 안 됨"""
        with pytest.raises(JobValidationError) as exc_info:
            await service.schedule_job(definition)
        assert exc_info.value.errors
        assert await service.get_scheduled_jobs() == []

    @pytest.mark.asyncio
    async def test_unsupported_cron_rejected(self, service):
        """지원하지 않는 크론 → JobValidationError"""
        with pytest.raises(JobValidationError) as exc_info:
            await service.schedule_job({
                "name": "every-5",
                "job_type": "echo",
                "schedule": {"type": "recurring", "cron_expression": "*/5 * * * *"},
            })
        assert exc_info.value.errors[0]["type"] == "unsupported_schedule"
        assert await service.get_scheduled_jobs() == []

    @pytest.mark.asyncio
    async def test_impossible_cron_date_rejected(self, service):
        """필드는 유효하지만 일치하는 날짜가 없는 크론(2월 31일) → JobValidationError"""
        with pytest.raises(JobValidationError) as exc_info:
            await service.schedule_job({
                "name": "feb-31",
                "job_type": "echo",
                "schedule": {"type": "recurring", "cron_expression": "0 0 31 2 *"},
            })
        assert exc_info.value.errors[0]["type"] == "unsupported_schedule"
        assert await service.get_scheduled_jobs() == []

    @pytest.mark.asyncio
    async def test_timeout_defaults_from_executor_config(self, clock, notifier):
        """timeout_seconds 생략 시 executor.default_timeout_seconds 사용"""
        app = SchedulerApp.in_memory(
            registry=HandlerRegistry(use_decorated=False),
            notifier=notifier,
            executor_config=ExecutorConfig(instance_id="service-test", default_timeout_seconds=120),
            clock=clock,
        )
        try:
            await app.service.schedule_job({"name": "defaulted", "job_type": "echo"})
            await app.service.schedule_job({"name": "explicit", "job_type": "echo", "timeout_seconds": 30})

            assert (await app.service.get_job("defaulted")).timeout_seconds == 120
            assert (await app.service.get_job("explicit")).timeout_seconds == 30
        finally:
            await app.close()

    @pytest.mark.asyncio
    async def test_reschedule_updates_in_place(self, service, app):
        """같은 owner/name 재등록 → 같은 ID로 수정, attempts 초기화, MODIFIED 이벤트"""
        first = await service.schedule_job({"name": "report", "job_type": "fail", "max_attempts": 3})
        await run_tick(app)
        assert (await service.get_job("report")).attempts == 1

        second = await service.schedule_job({
            "name": "report",
            "job_type": "echo",
            "schedule": HOURLY,
            "priority": "high",
        })

        assert second.created is False
        assert second.job_id == first.job_id
        job = await service.get_job("report")
        assert job.job_type == "echo"
        assert job.priority.value == "high"
        assert job.status == JobStatus.SCHEDULED
        assert job.attempts == 0
        assert job.is_recurring

        events = await service.job_events("report")
        assert events[0].action == HistoryAction.MODIFIED
        assert len(await service.get_scheduled_jobs()) == 1

    @pytest.mark.asyncio
    async def test_reschedule_running_rejected(self, service, app):
        """실행 중인 잡은 수정 불가"""
        release = asyncio.Event()

        async def blocking(params, context):
            await release.wait()

        app.registry.register("blocking", blocking)
        await service.schedule_job({"name": "busy", "job_type": "blocking"})
        await app.dispatcher.tick()
        await asyncio.sleep(0.01)

        with pytest.raises(JobAlreadyRunningError):
            await service.schedule_job({"name": "busy", "job_type": "echo"})

        release.set()
        await app.dispatcher.wait_idle()

    @pytest.mark.asyncio
    async def test_owner_namespaces(self, service):
        """owner가 다르면 같은 이름도 별개 잡"""
        a = await service.schedule_job({"name": "sync", "job_type": "echo", "owner": "team-a"})
        b = await service.schedule_job({"name": "sync", "job_type": "echo", "owner": "team-b"})

        assert a.job_id != b.job_id
        assert len(await service.get_scheduled_jobs()) == 2
        assert [s.owner for s in await service.get_scheduled_jobs("team-a")] == ["team-a"]
        with pytest.raises(JobNotFoundError):
            await service.get_job("sync")

    @pytest.mark.asyncio
    async def test_dependency_cycle_rejected(self, service):
        """기존 잡을 수정해 사이클을 만들면 거부"""
        a = await service.schedule_job({"name": "a", "job_type": "echo"})
        b = await service.schedule_job({"name": "b", "job_type": "echo", "dependencies": [{"job_id": a.job_id}]})

        with pytest.raises(JobValidationError) as exc_info:
            await service.schedule_job({"name": "a", "job_type": "echo", "dependencies": [{"job_id": b.job_id}]})
        assert exc_info.value.errors[0]["type"] == "dependency_cycle"

        with pytest.raises(JobValidationError):
            await service.schedule_job({"name": "a", "job_type": "echo", "dependencies": [{"job_id": a.job_id}]})


class TestRunNow:
    """즉시 실행"""

    @pytest.mark.asyncio
    async def test_run_now_with_override(self, service, app, clock):
        """run_at과 무관하게 실행, override 파라미터는 이번 실행에만 적용"""
        await service.schedule_job({
            "name": "adhoc",
            "job_type": "echo",
            "schedule": {"run_at": (clock() + timedelta(days=7)).isoformat()},
            "parameters": {"region": "eu", "dry_run": True},
        })

        result = await service.run_now("adhoc", {"dry_run": False})

        assert result.status == ExecutionStatus.COMPLETED
        assert result.completed_at == clock()
        job = await service.get_job("adhoc")
        assert job.result.data == {"params": {"region": "eu", "dry_run": False}}
        assert job.parameters == {"region": "eu", "dry_run": True}

        executions = await service.job_history("adhoc")
        assert executions[0].id == result.execution_id
        assert executions[0].manual is True

    @pytest.mark.asyncio
    async def test_run_now_with_job_handler(self, service):
        """잡 전용 핸들러가 job_type 핸들러보다 우선"""
        async def special(params, context: HandlerContext):
            return {"special": context.job_name}

        await service.schedule_job({"name": "custom", "job_type": "unregistered"}, handler=special)

        result = await service.run_now("custom")
        assert result.status == ExecutionStatus.COMPLETED
        assert (await service.get_job("custom")).result.data == {"special": "custom"}

    @pytest.mark.asyncio
    async def test_run_now_missing(self, service):
        """없는 잡 → JobNotFoundError"""
        with pytest.raises(JobNotFoundError):
            await service.run_now("ghost")

    @pytest.mark.asyncio
    async def test_run_now_while_running(self, service, app):
        """실행 중이면 JobAlreadyRunningError"""
        release = asyncio.Event()
        started = asyncio.Event()

        async def blocking(params, context):
            started.set()
            await release.wait()

        app.registry.register("blocking", blocking)
        await service.schedule_job({"name": "busy", "job_type": "blocking"})
        await app.dispatcher.tick()
        await started.wait()

        with pytest.raises(JobAlreadyRunningError):
            await service.run_now("busy")

        release.set()
        await app.dispatcher.wait_idle()

    @pytest.mark.asyncio
    async def test_run_now_failed_job_resets_attempts(self, service, app):
        """failed 잡 즉시 실행 → 시도 횟수 초기화 후 실행"""
        await service.schedule_job({"name": "retry-me", "job_type": "fail", "max_attempts": 1})
        await run_tick(app)
        assert (await service.get_job("retry-me")).status == JobStatus.FAILED

        result = await service.run_now("retry-me")

        assert result.status == ExecutionStatus.FAILED
        job = await service.get_job("retry-me")
        assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_run_now_paused_stays_paused(self, service):
        """paused 잡은 즉시 실행 후에도 paused"""
        await service.schedule_job({"name": "held", "job_type": "echo", "enabled": False})

        await service.run_now("held")

        job = await service.get_job("held")
        assert job.status == JobStatus.PAUSED
        assert job.result.success is True


class TestLifecycle:
    """일시정지 / 재개 / 취소 / 삭제"""

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, service, app, clock):
        """paused 잡은 디스패치 제외, resume 시 남은 미래 run_at 유지"""
        await service.schedule_job({"name": "hourly", "job_type": "echo", "schedule": HOURLY})
        original_run_at = (await service.get_job("hourly")).run_at

        summary = await service.pause_job("hourly", actor="ops")
        assert summary.status == JobStatus.PAUSED

        with pytest.raises(InvalidTransitionError):
            await service.pause_job("hourly")

        clock.advance(minutes=30)
        summary = await service.resume_job("hourly")
        assert summary.status == JobStatus.SCHEDULED
        assert summary.next_run_at == original_run_at

        events = await service.job_events("hourly")
        changes = [e.details.get("change") for e in events if e.action == HistoryAction.MODIFIED]
        assert changes == ["resumed", "paused"]

    @pytest.mark.asyncio
    async def test_paused_past_due_not_dispatched(self, service, app, clock):
        """일시정지 중 run_at이 지나도 실행 안 함, 재개하면 다음 주기로"""
        await service.schedule_job({"name": "hourly", "job_type": "echo", "schedule": HOURLY})
        await service.pause_job("hourly")

        clock.advance(hours=3)
        assert await run_tick(app) == []

        summary = await service.resume_job("hourly")
        assert summary.next_run_at == clock() + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_resume_failed_once_job(self, service, app, clock):
        """failed 1회성 잡 재개 → 즉시 due, attempts 초기화"""
        await service.schedule_job({"name": "once", "job_type": "fail", "max_attempts": 1})
        await run_tick(app)

        summary = await service.resume_job("once")
        assert summary.status == JobStatus.SCHEDULED
        assert summary.attempts == 0
        assert summary.next_run_at == clock()

    @pytest.mark.asyncio
    async def test_resume_requires_paused_or_failed(self, service):
        """scheduled 잡 재개 → InvalidTransitionError"""
        await service.schedule_job({"name": "active", "job_type": "echo"})
        with pytest.raises(InvalidTransitionError):
            await service.resume_job("active")

    @pytest.mark.asyncio
    async def test_toggle(self, service, app):
        """enabled 전환 (종료된 잡 비활성화는 무시)"""
        await service.schedule_job({"name": "toggled", "job_type": "echo", "schedule": HOURLY})

        assert (await service.toggle_job("toggled", False)).status == JobStatus.PAUSED
        assert (await service.toggle_job("toggled", False)).status == JobStatus.PAUSED
        assert (await service.toggle_job("toggled", True)).status == JobStatus.SCHEDULED

        await service.schedule_job({"name": "done", "job_type": "echo"})
        await run_tick(app)
        assert (await service.toggle_job("done", False)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel(self, service, app, clock):
        """취소 → cancelled, 이후 디스패치 제외, 재취소 불가"""
        await service.schedule_job({"name": "to-cancel", "job_type": "echo", "schedule": HOURLY})

        summary = await service.cancel_job("to-cancel", reason="no longer needed", actor="ops")
        assert summary.status == JobStatus.CANCELLED
        assert summary.next_run_at is None

        clock.advance(hours=2)
        assert await run_tick(app) == []

        with pytest.raises(InvalidTransitionError):
            await service.cancel_job("to-cancel")

        events = await service.job_events("to-cancel")
        assert events[0].action == HistoryAction.CANCELLED
        assert events[0].details["reason"] == "no longer needed"
        assert events[0].details["running"] is False

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, service, app):
        """실행 중 취소 → 핸들러에 취소 신호, 종료 후에도 cancelled 유지"""
        started = asyncio.Event()

        async def cooperative(params, context: HandlerContext):
            started.set()
            while not context.cancelled:
                await asyncio.sleep(0.01)
            return {"cancelled": True}

        app.registry.register("cooperative", cooperative)
        await service.schedule_job({"name": "long", "job_type": "cooperative", "schedule": HOURLY})
        task = asyncio.create_task(service.run_now("long"))
        await started.wait()

        await service.cancel_job("long", reason="stop")
        result = await asyncio.wait_for(task, timeout=2)

        assert result.status == ExecutionStatus.COMPLETED
        job = await service.get_job("long")
        assert job.status == JobStatus.CANCELLED
        events = await service.job_events("long")
        cancelled = [e for e in events if e.action == HistoryAction.CANCELLED]
        assert cancelled[0].details["running"] is True

    @pytest.mark.asyncio
    async def test_delete(self, service, app):
        """삭제 → 잡과 실행 이력/이벤트 제거"""
        await service.schedule_job({"name": "temp", "job_type": "echo"})
        await run_tick(app)

        assert await service.delete_job("temp") is True

        with pytest.raises(JobNotFoundError):
            await service.get_job("temp")
        assert await service.job_history("temp") == []
        assert await service.job_events("temp") == []

        with pytest.raises(JobNotFoundError):
            await service.delete_job("temp")

    @pytest.mark.asyncio
    async def test_delete_removes_job_handler(self, service, app):
        """삭제 후 같은 이름으로 재등록하면 이전 전용 핸들러는 쓰지 않음"""
        async def special(params, context):
            return "special"

        await service.schedule_job({"name": "custom", "job_type": "echo"}, handler=special)
        await service.delete_job("custom")
        await service.schedule_job({"name": "custom", "job_type": "echo"})

        await service.run_now("custom")
        assert (await service.get_job("custom")).result.data == {"params": {}}


class TestQueries:
    """조회"""

    @pytest.mark.asyncio
    async def test_scheduled_jobs_ordered_by_next_run(self, service, clock):
        """다음 실행 시각 오름차순"""
        for name, hours in (("third", 3), ("first", 1), ("second", 2)):
            await service.schedule_job({
                "name": name,
                "job_type": "echo",
                "schedule": {"run_at": (clock() + timedelta(hours=hours)).isoformat()},
            })

        names = [s.job_name for s in await service.get_scheduled_jobs()]
        assert names == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_history_newest_first_with_limit(self, service, app, clock):
        """실행 이력은 최신순, limit 적용"""
        await service.schedule_job({"name": "hourly", "job_type": "echo", "schedule": HOURLY})
        for _ in range(3):
            clock.advance(hours=1)
            await run_tick(app)

        executions = await service.job_history("hourly", limit=2)
        assert len(executions) == 2
        assert executions[0].started_at > executions[1].started_at

        events = await service.job_events("hourly")
        assert events[0].action == HistoryAction.EXECUTED
        assert events[-1].action == HistoryAction.SCHEDULED

    @pytest.mark.asyncio
    async def test_stats(self, service, app, clock):
        """성공률 / 평균 실행 시간"""
        await service.schedule_job({"name": "mixed", "job_type": "echo", "schedule": HOURLY})
        clock.advance(hours=1)
        await run_tick(app)

        app.registry.override("mixed", app.registry.resolve("fail"))
        await service.run_now("mixed")

        stats = await service.get_job_stats("mixed")
        assert stats.total == 2
        assert stats.completed == 1
        assert stats.retrying == 1
        assert stats.success_rate == 50.0
        assert stats.average_duration_ms >= 0

    @pytest.mark.asyncio
    async def test_stats_empty(self, service):
        """실행 이력 없으면 0"""
        stats = await service.get_job_stats("never-run")
        assert stats.total == 0
        assert stats.success_rate == 0.0


class TestCleanup:
    """오래된 종료 잡 정리"""

    @pytest.mark.asyncio
    async def test_cleanup_finished_jobs(self, service, app, clock):
        """days_old 이전에 끝난 잡만 삭제"""
        await service.schedule_job({"name": "old-done", "job_type": "echo"})
        await service.schedule_job({"name": "still-active", "job_type": "echo", "schedule": HOURLY})
        await run_tick(app)

        clock.advance(days=31)
        await service.schedule_job({"name": "recent-done", "job_type": "echo"})
        await run_tick(app)

        deleted = await service.cleanup_finished_jobs(days_old=30)

        assert deleted == 1
        names = {s.job_name for s in await service.get_scheduled_jobs()}
        assert names == {"still-active", "recent-done"}
        assert await service.job_history("old-done") == []
