"""
스케줄링 API

잡 등록/수정, 즉시 실행, 일시정지/재개/취소/삭제, 조회 기능을 제공합니다.
상태 변경은 모두 Job Store에 대한 read-modify-write이며
라이프사이클 이벤트는 Execution Log Store의 이력으로 남습니다.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError

from scheduler.calculator import initial_run_at, next_run, validate_cron_expression
from scheduler.exception import (
    InvalidTransitionError,
    JobAlreadyRunningError,
    JobNotFoundError,
    JobValidationError,
    UnsupportedScheduleError,
)
from scheduler.model import (
    TERMINAL_STATUSES,
    Execution,
    HistoryAction,
    HistoryEntry,
    Job,
    JobDefinition,
    JobStats,
    JobStatus,
    JobSummary,
    RunNowResult,
    ScheduleResult,
    utcnow,
)
from scheduler.policy import find_dependency_cycle
from scheduler.store.base import ExecutionLogStore, JobStore
from worker.base import HandlerRegistry
from worker.executor import Executor

logger = logging.getLogger(__name__)

# pause 가능한 상태
_PAUSABLE_STATUSES = (JobStatus.SCHEDULED, JobStatus.QUEUED, JobStatus.RETRYING, JobStatus.RUNNING)


def _to_summary(job: Job) -> JobSummary:
    return JobSummary(
        id=job.id,
        owner=job.owner,
        job_name=job.name,
        job_type=job.job_type,
        status=job.status,
        priority=job.priority,
        schedule=job.schedule,
        next_run_at=job.next_run_at,
        last_run_at=job.last_run_at,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
    )


class SchedulerService:
    """스케줄링 API"""

    def __init__(
        self,
        job_store: JobStore,
        log_store: ExecutionLogStore,
        executor: Executor,
        registry: HandlerRegistry,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._job_store = job_store
        self._log_store = log_store
        self._executor = executor
        self._registry = registry
        self._clock = clock

    # ------------------------------------------------------------------
    # 등록
    # ------------------------------------------------------------------

    async def schedule_job(
        self,
        definition: JobDefinition | dict[str, Any],
        handler: Any = None,
    ) -> ScheduleResult:
        """
        잡 등록 (같은 owner/name이 있으면 수정)

        Args:
            definition: 잡 정의
            handler: 이 잡 전용 핸들러 (BaseHandler, 클래스, async 함수)

        Raises:
            JobValidationError: 정의/스케줄/의존성이 올바르지 않음 (잡 레코드 생성 안 됨)
            JobAlreadyRunningError: 실행 중인 잡을 수정하려 함
        """
        definition = self._parse_definition(definition)
        self._validate_schedule(definition)

        now = self._clock()
        existing = await self._job_store.get_by_name(definition.name, definition.owner)
        job_id = existing.id if existing else None

        if existing and (existing.status == JobStatus.RUNNING or self._executor.is_running(existing.run_key)):
            raise JobAlreadyRunningError(definition.name)

        await self._validate_dependencies(definition, job_id)

        run_at = self._initial_run_at(definition, now)
        status = JobStatus.SCHEDULED if definition.enabled else JobStatus.PAUSED
        fields = dict(
            job_type=definition.job_type,
            schedule=definition.schedule,
            status=status,
            priority=definition.priority,
            run_at=run_at,
            next_run_at=run_at,
            attempts=0,
            max_attempts=definition.max_attempts,
            retry_delay_seconds=definition.retry_delay_seconds,
            timeout_seconds=definition.timeout_seconds or self._executor.config.default_timeout_seconds,
            dependencies=definition.dependencies,
            parameters=definition.parameters,
            tags=definition.tags,
            metadata=definition.metadata,
            updated_at=now,
        )

        if existing:
            job = Job.model_validate({**existing.model_dump(), **fields})
            action = HistoryAction.MODIFIED
        else:
            job = Job(owner=definition.owner, name=definition.name, created_at=now, **fields)
            action = HistoryAction.SCHEDULED

        if handler is not None:
            self._registry.override(job.name, handler, owner=job.owner)
        elif not self._registry.has(job.job_type):
            logger.warning(f"No handler registered yet for job_type={job.job_type} (job={job.run_key})")

        await self._job_store.save(job)
        await self._record(job, action, now, definition.actor, {
            "job_type": job.job_type,
            "schedule": job.schedule.model_dump(mode="json"),
            "status": job.status.value,
        })

        logger.info(
            f"Job {'updated' if existing else 'scheduled'}: job={job.run_key}, "
            f"type={job.job_type}, status={job.status.value}, next_run_at={job.next_run_at}"
        )
        return ScheduleResult(
            job_id=job.id,
            job_name=job.name,
            next_run_at=job.next_run_at,
            created=existing is None,
        )

    @staticmethod
    def _parse_definition(definition: JobDefinition | dict[str, Any]) -> JobDefinition:
        if isinstance(definition, JobDefinition):
            return definition
        try:
            return JobDefinition.model_validate(definition)
        except ValidationError as e:
            raise JobValidationError(
                f"Invalid job definition: {e.error_count()} error(s)",
                e.errors(include_url=False, include_context=False),
            ) from e

    @staticmethod
    def _validate_schedule(definition: JobDefinition) -> None:
        expression = definition.schedule.cron_expression
        if expression is None:
            return
        try:
            validate_cron_expression(expression)
        except UnsupportedScheduleError as e:
            raise JobValidationError(
                e.message,
                [{"loc": ["schedule", "cron_expression"], "msg": e.message, "type": "unsupported_schedule"}],
            ) from e

    @staticmethod
    def _initial_run_at(definition: JobDefinition, now: datetime) -> datetime:
        """첫 실행 시각 (형식은 맞지만 일치하는 날짜가 없는 크론도 검증 오류)"""
        try:
            return initial_run_at(definition.schedule, now)
        except UnsupportedScheduleError as e:
            raise JobValidationError(
                e.message,
                [{"loc": ["schedule"], "msg": e.message, "type": "unsupported_schedule"}],
            ) from e

    async def _validate_dependencies(self, definition: JobDefinition, job_id: str | None) -> None:
        if not definition.dependencies:
            return
        dependency_ids = [dep.job_id for dep in definition.dependencies]
        if job_id is None:
            # 신규 잡은 아직 누구의 선행 잡도 아니므로 자기 참조만 사이클
            return
        cycle = await find_dependency_cycle(job_id, dependency_ids, self._job_store)
        if cycle:
            raise JobValidationError(
                f"Dependency cycle detected: {' -> '.join(cycle)}",
                [{"loc": ["dependencies"], "msg": "dependency cycle", "type": "dependency_cycle", "cycle": cycle}],
            )

    # ------------------------------------------------------------------
    # 실행 / 상태 전이
    # ------------------------------------------------------------------

    async def run_now(
        self,
        job_name: str,
        override_parameters: dict[str, Any] | None = None,
        owner: str = "default",
    ) -> RunNowResult:
        """
        즉시 실행 (run_at, 상태와 무관)

        실행이 끝날 때까지 기다린 뒤 결과를 반환합니다.
        paused/cancelled 잡은 실행 후 원래 상태로 돌아갑니다.

        Raises:
            JobNotFoundError: 잡 없음
            JobAlreadyRunningError: 이미 실행 중
        """
        job = await self._require(job_name, owner)
        if self._executor.is_running(job.run_key):
            raise JobAlreadyRunningError(job_name)

        if job.status == JobStatus.FAILED and job.attempts:
            job.attempts = 0
            job.updated_at = self._clock()
            await self._job_store.save(job)

        logger.info(f"Manual run requested: job={job.run_key}")
        execution = await self._executor.execute(job, override_parameters=override_parameters, manual=True)
        if execution is None:
            # 다른 인스턴스가 리스를 보유 중
            raise JobAlreadyRunningError(job_name)

        return RunNowResult(
            job_id=job.id,
            execution_id=execution.id,
            status=execution.status,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
        )

    async def toggle_job(
        self,
        job_name: str,
        enabled: bool,
        owner: str = "default",
        actor: str | None = None,
    ) -> JobSummary:
        """
        활성/비활성 전환

        - enabled=False: pause (이미 멈췄거나 종료된 잡은 그대로)
        - enabled=True: paused/failed/cancelled 잡을 scheduled로 복귀
        """
        job = await self._require(job_name, owner)

        if not enabled:
            if job.status in _PAUSABLE_STATUSES:
                job = await self._pause(job, actor)
            else:
                logger.debug(f"Toggle off ignored: job={job.run_key}, status={job.status.value}")
            return _to_summary(job)

        if job.status in (JobStatus.PAUSED, JobStatus.FAILED, JobStatus.CANCELLED):
            job = await self._resume(job, actor)
        else:
            logger.debug(f"Toggle on ignored: job={job.run_key}, status={job.status.value}")
        return _to_summary(job)

    async def pause_job(self, job_name: str, owner: str = "default", actor: str | None = None) -> JobSummary:
        """
        일시정지 (resume 전까지 디스패치 제외)

        Raises:
            InvalidTransitionError: 종료 상태 또는 이미 paused
        """
        job = await self._require(job_name, owner)
        if job.status not in _PAUSABLE_STATUSES:
            raise InvalidTransitionError(job_name, job.status.value, "pause")
        return _to_summary(await self._pause(job, actor))

    async def resume_job(self, job_name: str, owner: str = "default", actor: str | None = None) -> JobSummary:
        """
        재개 (paused → scheduled, failed 잡은 시도 횟수 초기화 후 재개)

        Raises:
            InvalidTransitionError: paused/failed가 아닌 잡
        """
        job = await self._require(job_name, owner)
        if job.status not in (JobStatus.PAUSED, JobStatus.FAILED):
            raise InvalidTransitionError(job_name, job.status.value, "resume")
        return _to_summary(await self._resume(job, actor))

    async def cancel_job(
        self,
        job_name: str,
        reason: str | None = None,
        owner: str = "default",
        actor: str | None = None,
    ) -> JobSummary:
        """
        취소 (종료 상태, 이후 디스패치 제외)

        실행 중이면 핸들러에 취소 신호를 보냅니다 (협조적 취소).

        Raises:
            InvalidTransitionError: 이미 종료된 잡
        """
        job = await self._require(job_name, owner)
        if job.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(job_name, job.status.value, "cancel")

        now = self._clock()
        previous = job.status
        job.status = JobStatus.CANCELLED
        job.next_run_at = None
        job.updated_at = now
        await self._job_store.save(job)

        signalled = self._executor.signal_cancel(job.run_key)
        await self._record(job, HistoryAction.CANCELLED, now, actor, {
            "reason": reason,
            "previous_status": previous.value,
            "running": signalled,
        })
        logger.info(f"Job cancelled: job={job.run_key}, reason={reason}")
        return _to_summary(job)

    async def delete_job(self, job_name: str, owner: str = "default") -> bool:
        """
        잡 삭제 (실행 이력/이벤트 포함)

        Raises:
            JobNotFoundError: 잡 없음
        """
        job = await self._require(job_name, owner)
        self._executor.signal_cancel(job.run_key)
        await self._remove(job)
        logger.info(f"Job deleted: job={job.run_key}")
        return True

    async def _pause(self, job: Job, actor: str | None) -> Job:
        now = self._clock()
        previous = job.status
        job.status = JobStatus.PAUSED
        job.updated_at = now
        await self._job_store.save(job)
        await self._record(job, HistoryAction.MODIFIED, now, actor, {
            "change": "paused",
            "previous_status": previous.value,
        })
        logger.info(f"Job paused: job={job.run_key}")
        return job

    async def _resume(self, job: Job, actor: str | None) -> Job:
        now = self._clock()
        previous = job.status

        if previous in (JobStatus.FAILED, JobStatus.CANCELLED) or job.attempts >= job.max_attempts:
            job.attempts = 0

        if job.run_at is not None and job.run_at > now:
            run_at = job.run_at
        elif job.is_recurring:
            run_at = next_run(job.schedule, now)
        else:
            run_at = now

        job.status = JobStatus.SCHEDULED
        job.run_at = run_at
        job.next_run_at = run_at
        job.updated_at = now
        await self._job_store.save(job)
        await self._record(job, HistoryAction.MODIFIED, now, actor, {
            "change": "resumed",
            "previous_status": previous.value,
            "next_run_at": run_at.isoformat(),
        })
        logger.info(f"Job resumed: job={job.run_key}, next_run_at={run_at}")
        return job

    async def _remove(self, job: Job) -> None:
        await self._job_store.delete(job.id)
        await self._log_store.delete_for_job(job.id)
        self._registry.remove_override(job.name, owner=job.owner)

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    async def get_job(self, job_name: str, owner: str = "default") -> Job:
        return await self._require(job_name, owner)

    async def get_scheduled_jobs(self, owner: str | None = None) -> list[JobSummary]:
        """잡 목록 (다음 실행 시각 순)"""
        jobs = await self._job_store.list_jobs(owner)
        return [_to_summary(job) for job in jobs]

    async def job_history(self, job_name: str, limit: int = 20, owner: str = "default") -> list[Execution]:
        """실행 이력 (최신순)"""
        return await self._log_store.list_executions(job_name, owner, limit)

    async def job_events(self, job_name: str, limit: int = 50, owner: str = "default") -> list[HistoryEntry]:
        """라이프사이클 이벤트 (최신순)"""
        return await self._log_store.list_history(job_name, owner, limit)

    async def get_job_stats(self, job_name: str, owner: str = "default") -> JobStats:
        """실행 통계"""
        return await self._log_store.get_stats(job_name, owner)

    # ------------------------------------------------------------------
    # 정리
    # ------------------------------------------------------------------

    async def cleanup_finished_jobs(self, days_old: int = 30) -> int:
        """
        오래된 종료 잡 정리

        completed/failed/cancelled 상태로 days_old일 이상 지난 잡을
        실행 이력/이벤트와 함께 삭제합니다.

        Returns:
            삭제된 잡 수
        """
        cutoff = self._clock() - timedelta(days=days_old)
        deleted = 0
        for job in await self._job_store.find_finished_before(cutoff):
            if self._executor.is_running(job.run_key):
                continue
            await self._remove(job)
            deleted += 1

        if deleted:
            logger.info(f"Cleaned up {deleted} finished jobs older than {days_old} days")
        return deleted

    # ------------------------------------------------------------------

    async def _require(self, job_name: str, owner: str) -> Job:
        job = await self._job_store.get_by_name(job_name, owner)
        if job is None:
            raise JobNotFoundError(job_name, owner)
        return job

    async def _record(
        self,
        job: Job,
        action: HistoryAction,
        now: datetime,
        actor: str | None,
        details: dict[str, Any],
    ) -> None:
        await self._log_store.append_history(HistoryEntry(
            job_id=job.id,
            job_name=job.name,
            owner=job.owner,
            action=action,
            timestamp=now,
            actor=actor,
            details=details,
        ))
