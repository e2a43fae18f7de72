"""
잡 실행기 모듈

개별 잡의 1회 실행을 담당합니다.

    scheduled/retrying → running → scheduled (반복 잡 성공)
                                 → completed (1회성 잡 성공)
                                 → retrying  (실패, 시도 횟수 남음, run_at = now + backoff)
                                 → failed    (실패, 재시도 불가 또는 소진 → 알림 1회)

재시도는 타이머 없이 run_at만 갱신하고 Dispatcher의 due 조회로 다시 들어옵니다.
running 전환 뒤 스토어 오류로 결과를 반영하지 못하면 같은 재시도 규칙으로 running에서 되돌립니다.
"""

import asyncio
import json
import logging
import time
import traceback
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from scheduler.calculator import next_run
from scheduler.exception import JobAlreadyRunningError, UnsupportedScheduleError
from scheduler.model import (
    DISPATCHABLE_STATUSES,
    ErrorInfo,
    Execution,
    ExecutionStatus,
    HistoryAction,
    HistoryEntry,
    Job,
    JobResult,
    JobStatus,
    utcnow,
)
from scheduler.policy import backoff
from scheduler.store.base import ExecutionLogStore, JobStore
from worker.base import BaseHandler, HandlerRegistry
from worker.exception import HandlerError, InvalidParametersError, JobTimeoutError
from worker.model.executor import ExecutorConfig, RunSlot
from worker.model.handler import HandlerContext, HandlerResult
from worker.notifier import FailureNotice, LoggingNotifier, Notifier, send_failure_notice

logger = logging.getLogger(__name__)

# 실행 도중 외부에서 바뀌면 실행 결과보다 우선하는 상태
_HELD_STATUSES = (JobStatus.PAUSED, JobStatus.CANCELLED)


def _json_safe(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def _error_info(error: Exception) -> ErrorInfo:
    return ErrorInfo(
        message=str(error) or type(error).__name__,
        code=getattr(error, 'code', None) or type(error).__name__,
        details=_json_safe(getattr(error, 'details', None)),
        stack=''.join(traceback.format_exception(type(error), error, error.__traceback__)),
    )


def _normalize_output(output: Any) -> HandlerResult:
    if isinstance(output, HandlerResult):
        return output
    if isinstance(output, BaseModel):
        return HandlerResult(data=output.model_dump())
    return HandlerResult(data=output)


class Executor:
    """
    잡 실행기

    프로세스 내 실행 집합(run_key → RunSlot)을 소유하며
    같은 잡이 한 프로세스에서 동시에 두 번 실행되지 않도록 합니다.
    """

    def __init__(
        self,
        job_store: JobStore,
        log_store: ExecutionLogStore,
        registry: HandlerRegistry,
        notifier: Notifier | None = None,
        config: ExecutorConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._job_store = job_store
        self._log_store = log_store
        self._registry = registry
        self._notifier = notifier or LoggingNotifier()
        self._config = config or ExecutorConfig()
        self._clock = clock
        self._running: dict[str, RunSlot] = {}

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    # ------------------------------------------------------------------
    # 실행 집합
    # ------------------------------------------------------------------

    def try_acquire(self, key: str) -> RunSlot | None:
        """실행 집합에 자리 확보 (이미 있으면 None)"""
        if key in self._running:
            return None
        slot = RunSlot(key=key)
        self._running[key] = slot
        return slot

    def release(self, slot: RunSlot) -> None:
        """자리 반환 (여러 번 호출해도 안전)"""
        if self._running.get(slot.key) is slot:
            del self._running[slot.key]

    def is_running(self, key: str) -> bool:
        return key in self._running

    @property
    def running_count(self) -> int:
        return len(self._running)

    def running_keys(self) -> list[str]:
        return list(self._running.keys())

    def signal_cancel(self, key: str) -> bool:
        """실행 중인 핸들러에 취소 신호 전달 (협조적 취소)"""
        slot = self._running.get(key)
        if slot is None:
            return False
        slot.cancel_event.set()
        logger.info(f"Cancellation signalled to running job: {key}")
        return True

    # ------------------------------------------------------------------
    # 실행
    # ------------------------------------------------------------------

    async def execute(
        self,
        job: Job,
        override_parameters: dict[str, Any] | None = None,
        manual: bool = False,
        slot: RunSlot | None = None,
    ) -> Execution | None:
        """
        잡 1회 실행

        Args:
            job: 실행할 잡 (실행 직전에 스토어에서 다시 읽음)
            override_parameters: 이번 실행에만 덮어쓸 파라미터
            manual: 즉시 실행 여부 (상태 검사 생략)
            slot: 호출자가 미리 확보한 실행 집합 자리

        Returns:
            종료된 Execution, 실행하지 않았으면 None

        Raises:
            JobAlreadyRunningError: slot 없이 호출했는데 이미 실행 중
        """
        if slot is None:
            slot = self.try_acquire(job.run_key)
            if slot is None:
                raise JobAlreadyRunningError(job.name)

        try:
            return await self._run(job.id, override_parameters, manual, slot, job.timeout_seconds)
        finally:
            self.release(slot)

    async def _run(
        self,
        job_id: str,
        override_parameters: dict[str, Any] | None,
        manual: bool,
        slot: RunSlot,
        timeout_seconds: float,
    ) -> Execution | None:
        now = self._clock()

        # 리스를 먼저 잡고 상태를 읽으므로 그 사이의 취소/일시정지가 running으로 덮이지 않음.
        # 이후 running 저장까지의 짧은 구간은 마지막 쓰기 우선
        holder = self._config.instance_id
        lease_expires = now + timedelta(seconds=timeout_seconds + self._config.lease_margin_seconds)
        if not await self._job_store.acquire_lease(job_id, holder, lease_expires, now):
            logger.info(f"Job lease not acquired (held by another instance or job removed): id={job_id}")
            return None

        try:
            job = await self._job_store.get(job_id)
            if job is None:
                logger.warning(f"Job disappeared before execution: id={job_id}")
                return None

            if not manual and job.status not in DISPATCHABLE_STATUSES:
                logger.debug(f"Skipping job not in dispatchable state: job={job.run_key}, status={job.status.value}")
                return None

            return await self._run_leased(job, override_parameters, manual, slot, now)
        finally:
            try:
                await self._job_store.release_lease(job_id, holder)
            except Exception as e:
                logger.error(f"Failed to release lease: id={job_id}, error={e}", exc_info=True)

    async def _run_leased(
        self,
        job: Job,
        override_parameters: dict[str, Any] | None,
        manual: bool,
        slot: RunSlot,
        now: datetime,
    ) -> Execution:
        previous_status = job.status

        # 1. running 진입
        if job.attempts >= job.max_attempts:
            job.attempts = 0
        job.attempts += 1
        job.status = JobStatus.RUNNING
        job.started_at = now
        job.updated_at = now
        await self._job_store.save(job)

        execution = Execution(
            job_id=job.id,
            job_name=job.name,
            owner=job.owner,
            started_at=now,
            retry_count=job.attempts - 1,
            manual=manual,
        )
        created = False
        try:
            await self._log_store.create_execution(execution)
            created = True

            logger.info(
                f"Job started: job={job.run_key}, attempt={job.attempts}/{job.max_attempts}, "
                f"execution_id={execution.id}, manual={manual}"
            )
            return await self._execute_handler(job, execution, override_parameters, manual, slot, previous_status)
        except Exception as e:
            # 결과 반영 전에 스토어가 실패해도 잡을 running에 남기지 않음
            await self._recover_after_error(job, execution if created else None, e)
            raise

    async def _execute_handler(
        self,
        job: Job,
        execution: Execution,
        override_parameters: dict[str, Any] | None,
        manual: bool,
        slot: RunSlot,
        previous_status: JobStatus,
    ) -> Execution:
        # 2. 핸들러 실행
        context = HandlerContext(
            job_id=job.id,
            job_name=job.name,
            owner=job.owner,
            attempt=job.attempts,
            execution_id=execution.id,
            manual=manual,
            cancel_event=slot.cancel_event,
        )
        parameters = {**job.parameters, **(override_parameters or {})}

        started = time.perf_counter()
        output: HandlerResult | None = None
        error: Exception | None = None
        try:
            output = await self._invoke(job, parameters, context)
            if not output.success:
                raise HandlerError(output.message or "Handler reported failure", details=output.data)
        except Exception as e:
            error = e
        duration_ms = int((time.perf_counter() - started) * 1000)

        # 3. 결과 반영
        finished_at = self._clock()
        current = await self._job_store.get(job.id)
        if current is None:
            logger.warning(f"Job deleted during execution, finalizing execution only: job={job.run_key}")
            self._finish_execution_fields(execution, output, error, finished_at, duration_ms, will_retry=False)
            await self._log_store.finish_execution(execution)
            return execution

        held_status = None
        if current.status in _HELD_STATUSES:
            held_status = current.status
        elif manual and previous_status in _HELD_STATUSES:
            held_status = previous_status

        if error is None:
            await self._apply_success(current, output, execution, finished_at, duration_ms, held_status)
        else:
            await self._apply_failure(current, error, execution, finished_at, duration_ms, held_status)
        return execution

    async def _invoke(self, job: Job, parameters: dict[str, Any], context: HandlerContext) -> HandlerResult:
        """핸들러 해석 → 파라미터 검증 → 타임아웃 내 실행"""
        handler = self._registry.resolve(job.job_type, job.name, job.owner)
        params = self._parse_params(handler, job.job_type, parameters)

        timeout = job.timeout_seconds
        try:
            output = await asyncio.wait_for(handler.execute(params, context), timeout=timeout)
        except asyncio.TimeoutError:
            raise JobTimeoutError(job.name, timeout)
        return _normalize_output(output)

    @staticmethod
    def _parse_params(handler: BaseHandler, job_type: str, parameters: dict[str, Any]) -> Any:
        model = handler.params_model
        if model is None:
            return dict(parameters)
        try:
            return model.model_validate(parameters)
        except ValidationError as e:
            raise InvalidParametersError(job_type, json.loads(e.json(include_url=False)))

    @staticmethod
    def _finish_execution_fields(
        execution: Execution,
        output: HandlerResult | None,
        error: Exception | None,
        finished_at: datetime,
        duration_ms: int,
        will_retry: bool,
    ) -> None:
        execution.completed_at = finished_at
        execution.duration_ms = duration_ms
        if error is None:
            execution.status = ExecutionStatus.COMPLETED
            execution.result = _json_safe(output.model_dump()) if output else None
        else:
            execution.status = ExecutionStatus.RETRYING if will_retry else ExecutionStatus.FAILED
            execution.error = str(error) or type(error).__name__
            execution.error_code = getattr(error, 'code', None) or type(error).__name__

    async def _apply_success(
        self,
        job: Job,
        output: HandlerResult,
        execution: Execution,
        now: datetime,
        duration_ms: int,
        held_status: JobStatus | None,
    ) -> None:
        job.result = JobResult(
            success=True,
            data=_json_safe(output.data),
            duration_ms=duration_ms,
            records_processed=output.records_processed,
            records_affected=output.records_affected,
        )
        job.last_run_at = now
        job.completed_at = now
        job.updated_at = now

        schedule_error: UnsupportedScheduleError | None = None
        if job.is_recurring:
            try:
                upcoming = next_run(job.schedule, now)
            except UnsupportedScheduleError as e:
                schedule_error = e
            else:
                job.status = JobStatus.SCHEDULED
                job.run_at = upcoming
                job.next_run_at = upcoming
                job.attempts = 0
        else:
            job.status = JobStatus.COMPLETED
            job.next_run_at = None

        if schedule_error is not None:
            # 다시 시도해도 계산할 수 없으므로 재시도 없이 failed
            job.status = JobStatus.FAILED
            job.failed_at = now
            job.next_run_at = None
            job.result.success = False
            job.result.error = _error_info(schedule_error)
            logger.error(f"Cannot compute next run, job failed: job={job.run_key}, error={schedule_error.message}")

        if held_status is not None:
            job.status = held_status

        self._finish_execution_fields(execution, output, None, now, duration_ms, will_retry=False)
        await self._log_store.finish_execution(execution)
        await self._job_store.save(job)
        await self._record(job, HistoryAction.EXECUTED, now, {
            "execution_id": execution.id,
            "attempt": job.attempts,
            "duration_ms": duration_ms,
            "manual": execution.manual,
        })

        if schedule_error is not None and held_status is None:
            await self._notify(job, schedule_error)
            return

        logger.info(
            f"Job completed: job={job.run_key}, duration={duration_ms}ms, "
            f"status={job.status.value}, next_run_at={job.next_run_at}"
        )

    async def _apply_failure(
        self,
        job: Job,
        error: Exception,
        execution: Execution,
        now: datetime,
        duration_ms: int,
        held_status: JobStatus | None,
    ) -> None:
        info = _error_info(error)
        retryable = getattr(error, 'retryable', True)
        will_retry = held_status is None and retryable and job.attempts < job.max_attempts

        job.result = JobResult(success=False, error=info, duration_ms=duration_ms)
        job.last_run_at = now
        job.updated_at = now

        if will_retry:
            delay = backoff(job.attempts, job.retry_delay_seconds, self._config.max_retry_delay_seconds)
            job.status = JobStatus.RETRYING
            job.run_at = now + delay
            job.next_run_at = job.run_at
            logger.warning(
                f"Job failed, retry scheduled: job={job.run_key}, attempt={job.attempts}/{job.max_attempts}, "
                f"retry_at={job.run_at.isoformat()}, error={info.message}"
            )
        elif held_status is not None:
            job.status = held_status
            logger.warning(f"Job failed while {held_status.value}: job={job.run_key}, error={info.message}")
        else:
            job.status = JobStatus.FAILED
            job.failed_at = now
            job.next_run_at = None
            logger.error(
                f"Job failed permanently: job={job.run_key}, attempts={job.attempts}/{job.max_attempts}, "
                f"error={info.message}"
            )

        self._finish_execution_fields(execution, None, error, now, duration_ms, will_retry=will_retry)
        await self._log_store.finish_execution(execution)
        await self._job_store.save(job)
        await self._record(job, HistoryAction.FAILED, now, {
            "execution_id": execution.id,
            "attempt": job.attempts,
            "error": info.message,
            "code": info.code,
            "will_retry": will_retry,
        })

        if job.status == JobStatus.FAILED:
            await self._notify(job, error)

    async def _recover_after_error(self, job: Job, execution: Execution | None, error: Exception) -> None:
        """
        실행 도중 스토어 오류 복구

        잡이 아직 running이면 재시도(run_at = now + backoff) 또는 failed로 되돌리고,
        생성된 Execution은 종료 처리합니다. 복구 저장마저 실패하면
        만료된 리스를 기준으로 다음 기동 시 복구됩니다.
        """
        now = self._clock()
        logger.error(f"Store error during execution: job={job.run_key}, error={error}", exc_info=True)

        try:
            current = await self._job_store.get(job.id)
            will_retry = False
            if current is not None and current.status == JobStatus.RUNNING:
                will_retry = current.can_retry
                current.result = JobResult(success=False, error=_error_info(error))
                current.last_run_at = now
                current.updated_at = now
                if will_retry:
                    current.status = JobStatus.RETRYING
                    current.run_at = now + backoff(
                        current.attempts, current.retry_delay_seconds, self._config.max_retry_delay_seconds
                    )
                    current.next_run_at = current.run_at
                else:
                    current.status = JobStatus.FAILED
                    current.failed_at = now
                    current.next_run_at = None
                await self._job_store.save(current)
                logger.warning(f"Job returned from running after store error: job={job.run_key}, status={current.status.value}")

            if execution is not None and execution.status == ExecutionStatus.RUNNING:
                self._finish_execution_fields(execution, None, error, now, 0, will_retry=will_retry)
                await self._log_store.finish_execution(execution)

            if current is not None and current.status == JobStatus.FAILED:
                await self._notify(current, error)
        except Exception as e:
            logger.error(f"Failed to recover job after store error: job={job.run_key}, error={e}", exc_info=True)

    async def _record(self, job: Job, action: HistoryAction, now: datetime, details: dict[str, Any]) -> None:
        await self._log_store.append_history(HistoryEntry(
            job_id=job.id,
            job_name=job.name,
            owner=job.owner,
            action=action,
            timestamp=now,
            details=details,
        ))

    async def _notify(self, job: Job, error: Exception) -> None:
        await send_failure_notice(self._notifier, FailureNotice(
            job_id=job.id,
            job_name=job.name,
            owner=job.owner,
            attempts=job.attempts,
            error_message=str(error) or type(error).__name__,
            error_code=getattr(error, 'code', None),
        ))
