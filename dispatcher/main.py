"""
Dispatcher: due 잡 폴링 및 실행 모듈

고정 주기(tick)마다 Job Store에서 실행 시점에 도달한 잡을 조회하여
Executor 실행 태스크를 만들고, 태스크 완료를 기다리지 않고 바로 다음 틱을 준비합니다.

중복 실행 방지:
- 프로세스 내 실행 집합 (Executor.try_acquire)
- Job Store 리스 (locked_by, lock_expires_at)

실행 방법:
    python main.py
    nexusjobs run
"""

import asyncio
import functools
import logging
from datetime import datetime
from typing import Callable

from database import ConnectionPoolExhaustedError, DatabaseError
from dispatcher.exception import DispatchError
from dispatcher.model.dispatcher import DispatcherConfig
from scheduler.exception import DependencyUnsatisfiedError
from scheduler.model import HistoryAction, HistoryEntry, Job, JobStatus, utcnow
from scheduler.policy import unsatisfied_dependencies
from scheduler.store.base import ExecutionLogStore, JobStore
from worker.executor import Executor
from worker.model.executor import RunSlot

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    스케줄러 루프

    한 틱에서:
    1. status in (scheduled, retrying) AND run_at <= now 잡 조회 (priority desc, run_at asc)
    2. 실행 중이거나 선행 잡이 끝나지 않은 잡은 건너뜀
    3. 나머지는 동시 실행 상한까지 태스크로 실행 (await 하지 않음)
    한 잡의 디스패치 실패는 다른 잡에 영향을 주지 않습니다.
    """

    def __init__(
        self,
        config: DispatcherConfig,
        job_store: JobStore,
        log_store: ExecutionLogStore,
        executor: Executor,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._config = config
        self._job_store = job_store
        self._log_store = log_store
        self._executor = executor
        self._clock = clock
        self._running = False
        self._stop_event: asyncio.Event | None = None
        self._running_tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Dispatcher 메인 루프 시작"""
        if self._running:
            logger.warning("Dispatcher is already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()

        logger.info(
            f"Dispatcher started (tick_interval={self._config.tick_interval_seconds}s, "
            f"max_concurrent_jobs={self._config.max_concurrent_jobs}, "
            f"instance_id={self._executor.config.instance_id})"
        )

        try:
            if self._config.recover_stale_on_start:
                await self.recover_stale_jobs()
            await self._main_loop()
        except asyncio.CancelledError:
            logger.info("Dispatcher cancelled")
        except Exception as e:
            logger.error(f"Dispatcher error: {e}", exc_info=True)
            raise
        finally:
            await self._wait_running_tasks()
            self._running = False
            logger.info("Dispatcher stopped")

    async def stop(self) -> None:
        """Dispatcher graceful shutdown"""
        if not self._running:
            return

        logger.info("Stopping dispatcher...")
        self._running = False
        if self._stop_event:
            self._stop_event.set()

    async def _main_loop(self) -> None:
        """메인 루프: 틱 실행 후 대기"""
        while self._running:
            try:
                tasks = await self.tick()
                if tasks:
                    logger.debug(f"Dispatched {len(tasks)} jobs")
                await self._sleep(self._config.tick_interval_seconds)

            except ConnectionPoolExhaustedError as e:
                logger.warning(f"Connection pool exhausted: {e}. Retrying in 10s...")
                await self._sleep(10)

            except DatabaseError as e:
                logger.error(f"Database error: {e}. Continuing...")
                await self._sleep(self._config.tick_interval_seconds)

            except Exception as e:
                logger.error(f"Unexpected error in main loop: {e}", exc_info=True)
                await self._sleep(self._config.tick_interval_seconds)

    async def _sleep(self, seconds: float) -> None:
        """인터럽트 가능한 sleep"""
        if self._stop_event:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass

    async def tick(self, now: datetime | None = None) -> list[asyncio.Task]:
        """
        한 번의 디스패치 주기

        선행 잡 대기 등으로 건너뛴 잡은 이번 틱의 실행 수에 포함하지 않습니다.
        조회 결과가 모두 건너뛰어져도 다음 순위 잡을 이어서 읽어
        실행 가능한 잡이 우선순위 높은 대기 잡 뒤에 묶이지 않도록 합니다.

        Args:
            now: 기준 시각 (None이면 clock)

        Returns:
            이번 틱에 생성된 실행 태스크 목록
        """
        now = now or self._clock()

        capacity = self._config.max_concurrent_jobs - self._executor.running_count
        if capacity <= 0:
            logger.debug(f"Concurrency limit reached ({self._config.max_concurrent_jobs}), skipping tick")
            return []
        budget = min(capacity, self._config.max_jobs_per_tick)

        tasks: list[asyncio.Task] = []
        seen: set[str] = set()
        fetch = self._config.max_jobs_per_tick
        while True:
            jobs = await self._job_store.find_due(now, limit=fetch)
            for job in jobs:
                if len(tasks) >= budget:
                    break
                if job.id in seen:
                    continue
                seen.add(job.id)
                try:
                    task = await self._dispatch(job)
                except DispatchError as e:
                    logger.error(e.message, exc_info=True)
                    continue
                if task is not None:
                    tasks.append(task)

            if len(tasks) >= budget or len(jobs) < fetch:
                break
            fetch += self._config.max_jobs_per_tick

        if not seen:
            logger.debug("No due jobs")
        elif len(tasks) >= budget:
            logger.debug(f"Dispatch limit reached ({budget}) after scanning {len(seen)} due jobs")
        return tasks

    async def _dispatch(self, job: Job) -> asyncio.Task | None:
        """개별 잡 디스패치 (건너뛰면 None)"""
        if self._executor.is_running(job.run_key):
            logger.debug(f"Skipping job already running in this process: {job.run_key}")
            return None

        if job.dependencies:
            try:
                pending = await unsatisfied_dependencies(job, self._job_store)
            except Exception as e:
                raise DispatchError(job.name, f"Dependency check failed for {job.run_key}: {e}") from e
            if pending:
                logger.debug(DependencyUnsatisfiedError(job.name, pending).message)
                return None

        slot = self._executor.try_acquire(job.run_key)
        if slot is None:
            return None

        task = asyncio.create_task(self._execute_job(job, slot))
        self._running_tasks.add(task)
        task.add_done_callback(functools.partial(self._on_task_done, slot))
        return task

    async def _execute_job(self, job: Job, slot: RunSlot) -> None:
        """잡 실행 (실행 태스크)"""
        try:
            await self._executor.execute(job, slot=slot)
        except Exception as e:
            logger.error(f"Unexpected error executing job {job.run_key}: {e}", exc_info=True)

    def _on_task_done(self, slot: RunSlot, task: asyncio.Task) -> None:
        """태스크 완료 콜백 (시작 전에 취소된 태스크도 자리를 반환)"""
        self._running_tasks.discard(task)
        self._executor.release(slot)
        if not task.cancelled() and task.exception():
            logger.error(f"Task exception: {task.exception()}")

    async def recover_stale_jobs(self, now: datetime | None = None) -> int:
        """
        비정상 종료로 running에 남은 잡 복구

        리스가 없거나 만료된 running 잡을 재시도 대상으로 되돌립니다.
        시도 횟수를 모두 소진한 잡은 failed로 전환합니다.
        """
        now = now or self._clock()
        recovered = 0

        for job in await self._job_store.find_stale_running(now):
            if self._executor.is_running(job.run_key):
                continue

            if job.can_retry:
                job.status = JobStatus.RETRYING
                job.run_at = now
                job.next_run_at = now
            else:
                job.status = JobStatus.FAILED
                job.failed_at = now
                job.next_run_at = None
            job.updated_at = now
            await self._job_store.save(job)
            await self._log_store.append_history(HistoryEntry(
                job_id=job.id,
                job_name=job.name,
                owner=job.owner,
                action=HistoryAction.MODIFIED,
                timestamp=now,
                actor="dispatcher",
                details={"reason": "stale_running_recovered", "status": job.status.value},
            ))
            logger.warning(f"Recovered stale running job: job={job.run_key}, status={job.status.value}")
            recovered += 1

        if recovered:
            logger.info(f"Recovered {recovered} stale running jobs")
        return recovered

    async def _wait_running_tasks(self) -> None:
        """실행 중인 태스크 완료 대기 (graceful shutdown)"""
        if not self._running_tasks:
            return

        logger.info(f"Waiting for {len(self._running_tasks)} running tasks...")

        try:
            await asyncio.wait_for(
                asyncio.gather(*self._running_tasks, return_exceptions=True),
                timeout=self._config.shutdown_timeout_seconds
            )
            logger.info("All tasks completed")
        except asyncio.TimeoutError:
            logger.warning(
                f"Shutdown timeout ({self._config.shutdown_timeout_seconds}s), "
                f"{len(self._running_tasks)} tasks still running"
            )
            remaining = list(self._running_tasks)
            for task in remaining:
                task.cancel()
            # 취소된 태스크의 finally(리스 반환)까지 진행
            await asyncio.gather(*remaining, return_exceptions=True)

    async def wait_idle(self) -> None:
        """현재 실행 중인 태스크가 모두 끝날 때까지 대기"""
        if self._running_tasks:
            await asyncio.gather(*list(self._running_tasks), return_exceptions=True)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def running_task_count(self) -> int:
        return len(self._running_tasks)
