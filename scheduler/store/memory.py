"""
인메모리 스토어

단일 프로세스 임베딩 및 테스트용. 저장/조회 시 복사본을 주고받아
DB 스토어와 동일하게 호출자가 가진 객체와 저장된 상태가 분리됩니다.
"""

import asyncio
import logging
from datetime import datetime

from scheduler.model import (
    DISPATCHABLE_STATUSES,
    TERMINAL_STATUSES,
    Execution,
    HistoryEntry,
    Job,
    JobStats,
    JobStatus,
)
from scheduler.store.base import ExecutionLogStore, JobStore, build_stats

logger = logging.getLogger(__name__)


class MemoryJobStore(JobStore):
    """dict 기반 잡 스토어"""

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._leases: dict[str, tuple[str, datetime]] = {}
        self._lock = asyncio.Lock()

    def _out(self, job: Job) -> Job:
        copy = job.model_copy(deep=True)
        lease = self._leases.get(job.id)
        copy.locked_by, copy.lock_expires_at = lease if lease else (None, None)
        return copy

    async def get(self, job_id: str) -> Job | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return self._out(job) if job else None

    async def get_by_name(self, name: str, owner: str = "default") -> Job | None:
        async with self._lock:
            for job in self._jobs.values():
                if job.name == name and job.owner == owner:
                    return self._out(job)
            return None

    async def find_due(self, now: datetime, limit: int = 100) -> list[Job]:
        async with self._lock:
            due = [
                job for job in self._jobs.values()
                if job.status in DISPATCHABLE_STATUSES and job.run_at is not None and job.run_at <= now
            ]
            due.sort(key=lambda j: (-j.priority.rank, j.run_at))
            return [self._out(job) for job in due[:limit]]

    async def list_jobs(self, owner: str | None = None) -> list[Job]:
        async with self._lock:
            jobs = [j for j in self._jobs.values() if owner is None or j.owner == owner]
            jobs.sort(key=lambda j: (j.next_run_at is None, j.next_run_at or j.created_at))
            return [self._out(job) for job in jobs]

    async def save(self, job: Job) -> None:
        async with self._lock:
            for other in self._jobs.values():
                if other.id != job.id and other.name == job.name and other.owner == job.owner:
                    raise ValueError(f"Duplicate job name: {job.owner}/{job.name}")
            stored = job.model_copy(deep=True)
            stored.locked_by = None
            stored.lock_expires_at = None
            self._jobs[job.id] = stored

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            self._leases.pop(job_id, None)
            return self._jobs.pop(job_id, None) is not None

    async def acquire_lease(self, job_id: str, holder: str, expires_at: datetime, now: datetime) -> bool:
        async with self._lock:
            if job_id not in self._jobs:
                return False
            lease = self._leases.get(job_id)
            if lease and lease[0] != holder and lease[1] > now:
                return False
            self._leases[job_id] = (holder, expires_at)
            return True

    async def release_lease(self, job_id: str, holder: str) -> None:
        async with self._lock:
            lease = self._leases.get(job_id)
            if lease and lease[0] == holder:
                del self._leases[job_id]

    async def find_stale_running(self, now: datetime) -> list[Job]:
        async with self._lock:
            stale = []
            for job in self._jobs.values():
                if job.status != JobStatus.RUNNING:
                    continue
                lease = self._leases.get(job.id)
                if lease is None or lease[1] <= now:
                    stale.append(self._out(job))
            return stale

    async def find_finished_before(self, cutoff: datetime) -> list[Job]:
        async with self._lock:
            finished = []
            for job in self._jobs.values():
                if job.status not in TERMINAL_STATUSES:
                    continue
                ended_at = job.completed_at or job.failed_at or job.updated_at
                if ended_at < cutoff:
                    finished.append(self._out(job))
            return finished


class MemoryExecutionLogStore(ExecutionLogStore):
    """리스트 기반 실행 이력 스토어"""

    def __init__(self):
        self._executions: dict[str, Execution] = {}
        self._history: list[HistoryEntry] = []
        self._lock = asyncio.Lock()

    async def create_execution(self, execution: Execution) -> Execution:
        async with self._lock:
            self._executions[execution.id] = execution.model_copy(deep=True)
            return execution

    async def finish_execution(self, execution: Execution) -> bool:
        async with self._lock:
            stored = self._executions.get(execution.id)
            if stored is None or stored.is_finished:
                logger.warning(f"Execution already finished or missing: id={execution.id}")
                return False
            self._executions[execution.id] = execution.model_copy(deep=True)
            return True

    async def get_execution(self, execution_id: str) -> Execution | None:
        async with self._lock:
            stored = self._executions.get(execution_id)
            return stored.model_copy(deep=True) if stored else None

    def _for_job(self, job_name: str, owner: str) -> list[Execution]:
        return [e for e in self._executions.values() if e.job_name == job_name and e.owner == owner]

    async def list_executions(self, job_name: str, owner: str = "default", limit: int | None = 20) -> list[Execution]:
        async with self._lock:
            # 같은 시각이면 나중에 기록된 것이 먼저
            rows = list(reversed(self._for_job(job_name, owner)))
            rows.sort(key=lambda e: e.started_at, reverse=True)
            if limit is not None:
                rows = rows[:limit]
            return [e.model_copy(deep=True) for e in rows]

    async def get_stats(self, job_name: str, owner: str = "default") -> JobStats:
        async with self._lock:
            return build_stats(self._for_job(job_name, owner))

    async def delete_for_job(self, job_id: str) -> int:
        async with self._lock:
            ids = [k for k, e in self._executions.items() if e.job_id == job_id]
            for key in ids:
                del self._executions[key]
            before = len(self._history)
            self._history = [h for h in self._history if h.job_id != job_id]
            return len(ids) + (before - len(self._history))

    async def append_history(self, entry: HistoryEntry) -> None:
        async with self._lock:
            self._history.append(entry.model_copy(deep=True))

    async def list_history(self, job_name: str, owner: str = "default", limit: int | None = 50) -> list[HistoryEntry]:
        async with self._lock:
            rows = [h for h in reversed(self._history) if h.job_name == job_name and h.owner == owner]
            rows.sort(key=lambda h: h.timestamp, reverse=True)
            if limit is not None:
                rows = rows[:limit]
            return [h.model_copy(deep=True) for h in rows]
