"""
SQLite 스토어

aiosql로 scheduler.sql을 로드하여 database.sqlite3 커넥션풀 위에서 실행합니다.
잡 본문은 JSON 컬럼(data)에 저장하고, 조회/정렬에 필요한 필드와
리스 컬럼만 별도 컬럼으로 관리합니다.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from aiosql.queries import Queries

from database.sqlite3.connection import SQLiteDatabase
from scheduler.model import (
    Execution,
    ExecutionStatus,
    HistoryAction,
    HistoryEntry,
    Job,
    JobStats,
    ensure_utc,
)
from scheduler.store.base import ExecutionLogStore, JobStore

logger = logging.getLogger(__name__)

SQL_PATH = Path(__file__).parent / 'sql' / 'scheduler.sql'

# Job.data JSON에서 제외 (리스는 컬럼으로만 관리)
_LEASE_FIELDS = {'locked_by', 'lock_expires_at'}


def _ts(value: datetime | None) -> str | None:
    """UTC ISO 문자열 (자릿수 고정으로 문자열 정렬 = 시간 정렬)"""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec='microseconds')


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def _limit(value: int | None) -> int:
    return -1 if value is None else value


def _row_to_job(row) -> Job:
    job = Job.model_validate_json(row['data'])
    job.locked_by = row['locked_by']
    job.lock_expires_at = _parse_ts(row['lock_expires_at'])
    return job


class _SQLiteStore:
    """쿼리 로딩 공통"""

    def __init__(self, db: SQLiteDatabase):
        self._db = db
        self._queries: Queries = db.load_queries('scheduler', str(SQL_PATH))


class SQLiteJobStore(_SQLiteStore, JobStore):
    """scheduled_jobs 테이블 기반 잡 스토어"""

    async def get(self, job_id: str) -> Job | None:
        async with self._db.transaction(readonly=True) as ctx:
            row = await self._queries.get_job(ctx.connection, job_id=job_id)
        return _row_to_job(row) if row else None

    async def get_by_name(self, name: str, owner: str = "default") -> Job | None:
        async with self._db.transaction(readonly=True) as ctx:
            row = await self._queries.get_job_by_name(ctx.connection, owner=owner, name=name)
        return _row_to_job(row) if row else None

    async def find_due(self, now: datetime, limit: int = 100) -> list[Job]:
        async with self._db.transaction(readonly=True) as ctx:
            rows = await self._queries.find_due_jobs(ctx.connection, now=_ts(now), limit=limit)
        return [_row_to_job(row) for row in rows]

    async def list_jobs(self, owner: str | None = None) -> list[Job]:
        async with self._db.transaction(readonly=True) as ctx:
            if owner is None:
                rows = await self._queries.list_jobs(ctx.connection)
            else:
                rows = await self._queries.list_jobs_by_owner(ctx.connection, owner=owner)
        return [_row_to_job(row) for row in rows]

    async def save(self, job: Job) -> None:
        try:
            async with self._db.transaction() as ctx:
                await self._queries.upsert_job(
                    ctx.connection,
                    id=job.id,
                    owner=job.owner,
                    name=job.name,
                    job_type=job.job_type,
                    status=job.status.value,
                    priority_rank=job.priority.rank,
                    run_at=_ts(job.run_at),
                    next_run_at=_ts(job.next_run_at),
                    completed_at=_ts(job.completed_at),
                    failed_at=_ts(job.failed_at),
                    data=job.model_dump_json(exclude=_LEASE_FIELDS),
                    created_at=_ts(job.created_at),
                    updated_at=_ts(job.updated_at),
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Duplicate job name: {job.owner}/{job.name}") from e

    async def delete(self, job_id: str) -> bool:
        async with self._db.transaction() as ctx:
            affected = await self._queries.delete_job(ctx.connection, job_id=job_id)
        return affected > 0

    async def acquire_lease(self, job_id: str, holder: str, expires_at: datetime, now: datetime) -> bool:
        async with self._db.transaction() as ctx:
            affected = await self._queries.acquire_lease(
                ctx.connection,
                job_id=job_id,
                holder=holder,
                expires_at=_ts(expires_at),
                now=_ts(now),
            )
        if affected == 0:
            logger.debug(f"Lease not acquired: job_id={job_id}, holder={holder}")
        return affected > 0

    async def release_lease(self, job_id: str, holder: str) -> None:
        async with self._db.transaction() as ctx:
            await self._queries.release_lease(ctx.connection, job_id=job_id, holder=holder)

    async def find_stale_running(self, now: datetime) -> list[Job]:
        async with self._db.transaction(readonly=True) as ctx:
            rows = await self._queries.find_stale_running(ctx.connection, now=_ts(now))
        return [_row_to_job(row) for row in rows]

    async def find_finished_before(self, cutoff: datetime) -> list[Job]:
        async with self._db.transaction(readonly=True) as ctx:
            rows = await self._queries.find_finished_before(ctx.connection, cutoff=_ts(cutoff))
        return [_row_to_job(row) for row in rows]


def _dump(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str, ensure_ascii=False)


def _load(value: str | None) -> Any:
    if value is None:
        return None
    return json.loads(value)


def _row_to_execution(row) -> Execution:
    return Execution(
        id=row['id'],
        job_id=row['job_id'],
        job_name=row['job_name'],
        owner=row['owner'],
        status=ExecutionStatus(row['status']),
        started_at=_parse_ts(row['started_at']),
        completed_at=_parse_ts(row['completed_at']),
        duration_ms=row['duration_ms'],
        retry_count=row['retry_count'],
        error=row['error'],
        error_code=row['error_code'],
        result=_load(row['result']),
        manual=bool(row['manual']),
    )


def _row_to_history(row) -> HistoryEntry:
    return HistoryEntry(
        id=row['id'],
        job_id=row['job_id'],
        job_name=row['job_name'],
        owner=row['owner'],
        action=HistoryAction(row['action']),
        timestamp=_parse_ts(row['timestamp']),
        actor=row['actor'],
        details=_load(row['details']) or {},
    )


class SQLiteExecutionLogStore(_SQLiteStore, ExecutionLogStore):
    """job_executions / job_history 테이블 기반 실행 이력 스토어"""

    async def create_execution(self, execution: Execution) -> Execution:
        async with self._db.transaction() as ctx:
            await self._queries.insert_execution(
                ctx.connection,
                id=execution.id,
                job_id=execution.job_id,
                job_name=execution.job_name,
                owner=execution.owner,
                status=execution.status.value,
                started_at=_ts(execution.started_at),
                completed_at=_ts(execution.completed_at),
                duration_ms=execution.duration_ms,
                retry_count=execution.retry_count,
                error=execution.error,
                error_code=execution.error_code,
                result=_dump(execution.result),
                manual=int(execution.manual),
            )
        return execution

    async def finish_execution(self, execution: Execution) -> bool:
        async with self._db.transaction() as ctx:
            affected = await self._queries.finish_execution(
                ctx.connection,
                id=execution.id,
                status=execution.status.value,
                completed_at=_ts(execution.completed_at),
                duration_ms=execution.duration_ms,
                error=execution.error,
                error_code=execution.error_code,
                result=_dump(execution.result),
            )
        if affected == 0:
            logger.warning(f"Execution already finished or missing: id={execution.id}")
        return affected > 0

    async def get_execution(self, execution_id: str) -> Execution | None:
        async with self._db.transaction(readonly=True) as ctx:
            row = await self._queries.get_execution(ctx.connection, execution_id=execution_id)
        return _row_to_execution(row) if row else None

    async def list_executions(self, job_name: str, owner: str = "default", limit: int | None = 20) -> list[Execution]:
        async with self._db.transaction(readonly=True) as ctx:
            rows = await self._queries.list_executions(
                ctx.connection, owner=owner, job_name=job_name, limit=_limit(limit)
            )
        return [_row_to_execution(row) for row in rows]

    async def get_stats(self, job_name: str, owner: str = "default") -> JobStats:
        async with self._db.transaction(readonly=True) as ctx:
            row = await self._queries.get_execution_stats(ctx.connection, owner=owner, job_name=job_name)

        total = row['total'] if row else 0
        completed = row['completed'] if row else 0
        return JobStats(
            total=total,
            completed=completed,
            failed=row['failed'] if row else 0,
            running=row['running'] if row else 0,
            retrying=row['retrying'] if row else 0,
            average_duration_ms=(row['average_duration_ms'] or 0.0) if row else 0.0,
            success_rate=(completed / total * 100) if total else 0.0,
        )

    async def delete_for_job(self, job_id: str) -> int:
        async with self._db.transaction() as ctx:
            executions = await self._queries.delete_executions_for_job(ctx.connection, job_id=job_id)
            history = await self._queries.delete_history_for_job(ctx.connection, job_id=job_id)
        return executions + history

    async def append_history(self, entry: HistoryEntry) -> None:
        async with self._db.transaction() as ctx:
            await self._queries.insert_history(
                ctx.connection,
                id=entry.id,
                job_id=entry.job_id,
                job_name=entry.job_name,
                owner=entry.owner,
                action=entry.action.value,
                timestamp=_ts(entry.timestamp),
                actor=entry.actor,
                details=_dump(entry.details),
            )

    async def list_history(self, job_name: str, owner: str = "default", limit: int | None = 50) -> list[HistoryEntry]:
        async with self._db.transaction(readonly=True) as ctx:
            rows = await self._queries.list_history(
                ctx.connection, owner=owner, job_name=job_name, limit=_limit(limit)
            )
        return [_row_to_history(row) for row in rows]
