"""Job / 실행 이력 스토어 기본 인터페이스"""

from abc import ABC, abstractmethod
from datetime import datetime

from scheduler.model import Execution, ExecutionStatus, HistoryEntry, Job, JobStats


class JobStore(ABC):
    """
    잡 스토어 기본 클래스

    잡의 현재 상태를 보관합니다. 상태 전이는 read-modify-write이며
    save()는 마지막 쓰기가 이기는(last-writer-wins) 방식입니다.
    리스 컬럼(locked_by, lock_expires_at)은 acquire_lease/release_lease로만 변경됩니다.
    """

    @abstractmethod
    async def get(self, job_id: str) -> Job | None:
        """ID로 잡 조회"""
        ...

    @abstractmethod
    async def get_by_name(self, name: str, owner: str = "default") -> Job | None:
        """owner/name으로 잡 조회"""
        ...

    @abstractmethod
    async def find_due(self, now: datetime, limit: int = 100) -> list[Job]:
        """
        실행 시점에 도달한 잡 조회

        status in (scheduled, retrying) AND run_at <= now,
        priority 내림차순 → run_at 오름차순
        """
        ...

    @abstractmethod
    async def list_jobs(self, owner: str | None = None) -> list[Job]:
        """잡 목록 (next_run_at 오름차순, 없으면 마지막)"""
        ...

    @abstractmethod
    async def save(self, job: Job) -> None:
        """잡 저장 (insert 또는 update)"""
        ...

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        """잡 삭제"""
        ...

    @abstractmethod
    async def acquire_lease(self, job_id: str, holder: str, expires_at: datetime, now: datetime) -> bool:
        """
        실행 리스 획득 (조건부 갱신)

        Returns:
            True: 획득 성공
            False: 다른 인스턴스가 유효한 리스를 보유 중
        """
        ...

    @abstractmethod
    async def release_lease(self, job_id: str, holder: str) -> None:
        """실행 리스 반환 (보유자가 일치할 때만)"""
        ...

    @abstractmethod
    async def find_stale_running(self, now: datetime) -> list[Job]:
        """리스가 없거나 만료된 running 잡 조회 (프로세스 비정상 종료 복구용)"""
        ...

    @abstractmethod
    async def find_finished_before(self, cutoff: datetime) -> list[Job]:
        """cutoff 이전에 종료된 completed/failed/cancelled 잡 조회"""
        ...


class ExecutionLogStore(ABC):
    """
    실행 이력 / 라이프사이클 이벤트 스토어 기본 클래스

    Execution은 시작 시 생성되고 종료 시 한 번만 갱신됩니다.
    HistoryEntry는 한 번 기록 후 변경되지 않습니다.
    """

    @abstractmethod
    async def create_execution(self, execution: Execution) -> Execution:
        """실행 레코드 생성"""
        ...

    @abstractmethod
    async def finish_execution(self, execution: Execution) -> bool:
        """
        실행 종료 기록 (미종료 레코드에만 적용)

        Returns:
            True: 기록됨
            False: 이미 종료되었거나 존재하지 않음
        """
        ...

    @abstractmethod
    async def get_execution(self, execution_id: str) -> Execution | None:
        """ID로 실행 레코드 조회"""
        ...

    @abstractmethod
    async def list_executions(self, job_name: str, owner: str = "default", limit: int | None = 20) -> list[Execution]:
        """실행 이력 조회 (started_at 내림차순)"""
        ...

    @abstractmethod
    async def get_stats(self, job_name: str, owner: str = "default") -> JobStats:
        """실행 통계"""
        ...

    @abstractmethod
    async def delete_for_job(self, job_id: str) -> int:
        """잡의 실행 이력 / 이벤트 삭제"""
        ...

    @abstractmethod
    async def append_history(self, entry: HistoryEntry) -> None:
        """라이프사이클 이벤트 기록"""
        ...

    @abstractmethod
    async def list_history(self, job_name: str, owner: str = "default", limit: int | None = 50) -> list[HistoryEntry]:
        """라이프사이클 이벤트 조회 (timestamp 내림차순)"""
        ...


def build_stats(executions: list[Execution]) -> JobStats:
    """실행 목록으로 통계 계산"""
    total = len(executions)
    completed = [e for e in executions if e.status == ExecutionStatus.COMPLETED]
    durations = [e.duration_ms for e in completed if e.duration_ms is not None]

    return JobStats(
        total=total,
        completed=len(completed),
        failed=sum(1 for e in executions if e.status == ExecutionStatus.FAILED),
        running=sum(1 for e in executions if e.status == ExecutionStatus.RUNNING),
        retrying=sum(1 for e in executions if e.status == ExecutionStatus.RETRYING),
        average_duration_ms=(sum(durations) / len(durations)) if durations else 0.0,
        success_rate=(len(completed) / total * 100) if total else 0.0,
    )
