"""
재시도 백오프 및 선행 잡 의존성 정책
"""

import logging
from datetime import timedelta

from scheduler.model import DependencyKind, Job
from scheduler.store.base import JobStore

logger = logging.getLogger(__name__)


def backoff(attempts: int, base_seconds: float, cap_seconds: float) -> timedelta:
    """
    재시도 대기 시간 계산

    min(base * 2^attempts, cap). attempts에 대해 단조 증가하며 cap을 넘지 않습니다.

    Args:
        attempts: 지금까지 시도한 횟수
        base_seconds: 기본 대기 단위 (Job.retry_delay_seconds)
        cap_seconds: 최대 대기 시간
    """
    attempts = max(0, attempts)
    # 큰 attempts에서 float overflow 방지
    if attempts >= 64:
        return timedelta(seconds=cap_seconds)
    return timedelta(seconds=min(base_seconds * (2 ** attempts), cap_seconds))


async def unsatisfied_dependencies(job: Job, store: JobStore) -> list[str]:
    """
    충족되지 않은 선행 잡 ID 목록

    - must_complete: 선행 잡이 완료 상태 (결과 무관)
    - must_succeed: 완료 상태이면서 마지막 결과가 성공
    삭제된 선행 잡은 무시합니다.
    """
    pending = []
    for dep in job.dependencies:
        dep_job = await store.get(dep.job_id)
        if dep_job is None:
            logger.debug(f"Dependency job missing, ignored: job={job.name}, dependency={dep.job_id}")
            continue

        if not dep_job.has_completed:
            pending.append(dep.job_id)
        elif dep.kind == DependencyKind.MUST_SUCCEED and not dep_job.last_succeeded:
            pending.append(dep.job_id)
    return pending


async def dependencies_satisfied(job: Job, store: JobStore) -> bool:
    """선행 잡 조건 충족 여부"""
    if not job.dependencies:
        return True
    return not await unsatisfied_dependencies(job, store)


async def find_dependency_cycle(job_id: str, dependency_ids: list[str], store: JobStore) -> list[str] | None:
    """
    의존성 사이클 탐지

    job_id가 dependency_ids를 선행 잡으로 가질 때 사이클이 생기는지 확인합니다.

    Returns:
        사이클 경로 (job_id로 시작하고 끝남), 없으면 None
    """
    stack = [(dep_id, [job_id, dep_id]) for dep_id in dependency_ids]
    visited: set[str] = set()

    while stack:
        current, path = stack.pop()
        if current == job_id:
            return path
        if current in visited:
            continue
        visited.add(current)

        current_job = await store.get(current)
        if current_job is None:
            continue
        for dep in current_job.dependencies:
            stack.append((dep.job_id, path + [dep.job_id]))
    return None
