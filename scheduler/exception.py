"""
Scheduler 관련 예외 클래스 정의
"""


class SchedulerError(Exception):
    """Scheduler 기본 예외"""
    pass


class JobValidationError(SchedulerError):
    """잡 정의 유효성 검사 실패 (잡 레코드 생성 안 됨)"""
    def __init__(self, message: str, errors: list | None = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)


class UnsupportedScheduleError(SchedulerError):
    """지원하지 않는 스케줄 (재시도해도 해결되지 않음)"""
    retryable = False

    def __init__(self, expression: str, message: str = None):
        self.expression = expression
        self.message = message or f"Unsupported schedule expression: {expression}"
        super().__init__(self.message)


class JobNotFoundError(SchedulerError):
    """잡을 찾을 수 없음"""
    def __init__(self, job_name: str, owner: str = "default"):
        self.job_name = job_name
        self.owner = owner
        self.message = f"Job not found: {owner}/{job_name}"
        super().__init__(self.message)


class JobAlreadyRunningError(SchedulerError):
    """이미 실행 중인 잡"""
    def __init__(self, job_name: str):
        self.job_name = job_name
        self.message = f"Job is already running: {job_name}"
        super().__init__(self.message)


class InvalidTransitionError(SchedulerError):
    """허용되지 않는 상태 전이"""
    def __init__(self, job_name: str, current_status: str, action: str):
        self.job_name = job_name
        self.current_status = current_status
        self.action = action
        self.message = f"Cannot {action} job '{job_name}' in status '{current_status}'"
        super().__init__(self.message)


class DependencyUnsatisfiedError(SchedulerError):
    """선행 잡 조건 미충족 (실패 아님, 디스패치만 보류)"""
    def __init__(self, job_name: str, dependency_ids: list[str]):
        self.job_name = job_name
        self.dependency_ids = dependency_ids
        self.message = f"Dependencies not satisfied for job '{job_name}': {', '.join(dependency_ids)}"
        super().__init__(self.message)
