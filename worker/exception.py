"""
Worker 관련 예외 클래스 정의
"""

from typing import Any


class WorkerError(Exception):
    """Worker 기본 예외"""
    pass


class HandlerNotFoundError(WorkerError):
    """핸들러를 찾을 수 없음"""
    retryable = True

    def __init__(self, name: str):
        self.name = name
        self.code = "HANDLER_NOT_FOUND"
        self.details = None
        self.message = f"Handler not found: {name}"
        super().__init__(self.message)


class HandlerError(WorkerError):
    """
    핸들러 실행 실패

    핸들러는 이 예외(또는 임의의 예외)를 던져 실패를 알립니다.
    retryable=False면 남은 시도 횟수와 관계없이 즉시 failed 처리됩니다.
    """
    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: Any = None,
        retryable: bool = True,
    ):
        self.message = message
        self.code = code
        self.details = details
        self.retryable = retryable
        super().__init__(self.message)


class JobTimeoutError(HandlerError):
    """핸들러 실행 시간 초과"""
    def __init__(self, job_name: str, timeout_seconds: float):
        self.job_name = job_name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Job execution timed out after {timeout_seconds}s: {job_name}",
            code="TIMEOUT",
        )


class InvalidParametersError(HandlerError):
    """핸들러 파라미터 검증 실패"""
    def __init__(self, handler_name: str, details: Any = None):
        self.handler_name = handler_name
        super().__init__(
            f"Invalid parameters for handler '{handler_name}'",
            code="INVALID_PARAMETERS",
            details=details,
            retryable=False,
        )
