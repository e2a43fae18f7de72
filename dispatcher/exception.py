"""
Dispatcher 관련 예외 클래스 정의
"""


class DispatcherError(Exception):
    """Dispatcher 기본 예외"""
    pass


class DispatchError(DispatcherError):
    """개별 잡 디스패치 실패 (해당 잡만 건너뛰고 틱은 계속)"""
    def __init__(self, job_name: str, message: str = None):
        self.job_name = job_name
        self.message = message or f"Failed to dispatch job: {job_name}"
        super().__init__(self.message)
