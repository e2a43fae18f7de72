"""Dispatcher 모듈 - due 잡 폴링 및 실행 태스크 생성"""

from dispatcher.main import Dispatcher
from dispatcher.model.dispatcher import DispatcherConfig
from dispatcher.exception import DispatcherError, DispatchError

__all__ = [
    "Dispatcher",
    "DispatcherConfig",
    "DispatcherError",
    "DispatchError",
]
