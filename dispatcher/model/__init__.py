"""Dispatcher 모델 패키지"""

from dispatcher.model.dispatcher import DispatcherConfig

__all__ = ['DispatcherConfig']
