"""Worker 모델 패키지"""

from worker.model.executor import ExecutorConfig, RunSlot
from worker.model.handler import HandlerContext, HandlerParams, HandlerResult

__all__ = [
    'ExecutorConfig',
    'RunSlot',
    'HandlerContext',
    'HandlerParams',
    'HandlerResult',
]
