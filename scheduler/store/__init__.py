"""Scheduler 스토어 패키지"""

from scheduler.store.base import JobStore, ExecutionLogStore
from scheduler.store.memory import MemoryJobStore, MemoryExecutionLogStore
from scheduler.store.sqlite import SQLiteJobStore, SQLiteExecutionLogStore

__all__ = [
    'JobStore',
    'ExecutionLogStore',
    'MemoryJobStore',
    'MemoryExecutionLogStore',
    'SQLiteJobStore',
    'SQLiteExecutionLogStore',
]
