"""Scheduler 모델 패키지"""

from scheduler.model.job import (
    Job,
    JobStatus,
    JobPriority,
    JobResult,
    ErrorInfo,
    Schedule,
    ScheduleType,
    Interval,
    IntervalUnit,
    Dependency,
    DependencyKind,
    DISPATCHABLE_STATUSES,
    TERMINAL_STATUSES,
    ensure_utc,
    utcnow,
)
from scheduler.model.execution import (
    Execution,
    ExecutionStatus,
    HistoryEntry,
    HistoryAction,
)
from scheduler.model.request import (
    JobDefinition,
    ScheduleResult,
    RunNowResult,
    JobSummary,
    JobStats,
)

__all__ = [
    'Job',
    'JobStatus',
    'JobPriority',
    'JobResult',
    'ErrorInfo',
    'Schedule',
    'ScheduleType',
    'Interval',
    'IntervalUnit',
    'Dependency',
    'DependencyKind',
    'DISPATCHABLE_STATUSES',
    'TERMINAL_STATUSES',
    'ensure_utc',
    'utcnow',
    'Execution',
    'ExecutionStatus',
    'HistoryEntry',
    'HistoryAction',
    'JobDefinition',
    'ScheduleResult',
    'RunNowResult',
    'JobSummary',
    'JobStats',
]
