"""
스케줄 계산기

스케줄 정의와 기준 시각으로 다음 실행 시각을 계산합니다.
상태나 I/O가 없는 순수 함수만 제공합니다.

크론 표현식은 의도적으로 좁은 문법만 지원합니다:
    * * * * *      매분
    M * * * *      매시 M분
    M H * * *      매일 H:M
    M H d m w      H:M 정확히 일치 (d, m, w는 숫자 또는 *)
일(d)과 요일(w)을 함께 지정하면 둘 다 일치하는 날에만 실행합니다 (표준 cron의 OR가 아닌 AND).
범위(1-5), 목록(1,2), 간격(*/5), 이름(MON), 매크로(@daily)는
UnsupportedScheduleError로 거부합니다.
"""

from datetime import datetime, timedelta

from croniter import croniter

from scheduler.exception import UnsupportedScheduleError
from scheduler.model.job import IntervalUnit, Schedule, ScheduleType, ensure_utc, utcnow

# 월 단위는 달력 기준이 아닌 30일 근사치
UNIT_SECONDS = {
    IntervalUnit.MINUTES: 60,
    IntervalUnit.HOURS: 3600,
    IntervalUnit.DAYS: 86400,
    IntervalUnit.WEEKS: 7 * 86400,
    IntervalUnit.MONTHS: 30 * 86400,
}


def validate_cron_expression(expression: str) -> None:
    """
    크론 표현식이 지원 범위인지 검사

    Raises:
        UnsupportedScheduleError: 지원하지 않는 표현식
    """
    fields = (expression or "").split()
    if len(fields) != 5:
        raise UnsupportedScheduleError(expression, f"Cron expression must have 5 fields: '{expression}'")

    for value in fields:
        if value != "*" and not value.isdigit():
            raise UnsupportedScheduleError(
                expression,
                f"Only '*' or a single number is supported per field, got '{value}' in '{expression}'"
            )

    minute, hour, day, month, day_of_week = fields
    date_fields_set = any(f != "*" for f in (day, month, day_of_week))

    if minute == "*" and (hour != "*" or date_fields_set):
        raise UnsupportedScheduleError(expression, f"Minute wildcard is only supported as '* * * * *': '{expression}'")
    if hour == "*" and date_fields_set:
        raise UnsupportedScheduleError(expression, f"Date fields require an explicit hour: '{expression}'")

    try:
        valid = croniter.is_valid(expression)
    except (KeyError, ValueError):
        valid = False
    if not valid:
        raise UnsupportedScheduleError(expression, f"Invalid cron expression: '{expression}'")


def _next_cron_run(expression: str, from_time: datetime) -> datetime:
    validate_cron_expression(expression)
    try:
        cron = croniter(expression, from_time, day_or=False)
        next_time = cron.get_next(datetime)
    except (KeyError, ValueError) as e:
        # 존재하지 않는 날짜 (예: 2월 31일) 등
        raise UnsupportedScheduleError(expression, f"Cannot compute next run for '{expression}': {e}")

    next_time = ensure_utc(next_time)
    if next_time <= from_time:
        next_time = from_time.replace(second=0, microsecond=0) + timedelta(minutes=1)
    return next_time


def next_run(schedule: Schedule, from_time: datetime) -> datetime | None:
    """
    다음 실행 시각 계산

    Args:
        schedule: 스케줄 정의
        from_time: 기준 시각

    Returns:
        다음 실행 시각 (from_time보다 항상 큼), 더 이상 실행이 없으면 None

    Raises:
        UnsupportedScheduleError: 계산할 수 없는 스케줄
    """
    from_time = ensure_utc(from_time)

    if schedule.type == ScheduleType.ONCE:
        if schedule.run_at is not None and from_time < schedule.run_at:
            return schedule.run_at
        return None

    if schedule.interval is not None:
        seconds = schedule.interval.value * UNIT_SECONDS[schedule.interval.unit]
        return from_time + timedelta(seconds=seconds)

    if schedule.cron_expression is not None:
        return _next_cron_run(schedule.cron_expression, from_time)

    raise UnsupportedScheduleError(str(schedule.model_dump()), "Recurring schedule has neither interval nor cron expression")


def initial_run_at(schedule: Schedule, now: datetime | None = None) -> datetime:
    """
    잡 등록 시 첫 실행 시각

    once 잡은 지정 시각(과거여도 그대로, 없으면 now)을 사용하고
    recurring 잡은 now 기준 다음 실행 시각을 사용합니다.
    """
    now = ensure_utc(now) if now else utcnow()
    if schedule.type == ScheduleType.ONCE:
        return schedule.run_at or now
    return next_run(schedule, now)
