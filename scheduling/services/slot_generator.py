"""Expansion of recurring weekly templates into concrete time slots.

Everything here is pure: the same template and date range always produce the
same sequence of ``(start, end)`` pairs, and nothing touches the store.
Persisting the intervals (and skipping ones that already exist) is the
repository's job.
"""

from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta
from typing import Protocol

from scheduling.errors import ValidationError

Interval = tuple[datetime, datetime]


class WeeklyRule(Protocol):
    day_of_week: int
    start_time: time
    end_time: time
    session_duration: int
    break_between_sessions: int


def weekday_index(day: date) -> int:
    """Day of week counted from Sunday (0) to Saturday (6)."""
    return (day.weekday() + 1) % 7


def iterate_dates(start_date: date, end_date: date) -> Iterator[date]:
    current_day = start_date
    while current_day <= end_date:
        yield current_day
        current_day += timedelta(days=1)


def generate_day_intervals(
    day: date,
    start_time: time,
    end_time: time,
    session_duration: int,
    break_between_sessions: int,
) -> list[Interval]:
    if session_duration <= 0 or break_between_sessions < 0:
        raise ValidationError(
            'Session duration must be positive and breaks cannot be negative.',
            entity='template',
            transition='generate',
        )

    day_end = datetime.combine(day, end_time)
    step = timedelta(minutes=session_duration + break_between_sessions)
    length = timedelta(minutes=session_duration)

    intervals: list[Interval] = []
    cursor = datetime.combine(day, start_time)
    while cursor < day_end:
        slot_end = cursor + length
        if slot_end > day_end:
            break
        intervals.append((cursor, slot_end))
        cursor += step

    return intervals


def generate_slot_intervals(
    template: WeeklyRule,
    start_date: date,
    end_date: date,
    excluded_dates: Iterable[date] = (),
) -> list[Interval]:
    """Expand ``template`` over ``[start_date, end_date]`` in chronological order.

    Dates whose weekday differs from the template or that appear in
    ``excluded_dates`` produce nothing. Sessions that would run past the
    template's end time are dropped, never truncated.
    """
    if end_date < start_date:
        raise ValidationError(
            'End date must not be before start date.',
            entity='template',
            entity_id=getattr(template, 'id', None),
            transition='generate',
        )

    skipped_days = set(excluded_dates)
    intervals: list[Interval] = []

    for current_day in iterate_dates(start_date, end_date):
        if weekday_index(current_day) != template.day_of_week or current_day in skipped_days:
            continue
        intervals.extend(
            generate_day_intervals(
                current_day,
                template.start_time,
                template.end_time,
                template.session_duration,
                template.break_between_sessions,
            )
        )

    return intervals
