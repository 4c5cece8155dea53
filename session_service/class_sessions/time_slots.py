"""Weekly time slot helpers used to schedule recurring sessions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple, Union

from session_service.core.errors import ValidationError
from session_service.class_sessions.models import Weekday

MIN_SESSION_DURATION = timedelta(minutes=30)
MAX_SESSION_DURATION = timedelta(hours=24)

# Sunday-first numbering
_WEEKDAY_NUMBERS = {
    Weekday.SUNDAY: 0,
    Weekday.MONDAY: 1,
    Weekday.TUESDAY: 2,
    Weekday.WEDNESDAY: 3,
    Weekday.THURSDAY: 4,
    Weekday.FRIDAY: 5,
    Weekday.SATURDAY: 6,
}


@dataclass(frozen=True, order=True)
class TimeSlot:
    """A weekly recurring slot; ordering is (weekday, start, end)."""

    weekday_number: int
    start_time: time
    end_time: time

    @property
    def weekday(self) -> Weekday:
        return number_to_weekday(self.weekday_number)


def weekday_to_number(weekday: Union[Weekday, str]) -> int:
    try:
        return _WEEKDAY_NUMBERS[Weekday(weekday)]
    except ValueError:
        raise ValidationError(f"Invalid weekday: {weekday}") from None


def number_to_weekday(number: int) -> Weekday:
    for weekday, value in _WEEKDAY_NUMBERS.items():
        if value == number:
            return weekday
    raise ValidationError(f"Invalid weekday number: {number}")


def weekday_number_of(day: date) -> int:
    """Sunday-first weekday number of a date."""
    return (day.weekday() + 1) % 7


def parse_time_string(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValidationError(f"Invalid time of day: {value!r}")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = int(parts[2]) if len(parts) == 3 else 0
        return time(hours, minutes, seconds)
    except ValueError:
        raise ValidationError(f"Invalid time of day: {value!r}") from None


def validate_time_slot_duration(
    start: datetime,
    end: datetime,
    min_duration: timedelta = MIN_SESSION_DURATION,
    max_duration: timedelta = MAX_SESSION_DURATION,
) -> None:
    """Reject sessions shorter than ``min_duration`` or not shorter than ``max_duration``."""
    duration = end - start
    if duration < min_duration:
        raise ValidationError(
            f"Session must last at least {int(min_duration.total_seconds() // 60)} minutes",
            {"start": start.isoformat(), "end": end.isoformat()},
        )
    if duration >= max_duration:
        raise ValidationError(
            f"Session must last less than {int(max_duration.total_seconds() // 3600)} hours",
            {"start": start.isoformat(), "end": end.isoformat()},
        )


def sanitize_time_slots(
    raw_slots: Iterable[Tuple[Union[Weekday, str], str, str]],
    min_duration: timedelta = MIN_SESSION_DURATION,
    max_duration: timedelta = MAX_SESSION_DURATION,
) -> List[TimeSlot]:
    """Parse, validate, sort and de-duplicate ``(weekday, start, end)`` slots."""
    slots = set()
    anchor = date(2000, 1, 1)
    for weekday, start_str, end_str in raw_slots:
        start_time = parse_time_string(start_str)
        end_time = parse_time_string(end_str)
        validate_time_slot_duration(
            datetime.combine(anchor, start_time),
            datetime.combine(anchor, end_time),
            min_duration,
            max_duration,
        )
        slots.add(TimeSlot(weekday_to_number(weekday), start_time, end_time))
    return sorted(slots)


def set_time_to_date(day: date, time_of_day: time, tz: timezone = timezone.utc) -> datetime:
    return datetime.combine(day, time_of_day, tzinfo=tz)


def get_next_day(moment: datetime) -> datetime:
    """Midnight of the day after ``moment``."""
    return datetime.combine(moment.date() + timedelta(days=1), time.min, tzinfo=moment.tzinfo)


def get_next_occurrence(
    time_slots: List[TimeSlot],
    cursor: datetime,
) -> Optional[Tuple[datetime, datetime]]:
    """Earliest slot occurrence starting at or after ``cursor``."""
    for offset in range(8):
        day = cursor.date() + timedelta(days=offset)
        day_number = weekday_number_of(day)
        for slot in time_slots:
            if slot.weekday_number != day_number:
                continue
            start = set_time_to_date(day, slot.start_time, cursor.tzinfo or timezone.utc)
            if start >= cursor:
                end = set_time_to_date(day, slot.end_time, cursor.tzinfo or timezone.utc)
                return start, end
    return None


def intervals_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """Half-open ``[start, end)`` intersection."""
    return start_a < end_b and start_b < end_a
