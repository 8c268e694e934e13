"""
Time Window Utilities

Provides the half-open time window used throughout the extraction engine and
the calendar arithmetic needed to split it into request-sized chunks.

Every window is half-open, [start, end): a timestamp equal to a chunk
boundary belongs to the chunk that starts there, never to the one that ends
there. Source valid ranges are expressed the same way, so HYCOM's last day
(2015-12-31) is represented by an exclusive bound of 2016-01-01.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Tuple, Union

from .logging_utils import ValidationError

# Calendar period names accepted as a time chunk size
CALENDAR_PERIODS = ('year', 'month', 'day')

_RELATIVE_BOUND = re.compile(r'^(today)?\s*([+-]\d+)\s*([dDmMyY])$')


@dataclass(frozen=True)
class TimeWindow:
    """
    Half-open time window [start, end).

    Attributes:
        start: First timestamp covered
        end: First timestamp no longer covered
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        if not isinstance(self.start, datetime) or not isinstance(self.end, datetime):
            raise ValidationError(
                f"TimeWindow bounds must be datetime objects. Got: {self.start!r}, {self.end!r}"
            )
        if self.start >= self.end:
            raise ValidationError(
                "The end time must correspond to a date after the given start time.",
                {'start': self.start.isoformat(), 'end': self.end.isoformat()}
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def clamp(self, valid_start: datetime, valid_end: datetime) -> 'TimeWindow':
        """
        Clamp the window into a source's valid range.

        Values outside the range are moved onto the bound rather than rejected.
        A window lying completely outside the range cannot be clamped into a
        non-empty window and raises ValidationError.

        Args:
            valid_start: First valid timestamp of the source
            valid_end: Exclusive end of the source's valid range

        Returns:
            TimeWindow: Window inside [valid_start, valid_end)
        """
        start = max(self.start, valid_start)
        end = min(self.end, valid_end)
        if start >= end:
            raise ValidationError(
                f"Time window {self} lies outside the source range "
                f"[{valid_start.isoformat()}, {valid_end.isoformat()})",
                {'valid_start': valid_start.isoformat(), 'valid_end': valid_end.isoformat()}
            )
        return TimeWindow(start, end)

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"


def add_months(moment: datetime, months: int) -> datetime:
    """Shift a timestamp by whole calendar months, clipping the day to the month length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, _days_in_month(year, month))
    return moment.replace(year=year, month=month, day=day)


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (datetime(year, month + 1, 1) - datetime(year, month, 1)).days


def floor_to_period(moment: datetime, period: str) -> datetime:
    """Return the start of the calendar period containing ``moment``."""
    if period == 'year':
        return datetime(moment.year, 1, 1)
    if period == 'month':
        return datetime(moment.year, moment.month, 1)
    if period == 'day':
        return datetime(moment.year, moment.month, moment.day)
    raise ValidationError(f"Unknown calendar period: {period}. Available: {list(CALENDAR_PERIODS)}")


def next_period_start(moment: datetime, period: str) -> datetime:
    """Return the start of the calendar period following the one containing ``moment``."""
    floor = floor_to_period(moment, period)
    if period == 'year':
        return floor.replace(year=floor.year + 1)
    if period == 'month':
        return add_months(floor, 1)
    return floor + timedelta(days=1)


def iter_time_chunks(window: TimeWindow,
                     chunk: Union[str, timedelta]) -> Iterator[Tuple[datetime, datetime]]:
    """
    Split a window into consecutive half-open sub-ranges.

    Calendar periods ('year', 'month', 'day') cut on calendar boundaries, so the
    first and last chunks may be shorter than a full period. A timedelta cuts
    fixed-size chunks starting at the window start.

    Args:
        window: Window to split
        chunk: Calendar period name or fixed timedelta

    Yields:
        (chunk_start, chunk_end) pairs covering the window exactly once
    """
    if isinstance(chunk, timedelta):
        if chunk <= timedelta(0):
            raise ValidationError(f"Chunk duration must be positive. Got: {chunk}")
        step = lambda moment: moment + chunk  # noqa: E731
    elif chunk in CALENDAR_PERIODS:
        step = lambda moment: next_period_start(moment, chunk)  # noqa: E731
    else:
        raise ValidationError(f"Unknown time chunk: {chunk!r}. Use one of {list(CALENDAR_PERIODS)} or a timedelta")

    cursor = window.start
    while cursor < window.end:
        boundary = min(step(cursor), window.end)
        yield cursor, boundary
        cursor = boundary


def resolve_time_bound(value: Union[str, date, datetime, None],
                       today: Optional[date] = None) -> Optional[datetime]:
    """
    Resolve a configured time bound into a datetime.

    Accepts datetimes, dates, ISO strings ('2015-12-31', '2015-12-31T06:00'),
    compact 'yyyymmdd' strings, 'today', and offsets relative to today such as
    '-1M', '-1d', 'today-1y'.

    Args:
        value: Configured bound
        today: Reference date for relative bounds (default: date.today())

    Returns:
        datetime or None if value is None
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    reference = today or date.today()
    midnight = datetime(reference.year, reference.month, reference.day)

    if text.lower() == 'today':
        return midnight

    match = _RELATIVE_BOUND.match(text.replace(' ', ''))
    if match:
        amount = int(match.group(2))
        unit = match.group(3).lower()
        if unit == 'd':
            return midnight + timedelta(days=amount)
        if unit == 'm':
            return add_months(midnight, amount)
        return add_months(midnight, 12 * amount)

    if re.fullmatch(r'\d{8}', text):
        return datetime.strptime(text, '%Y%m%d')

    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise ValidationError(f"Could not parse time bound: {value!r}") from e


def format_time_tag(start: datetime, end: datetime) -> str:
    """
    Format a sub-range as a filename-safe tag.

    Whole calendar years and months get the short forms of the archive
    layout ('2015', '201501'); anything else is written as
    'start-end' with minutes only when needed.
    """
    if start == floor_to_period(start, 'year') and end == next_period_start(start, 'year'):
        return f"{start:%Y}"
    if start == floor_to_period(start, 'month') and end == next_period_start(start, 'month'):
        return f"{start:%Y%m}"
    return f"{_compact(start)}-{_compact(end)}"


def _compact(moment: datetime) -> str:
    if moment.hour == 0 and moment.minute == 0 and moment.second == 0:
        return f"{moment:%Y%m%d}"
    return f"{moment:%Y%m%dT%H%M%S}"
