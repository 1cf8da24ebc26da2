"""
Scheduling windows: either a named period or explicit start/end instants.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional, Union

from .errors import ValidationError
from .models import TimeWindow

NAMED_WINDOWS = ('today', 'tomorrow', 'this week', 'next week')


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _local_midnight(day: date, tz: Optional[tzinfo] = None) -> datetime:
    naive = datetime.combine(day, time())
    if tz is not None:
        return naive.replace(tzinfo=tz)
    return naive.astimezone()


def parse_instant(text: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as local time."""
    if not text or not text.strip():
        raise ValidationError('Timestamp is empty')
    try:
        value = datetime.fromisoformat(text.strip().replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'Malformed timestamp "{text}". Use ISO-8601, e.g. 2025-10-09T09:00:00Z') from None
    if value.tzinfo is None:
        value = value.astimezone()
    return value


@dataclass(frozen=True)
class NamedWindow:
    name: str

    def __post_init__(self):
        if self.name.strip().lower() not in NAMED_WINDOWS:
            raise ValidationError(
                f'Unsupported date window "{self.name}". Use one of: {", ".join(NAMED_WINDOWS)}'
            )

    def resolve(self, now: Optional[datetime] = None) -> TimeWindow:
        # Each boundary gets its own UTC offset unless `now` carries a zone
        tz = now.tzinfo if now is not None else None
        now = now or _local_now()
        today = now.date()
        name = self.name.strip().lower()

        if name == 'today':
            start = today
            end = today + timedelta(days=1)
        elif name == 'tomorrow':
            start = today + timedelta(days=1)
            end = today + timedelta(days=2)
        else:
            # Weeks start on Monday
            start = today - timedelta(days=today.weekday())
            if name == 'next week':
                start += timedelta(weeks=1)
            end = start + timedelta(weeks=1)
        return TimeWindow(_local_midnight(start, tz), _local_midnight(end, tz))


@dataclass(frozen=True)
class ExplicitWindow:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValidationError(
                f'Window start {self.start.isoformat()} must be before end {self.end.isoformat()}'
            )

    def resolve(self, now: Optional[datetime] = None) -> TimeWindow:
        return TimeWindow(self.start, self.end)


DateWindow = Union[NamedWindow, ExplicitWindow]


def window_from_args(window: Optional[str] = None, start: Optional[str] = None,
                     end: Optional[str] = None) -> DateWindow:
    """Build a window from either a name or an explicit start/end pair, never both."""
    explicit = start is not None or end is not None
    if window and explicit:
        raise ValidationError('Provide either a named window or start/end, not both')
    if window:
        return NamedWindow(window)
    if start is None or end is None:
        raise ValidationError('Provide a named window, or both start and end timestamps')
    return ExplicitWindow(parse_instant(start), parse_instant(end))
