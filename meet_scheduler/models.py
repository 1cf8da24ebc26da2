"""
Data models for scheduling, attendee and account entities.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end)."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f'Window start {self.start.isoformat()} must be before end {self.end.isoformat()}')

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: 'TimeWindow') -> bool:
        return self.start < other.end and other.start < self.end

    def to_dict(self) -> Dict[str, str]:
        return {'start': self.start.isoformat(), 'end': self.end.isoformat()}


BusyMap = Dict[str, List[TimeWindow]]


@dataclass(frozen=True)
class ResolvedAttendee:
    email: str
    display_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'email': self.email}
        if self.display_name:
            data['displayName'] = self.display_name
        return data


@dataclass
class AttendeeResolution:
    attendees: List[ResolvedAttendee]
    duplicates: List[str] = field(default_factory=list)

    @property
    def emails(self) -> List[str]:
        return [a.email for a in self.attendees]


@dataclass
class Account:
    email: str
    credentials: Dict[str, Any]
    label: Optional[str] = None

    @property
    def domain(self) -> str:
        return self.email.rsplit('@', 1)[-1].lower() if '@' in self.email else ''

    def to_dict(self) -> Dict[str, Any]:
        return {'email': self.email, 'label': self.label, 'credentials': self.credentials}


@dataclass
class MeetingEvent:
    id: str
    title: str
    description: str
    start: datetime
    end: datetime
    attendees: List[str]
    html_link: str
    meet_url: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'attendees': self.attendees,
            'eventHtml': self.html_link,
            'meetUrl': self.meet_url,
        }


@dataclass(frozen=True)
class MirrorEvent:
    calendar_name: str
    title: str
    start: datetime
    end: datetime
    notes: str = ''
    location: str = ''
    attendees: List[ResolvedAttendee] = field(default_factory=list)


@dataclass(frozen=True)
class MirrorLookup:
    """Locates a mirrored event by exact title and start instant."""
    calendar_name: str
    title: str
    start: datetime


@dataclass(frozen=True)
class MirrorUpdate:
    title: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    attendees: Optional[List[ResolvedAttendee]] = None


@dataclass
class MirrorResult:
    ok: bool
    message: str
    suggestion: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {'ok': self.ok, 'message': self.message}
        if self.suggestion:
            data['suggestion'] = self.suggestion
        if self.skipped:
            data['skipped'] = True
        return data
