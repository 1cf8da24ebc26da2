"""
Google Calendar API client for the MCP server.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import httplib2
from google_auth_httplib2 import AuthorizedHttp

from .availability import busy_map_from_freebusy
from .models import BusyMap, MeetingEvent, ResolvedAttendee, TimeWindow
from .retry import with_retry

logger = logging.getLogger(__name__)


def authorized_http(credentials) -> AuthorizedHttp:
    """A fresh authorized transport; httplib2.Http objects are not thread-safe."""
    return AuthorizedHttp(credentials, http=httplib2.Http())


async def execute(request, credentials, name: str) -> Dict[str, Any]:
    """Run a discovery request in the default executor, with retries.

    Every attempt gets its own transport so concurrent requests never share
    an httplib2 connection.
    """
    loop = asyncio.get_running_loop()
    return await with_retry(
        lambda: loop.run_in_executor(None, lambda: request.execute(http=authorized_http(credentials))),
        name,
    )


def meet_url(event: Dict[str, Any]) -> str:
    """First video entry point of the event, else its hangout link, else ''."""
    for entry in (event.get('conferenceData') or {}).get('entryPoints', []):
        if entry.get('entryPointType') == 'video' and entry.get('uri'):
            return entry['uri']
    return event.get('hangoutLink') or ''


def _parse_event_time(value: Dict[str, str]) -> datetime:
    if 'dateTime' in value:
        return datetime.fromisoformat(value['dateTime'].replace('Z', '+00:00'))
    # All-day events
    return datetime.fromisoformat(value['date'] + 'T00:00:00').astimezone()


def to_meeting(event: Dict[str, Any]) -> MeetingEvent:
    return MeetingEvent(
        id=event.get('id', ''),
        title=event.get('summary', ''),
        description=event.get('description', ''),
        start=_parse_event_time(event['start']),
        end=_parse_event_time(event['end']),
        attendees=[a.get('email', '') for a in event.get('attendees', [])],
        html_link=event.get('htmlLink', ''),
        meet_url=meet_url(event),
    )


def _attendee_body(attendees: Sequence[ResolvedAttendee]) -> List[Dict[str, str]]:
    return [a.to_dict() for a in attendees]


class GoogleCalendarClient:
    """Async facade over a Calendar v3 discovery service.

    Every request runs in the default executor and goes through the retry
    wrapper.
    """

    def __init__(self, service, credentials, calendar_id: str = 'primary'):
        self.service = service
        self.credentials = credentials
        self.calendar_id = calendar_id

    async def _execute(self, request, name: str) -> Dict[str, Any]:
        return await execute(request, self.credentials, name)

    async def free_busy(self, window: TimeWindow, calendar_ids: Sequence[str]) -> BusyMap:
        """Busy intervals for each calendar id (or attendee email) in the window."""
        body = {
            'timeMin': window.start.isoformat(),
            'timeMax': window.end.isoformat(),
            'items': [{'id': cal_id.strip()} for cal_id in calendar_ids],
        }
        result = await self._execute(self.service.freebusy().query(body=body), 'freebusy.query')
        return busy_map_from_freebusy(result.get('calendars', {}))

    async def create_event(self, title: str, start: datetime, end: datetime,
                           attendees: Sequence[ResolvedAttendee],
                           description: Optional[str] = None) -> MeetingEvent:
        """Create an event with a Google Meet link and invite the attendees."""
        event_body = {
            'summary': title,
            'start': {'dateTime': start.isoformat()},
            'end': {'dateTime': end.isoformat()},
            'attendees': _attendee_body(attendees),
            'conferenceData': {
                'createRequest': {
                    'requestId': f'meet-{uuid.uuid4().hex}',
                    'conferenceSolutionKey': {'type': 'hangoutsMeet'},
                }
            },
        }
        if description:
            event_body['description'] = description

        request = self.service.events().insert(
            calendarId=self.calendar_id,
            body=event_body,
            conferenceDataVersion=1,
            sendUpdates='all',  # Send email invitations
        )
        event = await self._execute(request, 'events.insert')
        return to_meeting(event)

    async def get_event(self, event_id: str) -> MeetingEvent:
        request = self.service.events().get(calendarId=self.calendar_id, eventId=event_id)
        return to_meeting(await self._execute(request, 'events.get'))

    async def patch_event(self, event_id: str, title: Optional[str] = None,
                          description: Optional[str] = None,
                          start: Optional[datetime] = None, end: Optional[datetime] = None,
                          attendees: Optional[Sequence[ResolvedAttendee]] = None) -> MeetingEvent:
        """Update only the fields that were provided."""
        body: Dict[str, Any] = {}
        if title is not None:
            body['summary'] = title
        if description is not None:
            body['description'] = description
        if start is not None:
            body['start'] = {'dateTime': start.isoformat()}
        if end is not None:
            body['end'] = {'dateTime': end.isoformat()}
        if attendees is not None:
            body['attendees'] = _attendee_body(attendees)

        request = self.service.events().patch(
            calendarId=self.calendar_id,
            eventId=event_id,
            body=body,
            conferenceDataVersion=1,
            sendUpdates='all',
        )
        return to_meeting(await self._execute(request, 'events.patch'))

    async def delete_event(self, event_id: str) -> None:
        request = self.service.events().delete(
            calendarId=self.calendar_id,
            eventId=event_id,
            sendUpdates='all',
        )
        await self._execute(request, 'events.delete')

    async def list_events(self, window: TimeWindow, query: Optional[str] = None,
                          max_results: int = 50) -> List[MeetingEvent]:
        params = {
            'calendarId': self.calendar_id,
            'timeMin': window.start.isoformat(),
            'timeMax': window.end.isoformat(),
            'maxResults': max_results,
            'singleEvents': True,
            'orderBy': 'startTime',
        }
        if query:
            params['q'] = query
        result = await self._execute(self.service.events().list(**params), 'events.list')
        return [to_meeting(event) for event in result.get('items', [])]
