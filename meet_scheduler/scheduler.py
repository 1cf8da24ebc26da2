"""
Meeting scheduling operations composed from the core and the collaborators.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .accounts import AccountManager
from .attendees import AttendeeResolver, looks_like_email
from .availability import compute_free_slots, grid_minutes, pick_contiguous_span
from .config import Settings
from .errors import ValidationError
from .mirror import CalendarMirror
from .models import AttendeeResolution, MeetingEvent, MirrorEvent, MirrorLookup, MirrorUpdate, TimeWindow
from .windows import DateWindow

logger = logging.getLogger(__name__)

MAX_SLOTS_RETURNED = 50


def mirror_notes(meet_url: str, description: Optional[str]) -> str:
    return f'Google Meet: {meet_url}\n\n{description or ""}'


def _require_positive(name: str, value: int) -> None:
    if value is None or value <= 0:
        raise ValidationError(f'{name} must be a positive number of minutes, got {value}')


class MeetingScheduler:
    """Find free time, book meetings and keep the desktop mirror in step.

    The Google Calendar action is the primary result. The mirror outcome is
    reported next to it and never undoes it.
    """

    def __init__(self, accounts: AccountManager, mirror: CalendarMirror, settings: Settings):
        self.accounts = accounts
        self.mirror = mirror
        self.settings = settings

    async def _clients_for(self, entries: Sequence[str], account: Optional[str]):
        emails = [e.strip().lower() for e in entries if e and looks_like_email(e)]
        return await self.accounts.get_clients(account, emails)

    async def _resolve(self, clients, entries: Sequence[str]) -> AttendeeResolution:
        resolver = AttendeeResolver(clients.contacts.search_contacts)
        return await resolver.resolve_many(entries)

    def _mirror_calendar(self, name: Optional[str]) -> str:
        return name or self.settings.apple_calendar_name

    async def search_invitees(self, query: str, limit: int = 10,
                              account: Optional[str] = None) -> List[Dict[str, str]]:
        _require_positive('limit', limit)
        clients = await self.accounts.get_clients(account)
        return await clients.contacts.search_contacts(query, limit)

    async def find_slots(self, attendees: Sequence[str], window: DateWindow, slot_minutes: int = 30,
                         account: Optional[str] = None) -> Dict[str, Any]:
        """Common free slots for the attendees and the configured calendars."""
        _require_positive('slot_minutes', slot_minutes)
        span = window.resolve()

        clients = await self._clients_for(attendees, account)
        resolution = await self._resolve(clients, attendees)
        busy_map = await clients.calendar.free_busy(span, self.settings.calendar_ids + resolution.emails)
        slots = compute_free_slots(span, busy_map, slot_minutes)

        return {
            'account': clients.email,
            'window': span.to_dict(),
            'attendees': [a.to_dict() for a in resolution.attendees],
            'duplicates_removed': resolution.duplicates,
            'total_slots': len(slots),
            'slots': [s.to_dict() for s in slots[:MAX_SLOTS_RETURNED]],
        }

    async def _book(self, clients, title: str, span: TimeWindow, resolution: AttendeeResolution,
                    description: Optional[str], mirror_calendar: Optional[str]) -> Dict[str, Any]:
        event = await clients.calendar.create_event(title, span.start, span.end, resolution.attendees, description)
        logger.info('Created event %s "%s" at %s', event.id, title, span.start.isoformat())

        mirror = await self.mirror.create(MirrorEvent(
            calendar_name=self._mirror_calendar(mirror_calendar),
            title=title,
            start=span.start,
            end=span.end,
            notes=mirror_notes(event.meet_url, description),
            location=event.meet_url,
            attendees=list(resolution.attendees),
        ))
        return {
            'success': True,
            'account': clients.email,
            'event': event.to_dict(),
            'meetUrl': event.meet_url,
            'eventHtml': event.html_link,
            'duplicates_removed': resolution.duplicates,
            'mirror': mirror.to_dict(),
        }

    async def create_meeting(self, title: str, start: datetime, end: datetime, attendees: Sequence[str],
                             description: Optional[str] = None, mirror_calendar: Optional[str] = None,
                             account: Optional[str] = None) -> Dict[str, Any]:
        if start >= end:
            raise ValidationError(f'Meeting start {start.isoformat()} must be before end {end.isoformat()}')
        clients = await self._clients_for(attendees, account)
        resolution = await self._resolve(clients, attendees)
        return await self._book(clients, title, TimeWindow(start, end), resolution, description, mirror_calendar)

    async def plan_and_schedule(self, title: str, attendees: Sequence[str], duration_minutes: int,
                                window: DateWindow, description: Optional[str] = None,
                                mirror_calendar: Optional[str] = None,
                                account: Optional[str] = None) -> Dict[str, Any]:
        """Book the earliest span in the window where everyone is free."""
        _require_positive('duration_minutes', duration_minutes)
        span = window.resolve()

        clients = await self._clients_for(attendees, account)
        resolution = await self._resolve(clients, attendees)
        busy_map = await clients.calendar.free_busy(span, self.settings.calendar_ids + resolution.emails)

        grid = compute_free_slots(span, busy_map, grid_minutes(duration_minutes))
        pick = pick_contiguous_span(grid, duration_minutes)
        if pick is None:
            logger.info('No %d minute slot for "%s" in %s', duration_minutes, title, span.to_dict())
            return {
                'success': False,
                'account': clients.email,
                'message': 'No common slot found in the window.',
                'window': span.to_dict(),
            }

        result = await self._book(clients, title, pick, resolution, description, mirror_calendar)
        result['scheduled'] = pick.to_dict()
        return result

    async def update_meeting(self, event_id: str, title: Optional[str] = None,
                             description: Optional[str] = None, start: Optional[datetime] = None,
                             end: Optional[datetime] = None, attendees: Optional[Sequence[str]] = None,
                             mirror_calendar: Optional[str] = None,
                             account: Optional[str] = None) -> Dict[str, Any]:
        """Patch the given fields; a new start without an end keeps the duration."""
        clients = await self._clients_for(attendees or [], account)
        original = await clients.calendar.get_event(event_id)

        if start is not None and end is None:
            end = start + (original.end - original.start)
        new_start = start or original.start
        new_end = end or original.end
        if new_start >= new_end:
            raise ValidationError(f'Meeting start {new_start.isoformat()} must be before end {new_end.isoformat()}')

        resolution = None
        if attendees is not None:
            resolution = await self._resolve(clients, attendees)

        event = await clients.calendar.patch_event(
            event_id,
            title=title,
            description=description,
            start=start,
            end=end,
            attendees=resolution.attendees if resolution else None,
        )
        logger.info('Updated event %s', event_id)

        changes = MirrorUpdate(
            title=title,
            notes=mirror_notes(event.meet_url, description) if description is not None else None,
            location=event.meet_url if event.meet_url != original.meet_url else None,
            start=start,
            end=end,
            attendees=list(resolution.attendees) if resolution else None,
        )
        mirror = await self.mirror.update(
            MirrorLookup(self._mirror_calendar(mirror_calendar), original.title, original.start),
            changes,
        )
        return {
            'success': True,
            'account': clients.email,
            'event': event.to_dict(),
            'duplicates_removed': resolution.duplicates if resolution else [],
            'mirror': mirror.to_dict(),
        }

    async def delete_meeting(self, event_id: str, mirror_calendar: Optional[str] = None,
                             account: Optional[str] = None) -> Dict[str, Any]:
        clients = await self.accounts.get_clients(account)
        original = await clients.calendar.get_event(event_id)
        await clients.calendar.delete_event(event_id)
        logger.info('Deleted event %s "%s"', event_id, original.title)

        mirror = await self.mirror.delete(
            MirrorLookup(self._mirror_calendar(mirror_calendar), original.title, original.start)
        )
        return {
            'success': True,
            'account': clients.email,
            'deleted': {'id': event_id, 'title': original.title, 'start': original.start.isoformat()},
            'mirror': mirror.to_dict(),
        }

    async def list_meetings(self, window: DateWindow, query: Optional[str] = None,
                            account: Optional[str] = None) -> List[MeetingEvent]:
        clients = await self.accounts.get_clients(account)
        return await clients.calendar.list_events(window.resolve(), query)
