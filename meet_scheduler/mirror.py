"""
Best-effort mirroring of meetings into a local desktop calendar.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from .models import MirrorEvent, MirrorLookup, MirrorResult, MirrorUpdate, ResolvedAttendee

logger = logging.getLogger(__name__)

OSASCRIPT = '/usr/bin/osascript'

# Dates arrive as four arguments (year, month, day, seconds since local
# midnight) so the script never depends on the system's date format.
_MAKE_DATE = '''
on makeDate(y, m, d, s)
  set theDate to current date
  set day of theDate to 1
  set year of theDate to (y as integer)
  set month of theDate to (m as integer)
  set day of theDate to (d as integer)
  set time of theDate to (s as integer)
  return theDate
end makeDate

on addAttendees(theEvent, argv, firstIndex)
  tell application "Calendar"
    repeat with i from firstIndex to (count of argv) by 2
      make new attendee at theEvent with properties {email:(item i of argv), display name:(item (i + 1) of argv)}
    end repeat
  end tell
end addAttendees
'''

CREATE_SCRIPT = _MAKE_DATE + '''
on run argv
  set calName to item 1 of argv
  set theTitle to item 2 of argv
  set theLocation to item 3 of argv
  set theNotes to item 4 of argv
  set startDate to makeDate(item 5 of argv, item 6 of argv, item 7 of argv, item 8 of argv)
  set endDate to makeDate(item 9 of argv, item 10 of argv, item 11 of argv, item 12 of argv)
  tell application "Calendar"
    if not (exists calendar calName) then
      make new calendar with properties {name:calName}
    end if
    set theCal to calendar calName
    set theEvent to make new event at end of events of theCal with properties {summary:theTitle, location:theLocation, start date:startDate, end date:endDate, description:theNotes}
  end tell
  addAttendees(theEvent, argv, 13)
end run
'''

# Fields: calendar, title, start (4), then a "1"/"0" flag and value per
# optional property, then attendee pairs.
UPDATE_SCRIPT = _MAKE_DATE + '''
on run argv
  set calName to item 1 of argv
  set searchTitle to item 2 of argv
  set searchStart to makeDate(item 3 of argv, item 4 of argv, item 5 of argv, item 6 of argv)
  tell application "Calendar"
    if not (exists calendar calName) then
      error "Calendar not found: " & calName
    end if
    set matches to (every event of calendar calName whose summary is searchTitle and start date is searchStart)
    if (count of matches) is 0 then
      error "Event not found: " & searchTitle
    end if
    set theEvent to item 1 of matches
    if item 7 of argv is "1" then set summary of theEvent to item 8 of argv
    if item 9 of argv is "1" then set location of theEvent to item 10 of argv
    if item 11 of argv is "1" then set description of theEvent to item 12 of argv
    if item 13 of argv is "1" then set start date of theEvent to my makeDate(item 14 of argv, item 15 of argv, item 16 of argv, item 17 of argv)
    if item 18 of argv is "1" then set end date of theEvent to my makeDate(item 19 of argv, item 20 of argv, item 21 of argv, item 22 of argv)
    if item 23 of argv is "1" then
      delete every attendee of theEvent
    end if
  end tell
  if item 23 of argv is "1" then addAttendees(theEvent, argv, 24)
end run
'''

DELETE_SCRIPT = _MAKE_DATE + '''
on run argv
  set calName to item 1 of argv
  set searchTitle to item 2 of argv
  set searchStart to makeDate(item 3 of argv, item 4 of argv, item 5 of argv, item 6 of argv)
  tell application "Calendar"
    if not (exists calendar calName) then
      error "Calendar not found: " & calName
    end if
    set matches to (every event of calendar calName whose summary is searchTitle and start date is searchStart)
    if (count of matches) is 0 then
      error "Event not found: " & searchTitle
    end if
    delete item 1 of matches
  end tell
end run
'''


def date_args(value: datetime) -> List[str]:
    """Split an instant into local year, month, day and seconds since midnight."""
    local = value.astimezone()
    seconds = local.hour * 3600 + local.minute * 60 + local.second
    return [str(local.year), str(local.month), str(local.day), str(seconds)]


def attendee_args(attendees: Sequence[ResolvedAttendee]) -> List[str]:
    args = []
    for attendee in attendees:
        args.extend([attendee.email, attendee.display_name or ''])
    return args


def _optional(value) -> List[str]:
    return ['0', ''] if value is None else ['1', value]


def _optional_date(value: Optional[datetime]) -> List[str]:
    return ['0', '', '', '', ''] if value is None else ['1'] + date_args(value)


class CalendarMirror(ABC):
    """Secondary calendar that follows the primary calendar's changes."""

    @abstractmethod
    async def create(self, event: MirrorEvent) -> MirrorResult:
        ...

    @abstractmethod
    async def update(self, lookup: MirrorLookup, changes: MirrorUpdate) -> MirrorResult:
        ...

    @abstractmethod
    async def delete(self, lookup: MirrorLookup) -> MirrorResult:
        ...


class DisabledCalendarMirror(CalendarMirror):
    """Used where no desktop calendar is available or syncing is turned off."""

    def _skipped(self) -> MirrorResult:
        return MirrorResult(ok=False, skipped=True, message='Local calendar sync is disabled')

    async def create(self, event: MirrorEvent) -> MirrorResult:
        return self._skipped()

    async def update(self, lookup: MirrorLookup, changes: MirrorUpdate) -> MirrorResult:
        return self._skipped()

    async def delete(self, lookup: MirrorLookup) -> MirrorResult:
        return self._skipped()


class AppleCalendarMirror(CalendarMirror):
    """macOS Calendar.app driven through osascript.

    Update and delete find the event by exact title and start time. If
    several events share both, the first one Calendar returns is used.
    """

    def __init__(self, osascript: str = OSASCRIPT):
        self.osascript = osascript

    async def _run(self, script: str, args: List[str]) -> None:
        process = await asyncio.create_subprocess_exec(
            self.osascript, '-e', script, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            raise RuntimeError(stderr.decode('utf-8', errors='replace').strip() or f'osascript exited with {process.returncode}')

    async def create(self, event: MirrorEvent) -> MirrorResult:
        args = [event.calendar_name, event.title, event.location, event.notes]
        args += date_args(event.start) + date_args(event.end) + attendee_args(event.attendees)
        try:
            await self._run(CREATE_SCRIPT, args)
        except (OSError, RuntimeError) as e:
            logger.error('Apple Calendar create failed: %s', e)
            return MirrorResult(
                ok=False,
                message=(f'Failed to create Apple Calendar event: {e}. The calendar "{event.calendar_name}" '
                         f'may not exist or Calendar permissions may be missing.'),
                suggestion=('The Google Calendar event was created successfully, but the Apple Calendar sync failed. '
                            'Check that the Calendar app has the necessary permissions and the calendar exists.'),
            )
        return MirrorResult(ok=True, message='Apple Calendar event created successfully')

    async def update(self, lookup: MirrorLookup, changes: MirrorUpdate) -> MirrorResult:
        args = [lookup.calendar_name, lookup.title] + date_args(lookup.start)
        args += _optional(changes.title) + _optional(changes.location) + _optional(changes.notes)
        args += _optional_date(changes.start) + _optional_date(changes.end)
        if changes.attendees is None:
            args.append('0')
        else:
            args += ['1'] + attendee_args(changes.attendees)
        try:
            await self._run(UPDATE_SCRIPT, args)
        except (OSError, RuntimeError) as e:
            logger.error('Apple Calendar update failed: %s', e)
            return MirrorResult(
                ok=False,
                message=(f'Failed to update Apple Calendar event: {e}. The event may have been deleted manually '
                         f'or the calendar "{lookup.calendar_name}" may not exist.'),
                suggestion=('The Google Calendar event was updated successfully, but the Apple Calendar sync failed. '
                            'You may need to update the event in Apple Calendar manually.'),
            )
        return MirrorResult(ok=True, message='Apple Calendar event updated successfully')

    async def delete(self, lookup: MirrorLookup) -> MirrorResult:
        args = [lookup.calendar_name, lookup.title] + date_args(lookup.start)
        try:
            await self._run(DELETE_SCRIPT, args)
        except (OSError, RuntimeError) as e:
            logger.error('Apple Calendar delete failed: %s', e)
            return MirrorResult(
                ok=False,
                message=(f'Failed to delete Apple Calendar event: {e}. The event may already be gone '
                         f'or the calendar "{lookup.calendar_name}" may not exist.'),
                suggestion=('The Google Calendar event was deleted successfully, but the Apple Calendar sync failed. '
                            'The event may already have been removed from Apple Calendar.'),
            )
        return MirrorResult(ok=True, message='Apple Calendar event deleted successfully')
