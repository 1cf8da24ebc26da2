"""
Attendee resolution: names or emails to canonical, deduplicated addresses.
"""

import asyncio
import logging
import re
from typing import Awaitable, Callable, Dict, List, Sequence

from .errors import (
    AmbiguousContact,
    AttendeeResolutionError,
    ContactNotFound,
    EmptyAttendeeList,
    EmptyInput,
    InvalidEmailFormat,
)
from .models import AttendeeResolution, ResolvedAttendee

logger = logging.getLogger(__name__)

SearchContacts = Callable[[str, int], Awaitable[List[Dict[str, str]]]]

EMAIL_PATTERN = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$"
)

MAX_EMAIL_LENGTH = 254
MAX_LOCAL_PART_LENGTH = 64
CONTACT_SEARCH_LIMIT = 10


def looks_like_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value.strip()))


def canonical_email(email: str) -> str:
    """Validate length bounds and return the lowercased address."""
    if len(email) > MAX_EMAIL_LENGTH:
        raise InvalidEmailFormat(email, f'longer than {MAX_EMAIL_LENGTH} characters')
    local_part = email.rsplit('@', 1)[0]
    if len(local_part) > MAX_LOCAL_PART_LENGTH:
        raise InvalidEmailFormat(email, f'local part longer than {MAX_LOCAL_PART_LENGTH} characters')
    return email.lower()


class AttendeeResolver:
    """Turns user-supplied attendee strings into ResolvedAttendee values."""

    def __init__(self, search_contacts: SearchContacts):
        self.search_contacts = search_contacts

    async def resolve_one(self, name_or_email: str) -> ResolvedAttendee:
        """Resolve a single entry.

        Email-shaped input is validated and lowercased without any lookup.
        Anything else is looked up as a contact name and must match exactly
        one contact with an email address.
        """
        value = (name_or_email or '').strip()
        if not value:
            raise EmptyInput()

        if looks_like_email(value):
            return ResolvedAttendee(email=canonical_email(value))

        results = await self.search_contacts(value, CONTACT_SEARCH_LIMIT)
        matches = [r for r in results if r.get('email')]

        if not matches:
            raise ContactNotFound(value)
        if len(matches) > 1:
            raise AmbiguousContact(value, matches)

        match = matches[0]
        email = match['email'].strip()
        if not looks_like_email(email):
            raise InvalidEmailFormat(email, f'contact "{value}" has a malformed address')
        return ResolvedAttendee(email=canonical_email(email), display_name=match.get('name') or None)

    async def resolve_many(self, entries: Sequence[str]) -> AttendeeResolution:
        """Resolve every entry concurrently and deduplicate by email.

        Any failing entry fails the whole call; the first failure in input
        order is reported together with the entry that caused it.
        """
        if not entries:
            raise EmptyAttendeeList()

        outcomes = await asyncio.gather(
            *(self.resolve_one(entry) for entry in entries),
            return_exceptions=True,
        )

        for entry, outcome in zip(entries, outcomes):
            if isinstance(outcome, Exception):
                raise AttendeeResolutionError(entry, outcome) from outcome
            if isinstance(outcome, BaseException):
                raise outcome

        attendees: List[ResolvedAttendee] = []
        seen = set()
        duplicates = []
        for attendee in outcomes:
            if attendee.email in seen:
                duplicates.append(attendee.email)
                continue
            seen.add(attendee.email)
            attendees.append(attendee)

        if duplicates:
            logger.warning('Removed %d duplicate attendee(s): %s', len(duplicates), ', '.join(duplicates))

        return AttendeeResolution(attendees=attendees, duplicates=duplicates)
