"""Tests for meet_scheduler/attendees.py

The resolver never guesses: names must match exactly one contact, emails
are validated and lowercased, and multi-attendee calls fail as a whole.
"""

import asyncio
import logging

import pytest

from conftest import FakeContacts
from meet_scheduler.attendees import AttendeeResolver, looks_like_email
from meet_scheduler.errors import (
    AmbiguousContact,
    AttendeeResolutionError,
    ContactNotFound,
    EmptyAttendeeList,
    EmptyInput,
    InvalidEmailFormat,
)
from meet_scheduler.models import ResolvedAttendee


class TestLooksLikeEmail:
    @pytest.mark.parametrize('value', ['alice@example.com', "o'brien+tag@mail.example.co.uk", 'a@b'])
    def test_email_shapes(self, value):
        assert looks_like_email(value)

    @pytest.mark.parametrize('value', ['Alice', 'alice@', '@example.com', 'alice @example.com', 'a@-b.com'])
    def test_not_emails(self, value):
        assert not looks_like_email(value)


# ─────────────────────────────────────────────────────────────────────────────
# resolve_one
# ─────────────────────────────────────────────────────────────────────────────


class TestResolveOne:
    """Tests for single-entry resolution."""

    @pytest.mark.asyncio
    async def test_email_is_lowercased_without_lookup(self, contacts):
        resolver = AttendeeResolver(contacts.search_contacts)

        result = await resolver.resolve_one('  Alice@Example.COM ')

        assert result == ResolvedAttendee(email='alice@example.com')
        assert contacts.queries == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize('value', ['', '   ', None])
    async def test_blank_input(self, contacts, value):
        resolver = AttendeeResolver(contacts.search_contacts)

        with pytest.raises(EmptyInput):
            await resolver.resolve_one(value)

    @pytest.mark.asyncio
    async def test_local_part_too_long(self, contacts):
        resolver = AttendeeResolver(contacts.search_contacts)

        with pytest.raises(InvalidEmailFormat, match='local part'):
            await resolver.resolve_one('a' * 65 + '@example.com')

    @pytest.mark.asyncio
    async def test_address_too_long(self, contacts):
        resolver = AttendeeResolver(contacts.search_contacts)
        domain = '.'.join(['d' * 60] * 4) + '.com'

        with pytest.raises(InvalidEmailFormat, match='254'):
            await resolver.resolve_one('a' * 10 + '@' + domain)

    @pytest.mark.asyncio
    async def test_single_contact_match(self, contacts):
        resolver = AttendeeResolver(contacts.search_contacts)

        result = await resolver.resolve_one('Alice')

        assert result == ResolvedAttendee(email='alice@example.com', display_name='Alice Smith')
        assert contacts.queries == [('Alice', 10)]

    @pytest.mark.asyncio
    async def test_no_contact_match_suggests_email(self, contacts):
        resolver = AttendeeResolver(contacts.search_contacts)

        with pytest.raises(ContactNotFound, match='email address directly'):
            await resolver.resolve_one('Zed')

    @pytest.mark.asyncio
    async def test_ambiguous_match_lists_candidates(self, contacts):
        resolver = AttendeeResolver(contacts.search_contacts)

        with pytest.raises(AmbiguousContact) as exc_info:
            await resolver.resolve_one('Bob')

        message = str(exc_info.value)
        assert 'Bob Jones (bob.jones@example.com)' in message
        assert 'Bob Stone (bob@other.org)' in message
        assert len(exc_info.value.candidates) == 2

    @pytest.mark.asyncio
    async def test_ambiguous_match_lists_at_most_five(self):
        many = [{'name': f'Sam {i}', 'email': f'sam{i}@example.com'} for i in range(7)]
        resolver = AttendeeResolver(FakeContacts({'Sam': many}).search_contacts)

        with pytest.raises(AmbiguousContact) as exc_info:
            await resolver.resolve_one('Sam')

        message = str(exc_info.value)
        assert 'Sam 4 (sam4@example.com)' in message
        assert 'sam5@example.com' not in message
        assert 'and 2 more' in message

    @pytest.mark.asyncio
    async def test_contacts_without_email_are_ignored(self):
        directory = {'Carol': [{'name': 'Carol', 'email': ''}, {'name': 'Carol King', 'email': 'carol@example.com'}]}
        resolver = AttendeeResolver(FakeContacts(directory).search_contacts)

        result = await resolver.resolve_one('Carol')

        assert result.email == 'carol@example.com'

    @pytest.mark.asyncio
    async def test_malformed_contact_address_rejected(self):
        directory = {'Carol': [{'name': 'Carol', 'email': 'carol at corp'}]}
        resolver = AttendeeResolver(FakeContacts(directory).search_contacts)

        with pytest.raises(InvalidEmailFormat, match='carol at corp'):
            await resolver.resolve_one('Carol')

    @pytest.mark.asyncio
    async def test_contact_address_is_canonicalized(self):
        directory = {'Dana': [{'name': 'Dana', 'email': ' Dana@Example.COM '}]}
        resolver = AttendeeResolver(FakeContacts(directory).search_contacts)

        result = await resolver.resolve_one('Dana')

        assert result == ResolvedAttendee(email='dana@example.com', display_name='Dana')

    @pytest.mark.asyncio
    async def test_contact_local_part_too_long(self):
        directory = {'Eve': [{'name': 'Eve', 'email': 'e' * 65 + '@example.com'}]}
        resolver = AttendeeResolver(FakeContacts(directory).search_contacts)

        with pytest.raises(InvalidEmailFormat, match='local part'):
            await resolver.resolve_one('Eve')


# ─────────────────────────────────────────────────────────────────────────────
# resolve_many
# ─────────────────────────────────────────────────────────────────────────────


class TestResolveMany:
    """Tests for multi-entry resolution."""

    @pytest.mark.asyncio
    async def test_empty_list(self, contacts):
        resolver = AttendeeResolver(contacts.search_contacts)

        with pytest.raises(EmptyAttendeeList):
            await resolver.resolve_many([])

    @pytest.mark.asyncio
    async def test_deduplicates_name_and_email(self, contacts, caplog):
        resolver = AttendeeResolver(contacts.search_contacts)

        with caplog.at_level(logging.WARNING):
            result = await resolver.resolve_many(['Alice', 'alice@example.com'])

        assert result.attendees == [ResolvedAttendee(email='alice@example.com', display_name='Alice Smith')]
        assert result.duplicates == ['alice@example.com']
        assert 'Removed 1 duplicate' in caplog.text

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(self, contacts):
        resolver = AttendeeResolver(contacts.search_contacts)
        first = await resolver.resolve_many(['Alice', 'carol@example.com'])
        contacts.queries.clear()

        second = await resolver.resolve_many(first.emails)

        assert contacts.queries == []
        assert second.emails == first.emails
        assert second.duplicates == []

    @pytest.mark.asyncio
    async def test_preserves_input_order(self):
        class SlowContacts(FakeContacts):
            async def search_contacts(self, query, limit=10):
                await asyncio.sleep(0.02 if query == 'Alice' else 0)
                return await super().search_contacts(query, limit)

        directory = {
            'Alice': [{'name': 'Alice', 'email': 'alice@example.com'}],
            'Dan': [{'name': 'Dan', 'email': 'dan@example.com'}],
        }
        resolver = AttendeeResolver(SlowContacts(directory).search_contacts)

        result = await resolver.resolve_many(['Alice', 'Dan', 'erin@example.com'])

        assert result.emails == ['alice@example.com', 'dan@example.com', 'erin@example.com']

    @pytest.mark.asyncio
    async def test_any_failure_fails_the_call(self, contacts):
        resolver = AttendeeResolver(contacts.search_contacts)

        with pytest.raises(AttendeeResolutionError) as exc_info:
            await resolver.resolve_many(['alice@example.com', 'Nobody', 'Bob'])

        assert exc_info.value.entry == 'Nobody'
        assert isinstance(exc_info.value.cause, ContactNotFound)
        assert '"Nobody"' in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_remote_failure_names_the_entry(self):
        class BrokenContacts(FakeContacts):
            async def search_contacts(self, query, limit=10):
                raise ConnectionResetError('reset by peer')

        resolver = AttendeeResolver(BrokenContacts().search_contacts)

        with pytest.raises(AttendeeResolutionError) as exc_info:
            await resolver.resolve_many(['a@example.com', 'Dave'])

        assert exc_info.value.entry == 'Dave'
        assert isinstance(exc_info.value.cause, ConnectionResetError)
        assert exc_info.value.__cause__ is exc_info.value.cause
        assert '"Dave"' in str(exc_info.value)
        assert 'reset by peer' in str(exc_info.value)
