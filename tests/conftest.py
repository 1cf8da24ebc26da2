"""Shared test fixtures for the meet scheduler tests.

Provides fixed instants, fake Google collaborators and a temporary
token store so no test touches the network or the real config directory.
"""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List

import pytest

from meet_scheduler.accounts import AccountManager, AccountStore, format_expiry
from meet_scheduler.models import TimeWindow

NOW = datetime(2025, 10, 9, 12, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 9) -> datetime:
    """A UTC instant on October `day`, 2025."""
    return datetime(2025, 10, day, hour, minute, tzinfo=timezone.utc)


def window(start_hour, start_minute, end_hour, end_minute) -> TimeWindow:
    return TimeWindow(at(start_hour, start_minute), at(end_hour, end_minute))


def credentials(token: str = 'access', expires_in: timedelta = timedelta(hours=1)) -> Dict:
    return {
        'token': token,
        'refresh_token': 'refresh',
        'client_id': 'client',
        'client_secret': 'secret',
        'expiry': format_expiry(NOW + expires_in),
    }


# ─────────────────────────────────────────────────────────────────────────────
# Contacts
# ─────────────────────────────────────────────────────────────────────────────


class FakeContacts:
    """Async contacts collaborator with canned results per query."""

    def __init__(self, directory: Dict[str, List[Dict[str, str]]] = None):
        self.directory = directory or {}
        self.queries = []

    async def search_contacts(self, query: str, limit: int = 10) -> List[Dict[str, str]]:
        self.queries.append((query, limit))
        return list(self.directory.get(query, []))[:limit]


@pytest.fixture
def contacts() -> FakeContacts:
    return FakeContacts({
        'Alice': [{'name': 'Alice Smith', 'email': 'Alice@Example.com'}],
        'Bob': [
            {'name': 'Bob Jones', 'email': 'bob.jones@example.com'},
            {'name': 'Bob Stone', 'email': 'bob@other.org'},
        ],
    })


# ─────────────────────────────────────────────────────────────────────────────
# Accounts
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def token_path(tmp_path: Path) -> Path:
    return tmp_path / 'config' / 'tokens.json'


@pytest.fixture
def store(token_path: Path) -> AccountStore:
    return AccountStore(token_path)


class FakeAuth:
    """Blocking auth collaborators that record their calls."""

    def __init__(self, email: str = 'me@example.com'):
        self.email = email
        self.refreshed = []
        self.looked_up = []
        self.built = []
        self.refresh_error = None

    def refresh(self, info):
        self.refreshed.append(info)
        if self.refresh_error:
            raise self.refresh_error
        return credentials(token=f"{info['token']}-refreshed")

    def lookup_email(self, info):
        self.looked_up.append(info)
        return self.email

    def build_clients(self, email, info):
        self.built.append((email, info['token']))
        return SimpleNamespace(email=email, token=info['token'])

    def sign_in(self):
        return credentials(token='fresh')


@pytest.fixture
def fake_auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def manager(store: AccountStore, fake_auth: FakeAuth) -> AccountManager:
    return AccountManager(
        store=store,
        refresher=fake_auth.refresh,
        identity_lookup=fake_auth.lookup_email,
        client_factory=fake_auth.build_clients,
        authenticator=fake_auth.sign_in,
        clock=lambda: NOW,
    )


def write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
