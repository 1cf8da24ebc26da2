"""
Multi-account token store, account selection and token refresh.
"""

import asyncio
import json
import logging
import os
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import AuthenticationFailed, NoAccountConfigured, RefreshFailed, UnknownAccount
from .models import Account

logger = logging.getLogger(__name__)

# Key used for a token file written before multi-account support, until the
# real email address is discovered.
LEGACY_KEY = '__legacy__'
LEGACY_FIELDS = ('token', 'access_token', 'refresh_token')

REFRESH_BUFFER = timedelta(minutes=5)

Credentials = Dict[str, Any]


def token_expiry(credentials: Credentials) -> Optional[datetime]:
    """Expiry of a credential set as an aware UTC datetime, if it has one."""
    value = credentials.get('expiry')
    if not value:
        return None
    parsed = datetime.fromisoformat(value.rstrip('Z'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_expiry(value: datetime) -> str:
    """Format an expiry the way google-auth writes it (naive UTC plus 'Z')."""
    return value.astimezone(timezone.utc).replace(tzinfo=None).isoformat() + 'Z'


def normalize_credentials(data: Dict[str, Any]) -> Credentials:
    """Map a legacy token document onto google-auth's authorized-user fields."""
    credentials = {k: v for k, v in data.items() if k not in ('access_token', 'expiry_date', 'scope')}
    if 'token' not in credentials and data.get('access_token'):
        credentials['token'] = data['access_token']
    if 'expiry' not in credentials and data.get('expiry_date'):
        expiry = datetime.fromtimestamp(int(data['expiry_date']) / 1000, tz=timezone.utc)
        credentials['expiry'] = format_expiry(expiry)
    if 'scopes' not in credentials and data.get('scope'):
        credentials['scopes'] = data['scope'].split()
    return credentials


class AccountStore:
    """JSON-file backed store of accounts and the default-account pointer.

    The whole document is re-read and re-written on every mutation. After
    each mutation `default_account` names an existing account, or is None
    when there are no accounts.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._accounts: Dict[str, Account] = {}
        self._default: Optional[str] = None
        self._loaded = False

    def load(self) -> None:
        self._accounts, self._default = {}, None
        if self.path.exists():
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self._parse(data)
        self._loaded = True

    def _parse(self, data: Dict[str, Any]) -> None:
        if 'accounts' not in data and any(field in data for field in LEGACY_FIELDS):
            logger.info('Found single-account token file at %s; treating it as a legacy account', self.path)
            self._accounts = {LEGACY_KEY: Account(email=LEGACY_KEY, credentials=normalize_credentials(data))}
            self._default = LEGACY_KEY
            return

        for email, entry in (data.get('accounts') or {}).items():
            self._accounts[email] = Account(
                email=email,
                credentials=entry.get('credentials', {}),
                label=entry.get('label'),
            )
        self._default = data.get('default_account')
        self._fix_default()

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def _fix_default(self) -> None:
        if self._default not in self._accounts:
            self._default = next(iter(self._accounts), None)

    def _write(self) -> None:
        self._fix_default()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            'accounts': {
                email: {'label': account.label, 'credentials': account.credentials}
                for email, account in self._accounts.items()
            },
            'default_account': self._default,
        }
        tmp_path = self.path.with_suffix('.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)

    @property
    def default_account(self) -> Optional[str]:
        self._ensure_loaded()
        return self._default

    def accounts(self) -> List[Account]:
        self._ensure_loaded()
        return list(self._accounts.values())

    def get(self, email: str) -> Account:
        self._ensure_loaded()
        try:
            return self._accounts[email]
        except KeyError:
            raise UnknownAccount(email) from None

    def save_account(self, email: str, credentials: Credentials, label: Optional[str] = None) -> Account:
        """Insert or replace an account; an existing label is kept unless a new one is given."""
        self.load()
        existing = self._accounts.get(email)
        if label is None and existing is not None:
            label = existing.label
        account = Account(email=email, credentials=credentials, label=label)
        self._accounts[email] = account
        self._write()
        return account

    def remove_account(self, email: str) -> None:
        self.load()
        if email not in self._accounts:
            raise UnknownAccount(email)
        del self._accounts[email]
        self._write()

    def set_default(self, email: str) -> None:
        self.load()
        if email not in self._accounts:
            raise UnknownAccount(email)
        self._default = email
        self._write()

    def set_label(self, email: str, label: Optional[str]) -> Account:
        self.load()
        if email not in self._accounts:
            raise UnknownAccount(email)
        self._accounts[email].label = label or None
        self._write()
        return self._accounts[email]

    def rekey(self, old_email: str, new_email: str) -> Account:
        """Move an entry to a new key, carrying the default pointer along."""
        self.load()
        if old_email not in self._accounts:
            raise UnknownAccount(old_email)
        old = self._accounts.pop(old_email)
        existing = self._accounts.get(new_email)
        label = existing.label if existing is not None and existing.label else old.label
        self._accounts[new_email] = Account(email=new_email, credentials=old.credentials, label=label)
        if self._default == old_email:
            self._default = new_email
        self._write()
        return self._accounts[new_email]


class ClientCache:
    """Per-account API clients derived from stored credentials."""

    def __init__(self):
        self._clients: Dict[str, Any] = {}

    def get(self, email: str) -> Optional[Any]:
        return self._clients.get(email)

    def put(self, email: str, clients: Any) -> None:
        self._clients[email] = clients

    def invalidate(self, email: str) -> None:
        self._clients.pop(email, None)

    def clear(self) -> None:
        self._clients.clear()


class AccountManager:
    """Selects an account per operation and keeps its credentials fresh.

    The blocking collaborators (`refresher`, `identity_lookup`,
    `client_factory`, `authenticator`) run in the default executor.
    """

    def __init__(self, store: AccountStore, refresher: Callable[[Credentials], Credentials],
                 identity_lookup: Callable[[Credentials], str],
                 client_factory: Callable[[str, Credentials], Any],
                 authenticator: Optional[Callable[[], Credentials]] = None,
                 cache: Optional[ClientCache] = None,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.store = store
        self.cache = cache or ClientCache()
        self._refresher = refresher
        self._identity_lookup = identity_lookup
        self._client_factory = client_factory
        self._authenticator = authenticator
        self._clock = clock

    async def _run_blocking(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def resolve_account(self, hint: Optional[str] = None,
                        attendee_emails: Optional[Sequence[str]] = None) -> Optional[str]:
        """Pick the account email to act as.

        Order: explicit hint (email or label), the only account, the first
        account whose domain appears among the attendees, the stored default.
        """
        accounts = self.store.accounts()

        if hint:
            wanted = hint.strip()
            for account in accounts:
                if account.email == wanted.lower():
                    return account.email
            for account in accounts:
                if account.label and account.label.lower() == wanted.lower():
                    return account.email
            logger.warning('No account matches "%s"; falling back to automatic selection', hint)

        if len(accounts) == 1:
            return accounts[0].email

        if attendee_emails:
            domains = Counter(e.rsplit('@', 1)[-1].lower() for e in attendee_emails if '@' in e)
            for account in accounts:
                if account.domain and account.domain in domains:
                    logger.debug('Selected %s by attendee domain', account.email)
                    return account.email

        return self.store.default_account

    async def refresh_if_needed(self, account: Account) -> Account:
        """Refresh the access token when it expires within the buffer."""
        expiry = token_expiry(account.credentials)
        if expiry is None:
            return account
        if expiry - self._clock() >= REFRESH_BUFFER:
            return account

        logger.info('Access token for %s expires at %s; refreshing', account.email, expiry.isoformat())
        try:
            credentials = await self._run_blocking(self._refresher, account.credentials)
        except Exception as e:
            logger.error('Token refresh failed for %s: %s', account.email, e)
            raise RefreshFailed(account.email, e, legacy=account.email == LEGACY_KEY) from e

        account = self.store.save_account(account.email, credentials)
        if self.cache.get(account.email) is not None:
            self.cache.put(account.email, await self._build_clients(account))
        return account

    async def migrate_legacy(self) -> Account:
        """Re-key the legacy placeholder entry to the account's real email."""
        account = self.store.get(LEGACY_KEY)
        try:
            email = await self._run_blocking(self._identity_lookup, account.credentials)
        except Exception as e:
            raise AuthenticationFailed(f'Could not determine the email of the stored Google account: {e}') from e

        email = email.strip().lower()
        self.cache.invalidate(LEGACY_KEY)
        migrated = self.store.rekey(LEGACY_KEY, email)
        logger.info('Migrated legacy token file to account %s', email)
        return migrated

    async def _build_clients(self, account: Account) -> Any:
        return await self._run_blocking(self._client_factory, account.email, account.credentials)

    async def get_clients(self, hint: Optional[str] = None,
                          attendee_emails: Optional[Sequence[str]] = None) -> Any:
        """Clients for the selected account, refreshing and migrating as needed."""
        email = self.resolve_account(hint, attendee_emails)
        if email is None:
            raise NoAccountConfigured()

        account = await self.refresh_if_needed(self.store.get(email))
        if account.email == LEGACY_KEY:
            account = await self.migrate_legacy()

        clients = self.cache.get(account.email)
        if clients is None:
            clients = await self._build_clients(account)
            self.cache.put(account.email, clients)
        return clients

    async def authenticate(self, label: Optional[str] = None) -> Account:
        """Run the interactive sign-in and store the resulting account."""
        if self._authenticator is None:
            raise AuthenticationFailed('Interactive authentication is not available')

        credentials = await self._run_blocking(self._authenticator)
        try:
            email = await self._run_blocking(self._identity_lookup, credentials)
        except Exception as e:
            raise AuthenticationFailed(f'Signed in, but could not determine the account email: {e}') from e

        email = email.strip().lower()
        account = self.store.save_account(email, credentials, label=label)
        self.cache.invalidate(email)
        logger.info('Authenticated account %s', email)
        return account

    def remove_account(self, email: str) -> None:
        self.store.remove_account(email)
        self.cache.invalidate(email)

    def set_default(self, email: str) -> None:
        self.store.set_default(email)

    def set_label(self, email: str, label: Optional[str]) -> Account:
        account = self.store.set_label(email, label)
        self.cache.invalidate(email)
        return account

    def list_accounts(self) -> List[Dict[str, Any]]:
        default = self.store.default_account
        result = []
        for account in self.store.accounts():
            expiry = token_expiry(account.credentials)
            result.append({
                'email': account.email,
                'label': account.label,
                'default': account.email == default,
                'expiry': expiry.isoformat() if expiry else None,
            })
        return result
