"""
Google OAuth helpers: sign-in, token refresh, identity lookup and clients.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from .accounts import AccountManager, AccountStore
from .config import Settings
from .contacts import GoogleContactsClient
from .errors import AuthenticationFailed
from .google_calendar import GoogleCalendarClient

logger = logging.getLogger(__name__)

SCOPES = [
    'https://www.googleapis.com/auth/calendar',
    'https://www.googleapis.com/auth/contacts.readonly',
]


@dataclass
class GoogleClients:
    email: str
    calendar: GoogleCalendarClient
    contacts: GoogleContactsClient


class GoogleAuth:
    """Blocking Google auth operations bound to the OAuth client settings."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _client_config(self) -> Dict[str, Any]:
        if not self.settings.client_id or not self.settings.client_secret:
            raise AuthenticationFailed(
                'Missing Google OAuth client: set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET, '
                'or GOOGLE_CREDENTIALS_FILE pointing at a downloaded credentials.json'
            )
        return {
            'installed': {
                'client_id': self.settings.client_id,
                'client_secret': self.settings.client_secret,
                'auth_uri': 'https://accounts.google.com/o/oauth2/auth',
                'token_uri': 'https://oauth2.googleapis.com/token',
                'redirect_uris': ['http://localhost'],
            }
        }

    def _credentials(self, info: Dict[str, Any]) -> Credentials:
        info = dict(info)
        # Legacy token files may lack the OAuth client needed for refresh
        if self.settings.client_id:
            info.setdefault('client_id', self.settings.client_id)
        if self.settings.client_secret:
            info.setdefault('client_secret', self.settings.client_secret)
        info.setdefault('token_uri', 'https://oauth2.googleapis.com/token')
        if 'refresh_token' not in info:
            return Credentials(token=info.get('token'), scopes=info.get('scopes'))
        return Credentials.from_authorized_user_info(info)

    def sign_in(self) -> Dict[str, Any]:
        """Run the browser consent flow and return the authorized-user token document."""
        if self.settings.credentials_file and self.settings.credentials_file.exists():
            flow = InstalledAppFlow.from_client_secrets_file(str(self.settings.credentials_file), SCOPES)
        else:
            flow = InstalledAppFlow.from_client_config(self._client_config(), SCOPES)
        creds = flow.run_local_server(
            port=self.settings.redirect_port,
            access_type='offline',
            prompt='consent',
            timeout_seconds=300,
        )
        if creds is None:
            raise AuthenticationFailed('Google sign-in did not complete')
        return json.loads(creds.to_json())

    def refresh(self, info: Dict[str, Any]) -> Dict[str, Any]:
        creds = self._credentials(info)
        if not creds.refresh_token:
            raise AuthenticationFailed('no refresh token stored')
        creds.refresh(Request())
        return json.loads(creds.to_json())

    def lookup_email(self, info: Dict[str, Any]) -> str:
        """The primary calendar's id is the signed-in account's email address."""
        service = build('calendar', 'v3', credentials=self._credentials(info), cache_discovery=False)
        calendar = service.calendars().get(calendarId='primary').execute()
        return calendar['id']

    def build_clients(self, email: str, info: Dict[str, Any]) -> GoogleClients:
        creds = self._credentials(info)
        calendar = build('calendar', 'v3', credentials=creds, cache_discovery=False)
        people = build('people', 'v1', credentials=creds, cache_discovery=False)
        return GoogleClients(
            email=email,
            calendar=GoogleCalendarClient(calendar, creds),
            contacts=GoogleContactsClient(people, creds),
        )


def create_account_manager(settings: Settings) -> AccountManager:
    auth = GoogleAuth(settings)
    return AccountManager(
        store=AccountStore(settings.token_path),
        refresher=auth.refresh,
        identity_lookup=auth.lookup_email,
        client_factory=auth.build_clients,
        authenticator=auth.sign_in,
    )
