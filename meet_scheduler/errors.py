"""
Exception hierarchy for the meet scheduler.
"""

from typing import Dict, List


class MeetSchedulerError(Exception):
    """Base class for errors raised by the scheduler core."""


class ValidationError(MeetSchedulerError):
    """Bad caller input: window ordering, sizes, timestamps."""


class ResolutionError(MeetSchedulerError):
    """An attendee could not be turned into a canonical email."""


class EmptyInput(ResolutionError):
    def __init__(self):
        super().__init__('Attendee entry is empty. Provide a name or an email address.')


class InvalidEmailFormat(ResolutionError):
    def __init__(self, email: str, reason: str):
        self.email = email
        super().__init__(f'Invalid email address "{email}": {reason}')


class ContactNotFound(ResolutionError):
    def __init__(self, query: str):
        self.query = query
        super().__init__(
            f'No contact found matching "{query}". '
            f'Provide the email address directly instead of a name.'
        )


class AmbiguousContact(ResolutionError):
    MAX_LISTED = 5

    def __init__(self, query: str, candidates: List[Dict[str, str]]):
        self.query = query
        self.candidates = candidates
        listed = ', '.join(f"{c['name']} ({c['email']})" for c in candidates[:self.MAX_LISTED])
        extra = len(candidates) - self.MAX_LISTED
        more = f' and {extra} more' if extra > 0 else ''
        super().__init__(
            f'"{query}" matches {len(candidates)} contacts: {listed}{more}. '
            f'Specify which one by email address.'
        )


class EmptyAttendeeList(ResolutionError):
    def __init__(self):
        super().__init__('At least one attendee is required.')


class AttendeeResolutionError(ResolutionError):
    """Wraps the failure of one entry inside a multi-attendee resolution."""

    def __init__(self, entry: str, cause: Exception):
        self.entry = entry
        self.cause = cause
        super().__init__(f'Could not resolve attendee "{entry}": {cause}')


class AccountError(MeetSchedulerError):
    """Problems selecting, loading or authenticating an account."""


class NoAccountConfigured(AccountError):
    def __init__(self):
        super().__init__(
            'No Google account is authenticated. Run "meet-scheduler auth" '
            'or call the add_account tool first.'
        )


class UnknownAccount(AccountError):
    def __init__(self, email: str):
        self.email = email
        super().__init__(f'No stored account for "{email}".')


class RefreshFailed(AccountError):
    def __init__(self, email: str, cause: Exception, legacy: bool = False):
        self.email = email
        self.cause = cause
        # A legacy token file has no known email yet
        command = 'meet-scheduler auth' if legacy else f'meet-scheduler auth --account {email}'
        account = 'the stored account' if legacy else email
        super().__init__(
            f'Refreshing the access token for {account} failed ({cause}). '
            f'Re-authenticate this account with "{command}".'
        )


class AuthenticationFailed(AccountError):
    """The interactive OAuth flow or identity discovery did not complete."""
