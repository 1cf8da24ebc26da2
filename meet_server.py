import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from meet_scheduler.config import configure_logging, load_settings
from meet_scheduler.errors import AmbiguousContact, AttendeeResolutionError
from meet_scheduler.google_auth import create_account_manager
from meet_scheduler.mirror import AppleCalendarMirror, DisabledCalendarMirror
from meet_scheduler.scheduler import MeetingScheduler
from meet_scheduler.windows import parse_instant, window_from_args

logger = logging.getLogger('meet_server')

mcp = FastMCP('meet-scheduler')

# Initialized on first use
scheduler = None


def get_scheduler() -> MeetingScheduler:
    global scheduler
    if scheduler is None:
        settings = load_settings()
        mirror = AppleCalendarMirror() if settings.apple_calendar_sync else DisabledCalendarMirror()
        scheduler = MeetingScheduler(create_account_manager(settings), mirror, settings)
    return scheduler


def error_response(e: Exception) -> Dict[str, Any]:
    """Tool-level error payload the assistant can act on."""
    logger.error('%s: %s', type(e).__name__, e)
    response = {'error': str(e), 'error_type': type(e).__name__}
    cause = e.cause if isinstance(e, AttendeeResolutionError) else e
    if isinstance(cause, AmbiguousContact):
        response['candidates'] = cause.candidates[:AmbiguousContact.MAX_LISTED]
    return response


@mcp.tool()
async def search_invitees(query: str, limit: int = 10, account: Optional[str] = None) -> Dict[str, Any]:
    """Find contacts by name or email via the Google People API."""
    try:
        results = await get_scheduler().search_invitees(query, limit, account)
        return {'query': query, 'count': len(results), 'results': results}
    except Exception as e:
        return error_response(e)


@mcp.tool()
async def find_slots(attendees: List[str], window: Optional[str] = None,
                     start_datetime: Optional[str] = None, end_datetime: Optional[str] = None,
                     slot_minutes: int = 30, account: Optional[str] = None) -> Dict[str, Any]:
    """Compute shared free slots across attendees using Google free/busy.

    Args:
        attendees: Names or email addresses; names are looked up in contacts
        window: 'today', 'tomorrow', 'this week' or 'next week' (instead of start/end)
        start_datetime: Window start in ISO format (e.g., '2025-10-09T09:00:00Z')
        end_datetime: Window end in ISO format
        slot_minutes: Slot size in minutes
        account: Account email or label to act as
    """
    try:
        date_window = window_from_args(window, start_datetime, end_datetime)
        result = await get_scheduler().find_slots(attendees, date_window, slot_minutes, account)
        result['message'] = (
            'No common free slots in the window.' if not result['slots']
            else f"{result['total_slots']} slot(s) found. Showing up to 50."
        )
        return result
    except Exception as e:
        return error_response(e)


@mcp.tool()
async def create_meet_and_calendar(title: str, start_datetime: str, end_datetime: str,
                                   attendees: List[str], description: Optional[str] = None,
                                   apple_calendar_name: Optional[str] = None,
                                   account: Optional[str] = None) -> Dict[str, Any]:
    """Create a Google Calendar event with a Meet link and mirror it to Apple Calendar.

    Args:
        title: Event title
        start_datetime: Start time in ISO format (e.g., '2025-10-10T14:00:00Z')
        end_datetime: End time in ISO format
        attendees: Names or email addresses to invite
        description: Event description
        apple_calendar_name: Local calendar to mirror into (default from APPLE_CALENDAR_NAME)
        account: Account email or label to act as
    """
    try:
        return await get_scheduler().create_meeting(
            title=title,
            start=parse_instant(start_datetime),
            end=parse_instant(end_datetime),
            attendees=attendees,
            description=description,
            mirror_calendar=apple_calendar_name,
            account=account,
        )
    except Exception as e:
        return error_response(e)


@mcp.tool()
async def plan_and_schedule(title: str, attendees: List[str], duration_minutes: int,
                            window: Optional[str] = None, start_datetime: Optional[str] = None,
                            end_datetime: Optional[str] = None, description: Optional[str] = None,
                            apple_calendar_name: Optional[str] = None,
                            account: Optional[str] = None) -> Dict[str, Any]:
    """Find the first contiguous slot of the requested duration within a window and book it."""
    try:
        date_window = window_from_args(window, start_datetime, end_datetime)
        return await get_scheduler().plan_and_schedule(
            title=title,
            attendees=attendees,
            duration_minutes=duration_minutes,
            window=date_window,
            description=description,
            mirror_calendar=apple_calendar_name,
            account=account,
        )
    except Exception as e:
        return error_response(e)


@mcp.tool()
async def update_meeting(event_id: str, title: Optional[str] = None, description: Optional[str] = None,
                         start_datetime: Optional[str] = None, end_datetime: Optional[str] = None,
                         attendees: Optional[List[str]] = None, apple_calendar_name: Optional[str] = None,
                         account: Optional[str] = None) -> Dict[str, Any]:
    """Update an existing meeting in Google Calendar and in the Apple Calendar mirror."""
    try:
        return await get_scheduler().update_meeting(
            event_id,
            title=title,
            description=description,
            start=parse_instant(start_datetime) if start_datetime else None,
            end=parse_instant(end_datetime) if end_datetime else None,
            attendees=attendees,
            mirror_calendar=apple_calendar_name,
            account=account,
        )
    except Exception as e:
        return error_response(e)


@mcp.tool()
async def delete_meeting(event_id: str, apple_calendar_name: Optional[str] = None,
                         account: Optional[str] = None) -> Dict[str, Any]:
    """Delete a meeting from Google Calendar and from the Apple Calendar mirror."""
    try:
        return await get_scheduler().delete_meeting(event_id, apple_calendar_name, account)
    except Exception as e:
        return error_response(e)


@mcp.tool()
async def list_meetings(window: Optional[str] = 'this week', start_datetime: Optional[str] = None,
                        end_datetime: Optional[str] = None, query: Optional[str] = None,
                        account: Optional[str] = None) -> Dict[str, Any]:
    """List meetings in a window, optionally filtered by a search query."""
    try:
        if start_datetime or end_datetime:
            window = None
        events = await get_scheduler().list_meetings(window_from_args(window, start_datetime, end_datetime),
                                                     query, account)
        return {'total_events': len(events), 'events': [e.to_dict() for e in events]}
    except Exception as e:
        return error_response(e)


@mcp.tool()
def list_accounts() -> Dict[str, Any]:
    """List authenticated Google accounts and which one is the default."""
    try:
        accounts = get_scheduler().accounts.list_accounts()
        return {'total_accounts': len(accounts), 'accounts': accounts}
    except Exception as e:
        return error_response(e)


@mcp.tool()
async def add_account(label: Optional[str] = None) -> Dict[str, Any]:
    """Sign in to another Google account in the browser and store its tokens."""
    try:
        account = await get_scheduler().accounts.authenticate(label)
        return {'success': True, 'email': account.email, 'label': account.label}
    except Exception as e:
        return error_response(e)


@mcp.tool()
def remove_account(email: str) -> Dict[str, Any]:
    """Forget a stored Google account."""
    try:
        accounts = get_scheduler().accounts
        accounts.remove_account(email.strip().lower())
        return {'success': True, 'removed': email, 'default_account': accounts.store.default_account}
    except Exception as e:
        return error_response(e)


@mcp.tool()
def set_default_account(email: str) -> Dict[str, Any]:
    """Choose the account used when no other selection rule applies."""
    try:
        get_scheduler().accounts.set_default(email.strip().lower())
        return {'success': True, 'default_account': email.strip().lower()}
    except Exception as e:
        return error_response(e)


@mcp.tool()
def set_account_label(email: str, label: Optional[str] = None) -> Dict[str, Any]:
    """Attach a short label (e.g. 'work') to an account, or clear it."""
    try:
        account = get_scheduler().accounts.set_label(email.strip().lower(), label)
        return {'success': True, 'email': account.email, 'label': account.label}
    except Exception as e:
        return error_response(e)


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def run_cli(args: argparse.Namespace) -> int:
    sched = get_scheduler()

    if args.command == 'auth':
        account = await sched.accounts.authenticate(args.label)
        print(f'Authenticated with Google as {account.email}.')
        if args.account and args.account.strip().lower() != account.email:
            print(f'Warning: signed in as {account.email}, not {args.account}.', file=sys.stderr)
            return 1
    elif args.command == 'accounts':
        _print(sched.accounts.list_accounts())
    elif args.command == 'search':
        _print(await sched.search_invitees(' '.join(args.query), 10, args.account))
    elif args.command == 'find':
        window = window_from_args(start=args.start, end=args.end)
        result = await sched.find_slots(args.attendees.split(','), window, args.slot_minutes, args.account)
        _print(result['slots'][:20])
    elif args.command == 'create':
        result = await sched.create_meeting(
            title=args.title,
            start=parse_instant(args.start),
            end=parse_instant(args.end),
            attendees=args.attendees.split(','),
            account=args.account,
        )
        _print({'meetUrl': result['meetUrl'], 'eventHtml': result['eventHtml'], 'mirror': result['mirror']})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='meet-scheduler', description='Google Meet scheduling MCP server')
    sub = parser.add_subparsers(dest='command')

    sub.add_parser('serve', help='Run the MCP server on stdio (default)')

    auth = sub.add_parser('auth', help='Sign in to a Google account')
    auth.add_argument('--label', help='Short name for the account, e.g. work')
    auth.add_argument('--account', help='Email the sign-in is expected to match')

    sub.add_parser('accounts', help='List stored accounts')

    search = sub.add_parser('search', help='Search contacts')
    search.add_argument('query', nargs='+')

    find = sub.add_parser('find', help='Find common free slots')
    find.add_argument('attendees', help='Comma-separated names or emails')
    find.add_argument('start')
    find.add_argument('end')
    find.add_argument('--slot-minutes', type=int, default=30)

    create = sub.add_parser('create', help='Create a Meet event')
    create.add_argument('title')
    create.add_argument('start')
    create.add_argument('end')
    create.add_argument('attendees', help='Comma-separated names or emails')

    for command in (search, find, create):
        command.add_argument('--account', help='Account email or label to act as')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(load_settings().log_level)

    if args.command in (None, 'serve'):
        mcp.run()
        return 0

    try:
        return asyncio.run(run_cli(args))
    except Exception as e:
        logger.error('%s', e)
        return 1


if __name__ == '__main__':
    sys.exit(main())
