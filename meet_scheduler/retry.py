"""
Retry with exponential backoff for remote calls.
"""

import asyncio
import json
import logging
import socket
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from google.auth.exceptions import TransportError
from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

T = TypeVar('T')

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)

RETRYABLE_REASONS = {
    'ratelimitexceeded',
    'userratelimitexceeded',
    'quotaexceeded',
    'backenderror',
    'internalerror',
    'resource_exhausted',
    'unavailable',
}

RETRYABLE_MESSAGES = (
    'rate limit',
    'ratelimit',
    'quota',
    'too many requests',
)

NETWORK_ERRORS = (ConnectionError, TimeoutError, socket.gaierror, TransportError)


def _status_code(error: Exception) -> Optional[int]:
    if isinstance(error, HttpError):
        try:
            return int(error.resp.status)
        except (AttributeError, TypeError, ValueError):
            return None
    for attr in ('status_code', 'status', 'code'):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def _reasons(error: Exception) -> Iterable[str]:
    """Structured reason codes carried by a Google API error, if any."""
    if not isinstance(error, HttpError):
        return []

    details = getattr(error, 'error_details', None)
    if isinstance(details, list):
        reasons = [d.get('reason', '') for d in details if isinstance(d, dict)]
        if any(reasons):
            return reasons

    try:
        data = json.loads(error.content.decode('utf-8'))
        return [e.get('reason', '') for e in data['error'].get('errors', [])]
    except (AttributeError, KeyError, TypeError, ValueError):
        return []


def is_retryable(error: Exception) -> bool:
    """Classify an error as transient (worth retrying) or fatal."""
    if isinstance(error, NETWORK_ERRORS):
        return True

    if _status_code(error) in RETRYABLE_STATUS_CODES:
        return True

    reasons = [r.lower() for r in _reasons(error) if r]
    if reasons:
        return any(r in RETRYABLE_REASONS for r in reasons)

    message = str(error).lower()
    return any(phrase in message for phrase in RETRYABLE_MESSAGES)


async def with_retry(operation: Callable[[], Awaitable[T]], name: str, max_retries: int = 4,
                     sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> T:
    """Run `operation`, retrying transient failures with 1s, 2s, 4s, 8s delays.

    The last error is re-raised unchanged once retries are exhausted or the
    error is not retryable.
    """
    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except Exception as error:
            if attempt >= max_retries or not is_retryable(error):
                raise
            delay = 2 ** attempt
            logger.warning('%s failed (attempt %d/%d): %s; retrying in %ds',
                           name, attempt + 1, max_retries + 1, error, delay)
            await sleep(delay)
