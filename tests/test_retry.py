"""Tests for meet_scheduler/retry.py"""

import json
import socket

import httplib2
import pytest
from googleapiclient.errors import HttpError

from meet_scheduler.retry import is_retryable, with_retry


def http_error(status: int, reason: str = None, message: str = 'error') -> HttpError:
    error = {'code': status, 'message': message}
    if reason:
        error['errors'] = [{'domain': 'usageLimits', 'reason': reason, 'message': message}]
    content = json.dumps({'error': error}).encode('utf-8')
    return HttpError(httplib2.Response({'status': status}), content)


class Recorder:
    """Fake sleep plus an operation that fails a set number of times."""

    def __init__(self, failures, result='ok'):
        self.failures = list(failures)
        self.result = result
        self.calls = 0
        self.delays = []

    async def sleep(self, seconds):
        self.delays.append(seconds)

    async def operation(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


# ─────────────────────────────────────────────────────────────────────────────
# Classification
# ─────────────────────────────────────────────────────────────────────────────


class TestIsRetryable:
    @pytest.mark.parametrize('status', [429, 500, 502, 503, 504])
    def test_transient_status_codes(self, status):
        assert is_retryable(http_error(status))

    @pytest.mark.parametrize('status', [400, 401, 404, 409])
    def test_client_errors(self, status):
        assert not is_retryable(http_error(status))

    @pytest.mark.parametrize('error', [
        ConnectionResetError('reset by peer'),
        TimeoutError('timed out'),
        socket.gaierror('Name or service not known'),
    ])
    def test_network_errors(self, error):
        assert is_retryable(error)

    @pytest.mark.parametrize('reason', ['rateLimitExceeded', 'userRateLimitExceeded', 'quotaExceeded'])
    def test_rate_limit_reasons_on_403(self, reason):
        assert is_retryable(http_error(403, reason=reason))

    def test_forbidden_reason_on_403(self):
        assert not is_retryable(http_error(403, reason='forbidden', message='Rate limit disclaimer'))

    def test_message_fallback(self):
        assert is_retryable(Exception('Quota exceeded for quota metric queries'))
        assert not is_retryable(Exception('Calendar not found'))


# ─────────────────────────────────────────────────────────────────────────────
# with_retry
# ─────────────────────────────────────────────────────────────────────────────


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_two_503s(self):
        recorder = Recorder([http_error(503), http_error(503)], result={'id': 'evt'})

        result = await with_retry(recorder.operation, 'events.insert', sleep=recorder.sleep)

        assert result == {'id': 'evt'}
        assert recorder.calls == 3
        assert recorder.delays == [1, 2]

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self):
        original = http_error(404)
        recorder = Recorder([original])

        with pytest.raises(HttpError) as exc_info:
            await with_retry(recorder.operation, 'events.get', sleep=recorder.sleep)

        assert exc_info.value is original
        assert recorder.calls == 1
        assert recorder.delays == []

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error_unchanged(self):
        errors = [ConnectionResetError(f'reset {i}') for i in range(5)]
        recorder = Recorder(errors)

        with pytest.raises(ConnectionResetError) as exc_info:
            await with_retry(recorder.operation, 'freebusy.query', sleep=recorder.sleep)

        assert str(exc_info.value) == 'reset 4'
        assert recorder.calls == 5
        assert recorder.delays == [1, 2, 4, 8]

    @pytest.mark.asyncio
    async def test_respects_max_retries(self):
        recorder = Recorder([TimeoutError()] * 3)

        with pytest.raises(TimeoutError):
            await with_retry(recorder.operation, 'people.searchContacts', max_retries=1, sleep=recorder.sleep)

        assert recorder.calls == 2
        assert recorder.delays == [1]
