"""
Retry and cancellation primitive tests
--------------------------------------
"""

import pytest

from chaos_operator.errors import ReconcileCancelled, WaitExhaustedError
from chaos_operator.utils.retry import CancelToken, bind_token, current_token, retry_times


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_token_deadline():
    clock = FakeClock()
    token = CancelToken(timeout=10, clock=clock)
    assert token.remaining() == 10
    assert token.cancelled is False
    clock.now += 10
    assert token.cancelled is True
    with pytest.raises(ReconcileCancelled, match="deadline"):
        token.raise_if_cancelled()


def test_token_without_deadline():
    token = CancelToken()
    assert token.remaining() is None
    token.cancel()
    assert token.wait(5) is True
    with pytest.raises(ReconcileCancelled):
        token.raise_if_cancelled()


def test_bind_token_restores_previous():
    outer = CancelToken()
    with bind_token(outer):
        with bind_token(None):
            assert current_token() is None
        assert current_token() is outer
    assert current_token() is None


def test_retry_returns_first_success():
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("not yet")
        return "ok"

    sleeps = []
    assert retry_times(flaky, attempts=5, delay=2.0, sleep=sleeps.append) == "ok"
    assert len(attempts) == 3
    assert sleeps == [2.0, 2.0]


def test_retry_exhaustion_keeps_last_error():
    def never():
        raise RuntimeError("still there")

    with pytest.raises(WaitExhaustedError) as exc:
        retry_times(never, attempts=3, delay=0, sleep=lambda s: None)
    assert exc.value.attempts == 3
    assert str(exc.value.last_error) == "still there"


def test_retry_stops_when_cancelled_between_attempts():
    token = CancelToken()
    calls = []

    def check():
        calls.append(1)
        token.cancel()
        raise RuntimeError("pods remain")

    with pytest.raises(ReconcileCancelled):
        retry_times(check, attempts=10, delay=0, cancel=token, sleep=lambda s: None)
    assert len(calls) == 1


def test_retry_rejects_zero_attempts():
    with pytest.raises(ValueError):
        retry_times(lambda: None, attempts=0, delay=0)
