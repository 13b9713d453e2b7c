# chaos_operator/utils/retry.py
"""
Bounded retry and cancellation primitives.

`CancelToken` carries an optional deadline plus a shutdown flag. The token is
bound to the running reconcile through a contextvar so that the cluster client
can derive request timeouts from it without every call site threading it through.

`retry_times` is the bounded poll used while waiting for chaos pods to terminate.
"""

from __future__ import annotations

import time
import logging
import threading
import contextlib
import contextvars
from typing import Callable, Iterator, Optional, TypeVar

from chaos_operator.errors import ReconcileCancelled, WaitExhaustedError

LOG = logging.getLogger("chaosoperator.utils.retry")

T = TypeVar("T")


class CancelToken:
    """Cooperative cancellation with an optional monotonic deadline."""

    def __init__(self, timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._event = threading.Event()
        self.deadline = clock() + timeout if timeout is not None else None

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and self._clock() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None when there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise ReconcileCancelled("reconcile cancelled")
        if self.deadline is not None and self._clock() >= self.deadline:
            raise ReconcileCancelled("reconcile deadline exceeded")

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds` (clipped to the deadline). Returns True if cancelled meanwhile."""
        rem = self.remaining()
        if rem is not None:
            seconds = min(seconds, rem)
        if seconds > 0:
            self._event.wait(seconds)
        return self.cancelled


_current_token: contextvars.ContextVar[Optional[CancelToken]] = contextvars.ContextVar("chaosoperator_cancel", default=None)


def current_token() -> Optional[CancelToken]:
    return _current_token.get()


@contextlib.contextmanager
def bind_token(token: Optional[CancelToken]) -> Iterator[Optional[CancelToken]]:
    reset = _current_token.set(token)
    try:
        yield token
    finally:
        _current_token.reset(reset)


def retry_times(
    fn: Callable[[], T],
    attempts: int,
    delay: float,
    cancel: Optional[CancelToken] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Call `fn` until it returns without raising, at most `attempts` times,
    waiting `delay` seconds between calls.

    Raises WaitExhaustedError (carrying the last failure) when attempts run out,
    and ReconcileCancelled as soon as the token is cancelled. A custom `sleep`
    replaces the token wait (tests use it to avoid real delays).
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            return fn()
        except (ReconcileCancelled, WaitExhaustedError):
            raise
        except Exception as e:
            last_error = e
            LOG.debug("attempt %d/%d failed: %s", attempt, attempts, e)
        if attempt == attempts:
            break
        if sleep is not None:
            sleep(delay)
        elif cancel is not None:
            cancel.wait(delay)
        else:
            time.sleep(delay)
    raise WaitExhaustedError(
        "condition not met after %d attempts: %s" % (attempts, last_error),
        attempts=attempts,
        last_error=last_error,
    )


__all__ = ["CancelToken", "current_token", "bind_token", "retry_times"]
