# chaos_operator/workqueue.py
"""
De-duplicating asyncio work queue keyed by "namespace/name".

Semantics follow the usual controller work queue:
 - a key waiting in the queue is stored once, however often it is added
 - a key being processed is never handed to a second worker; adds that
   arrive meanwhile are parked and re-queued when the worker calls done()
 - add_rate_limited() re-adds with jittered exponential backoff per key,
   forget() resets that key's backoff
"""

from __future__ import annotations

import random
import asyncio
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Set

from chaos_operator.metrics import WORKQUEUE_DEPTH, WORKQUEUE_RETRIES

LOG = logging.getLogger("chaosoperator.workqueue")


def backoff_delay(failures: int, base: float, cap: float, jitter: float = 0.3) -> float:
    """Exponential backoff with +/- jitter, clamped to [0.1, cap]."""
    delay = min(base ** failures, cap)
    delay += delay * jitter * (0.5 - random.random())
    return max(0.1, min(delay, cap))


class WorkQueue:
    def __init__(self, backoff_base: float = 2.0, backoff_max: float = 300.0):
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._queue: Deque[str] = deque()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._failures: Dict[str, int] = {}
        self._timers: List[asyncio.TimerHandle] = []
        self._wakeup = asyncio.Event()
        self._shutdown = False

    # ---------------------------
    # producers
    # ---------------------------
    def add(self, key: str):
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._update_depth()
        self._wakeup.set()

    def add_after(self, key: str, delay: float):
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        self._timers = [t for t in self._timers if not t.cancelled()]
        self._timers.append(loop.call_later(delay, self.add, key))

    def add_rate_limited(self, key: str) -> float:
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = backoff_delay(failures, self.backoff_base, self.backoff_max)
        WORKQUEUE_RETRIES.inc()
        LOG.debug("requeue %s in %.2fs (failures=%d)", key, delay, failures + 1)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str):
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    # ---------------------------
    # consumers
    # ---------------------------
    async def get(self) -> Optional[str]:
        """Next key to process, or None once the queue is shut down."""
        while True:
            if self._shutdown:
                return None
            if self._queue:
                break
            self._wakeup.clear()
            await self._wakeup.wait()
        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        self._update_depth()
        return key

    def done(self, key: str):
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.append(key)
            self._update_depth()
            self._wakeup.set()

    def shutdown(self):
        self._shutdown = True
        for t in self._timers:
            t.cancel()
        self._timers = []
        self._wakeup.set()

    @property
    def shutting_down(self) -> bool:
        return self._shutdown

    def depth(self) -> int:
        return len(self._queue)

    def _update_depth(self):
        WORKQUEUE_DEPTH.set(len(self._queue))


__all__ = ["WorkQueue", "backoff_delay"]
