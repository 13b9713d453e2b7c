# chaos_operator/manager.py
"""
Controller runtime: a pool of asyncio workers draining the WorkQueue.

The reconciler is synchronous (kubernetes client calls and the termination
wait block), so each pass runs in a thread executor. Every pass gets its own
CancelToken with the configured deadline; stop() cancels the tokens of the
passes still running.
"""

from __future__ import annotations

import time
import asyncio
import logging
import concurrent.futures
from typing import Dict, List, Optional, Set

from chaos_operator.controllers.chaosengine import ReconcileResult, Request
from chaos_operator.errors import ChaosOperatorError, ReconcileCancelled
from chaos_operator.metrics import WORKERS_BUSY
from chaos_operator.utils.retry import CancelToken
from chaos_operator.workqueue import WorkQueue

LOG = logging.getLogger("chaosoperator.manager")


class ControllerManager:
    def __init__(
        self,
        reconciler,
        queue: Optional[WorkQueue] = None,
        workers: int = 1,
        reconcile_timeout: Optional[float] = 300.0,
    ):
        self.reconciler = reconciler
        self.queue = queue or WorkQueue()
        self.workers = workers
        self.reconcile_timeout = reconcile_timeout
        self.started = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: List[asyncio.Task] = []
        self._tokens: Set[CancelToken] = set()
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._heartbeats: Dict[str, float] = {}

    # ---------------------------
    # lifecycle
    # ---------------------------
    async def start(self):
        if self.started:
            return
        self._loop = asyncio.get_running_loop()
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="reconcile")
        self._tasks = [asyncio.create_task(self._worker(i), name=f"worker-{i}") for i in range(self.workers)]
        self.started = True
        LOG.info("controller manager started with %d workers", self.workers)

    async def stop(self):
        if not self.started:
            return
        LOG.info("controller manager stopping")
        self.queue.shutdown()
        for token in list(self._tokens):
            token.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._executor is not None:
            self._executor.shutdown(wait=False)
        self.started = False
        LOG.info("controller manager stopped")

    # ---------------------------
    # producers
    # ---------------------------
    def enqueue(self, key: str):
        """Thread-safe add, used by the watch threads."""
        if self._loop is None:
            raise RuntimeError("manager not started")
        self._loop.call_soon_threadsafe(self.queue.add, key)

    def heartbeat(self, source: str):
        self._heartbeats[source] = time.monotonic()

    def heartbeats_fresh(self, window: float) -> bool:
        if not self._heartbeats:
            return False
        now = time.monotonic()
        return all(now - ts <= window for ts in self._heartbeats.values())

    # ---------------------------
    # workers
    # ---------------------------
    async def _worker(self, idx: int):
        loop = asyncio.get_running_loop()
        while True:
            key = await self.queue.get()
            if key is None:
                LOG.debug("worker-%d exiting", idx)
                return
            token = CancelToken(self.reconcile_timeout)
            self._tokens.add(token)
            WORKERS_BUSY.inc()
            try:
                result = await loop.run_in_executor(self._executor, self.reconciler.reconcile, Request.from_key(key), token)
                self._handle_result(key, result)
            except ReconcileCancelled as e:
                LOG.warning("reconcile of %s cancelled: %s", key, e)
                self.queue.add_rate_limited(key)
            except ChaosOperatorError as e:
                LOG.error("reconcile of %s failed: %s", key, e)
                self.queue.add_rate_limited(key)
            except Exception:
                LOG.exception("unexpected error reconciling %s", key)
                self.queue.add_rate_limited(key)
            finally:
                self._tokens.discard(token)
                WORKERS_BUSY.dec()
                self.queue.done(key)

    def _handle_result(self, key: str, result: ReconcileResult):
        if result.requeue_after:
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
        elif result.requeue:
            # conflicts and first initialization: retry at once, no backoff penalty
            self.queue.add(key)
        else:
            self.queue.forget(key)


__all__ = ["ControllerManager"]
