#!/usr/bin/env python3
"""
ChaosEngine Controller

Watches litmuschaos.io/v1alpha1 ChaosEngine objects (and the runner pods they
own) and reconciles each engine through the chaos-runner lifecycle.

Features:
 - Pool of reconcile workers fed by a de-duplicating work queue
 - Watches that resume on stream errors, with heartbeats for readiness
 - Prometheus metrics and FastAPI health endpoints
 - Graceful shutdown on SIGINT / SIGTERM

Usage:
  python3 tools/chaosengine_controller.py

Environment variables (defaults shown):
  WATCH_NAMESPACE=                 (empty: all namespaces)
  CHAOS_RUNNER_IMAGE=              (empty: litmuschaos/chaos-runner:latest)
  CLIENT_UUID=                     (empty: generated per process)
  CONTROLLER_WORKERS=1
  CHAOS_POD_TERMINATION_ATTEMPTS=180
  CHAOS_POD_TERMINATION_DELAY=1
  RECONCILE_TIMEOUT=300
  RETRY_BACKOFF_BASE=2.0
  RETRY_BACKOFF_MAX=300
  K8S_IN_CLUSTER=true
  PROMETHEUS_PORT=8080
  HEALTH_PORT=8081
  CHAOS_OPERATOR_LOG_LEVEL=INFO
  CHAOS_OPERATOR_LOG_JSON=true

Notes:
 - The ServiceAccount needs chaosengines/chaosexperiments/chaosresults
   get/list/watch/update, pods and jobs list/create/delete/deletecollection,
   events create, and (cluster-wide mode) customresourcedefinitions list.
"""

from __future__ import annotations

import sys
import signal
import asyncio
import logging
import threading
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI

from chaos_operator.api.types import CHAOS_UID_LABEL, ENGINE_KIND
from chaos_operator.config import OperatorConfig
from chaos_operator.controllers.chaosengine import ChaosEngineReconciler
from chaos_operator.health.probes import bind_manager, router as health_router
from chaos_operator.kube.capabilities import ResultCRDProbe
from chaos_operator.kube.client import ClusterClient, load_kube_config
from chaos_operator.manager import ControllerManager
from chaos_operator.metrics import start_metrics_server
from chaos_operator.utils.logger import configure_logging
from chaos_operator.workqueue import WorkQueue, backoff_delay

LOG = logging.getLogger("chaosoperator.controller")

WATCH_TIMEOUT_SECONDS = 300
# key presence only: runnerLabels may override label values, never drop chaosUID
RUNNER_POD_SELECTOR = CHAOS_UID_LABEL


def engine_key(obj: Dict[str, Any]) -> Optional[str]:
    meta = obj.get("metadata") or {}
    if not meta.get("name"):
        return None
    return f"{meta.get('namespace', 'default')}/{meta['name']}"


def owner_engine_key(pod) -> Optional[str]:
    """namespace/name of the ChaosEngine controlling the pod, if any."""
    meta = pod.metadata
    for ref in meta.owner_references or []:
        if ref.kind == ENGINE_KIND and ref.controller:
            return f"{meta.namespace}/{ref.name}"
    return None


class WatchThread(threading.Thread):
    """Runs one watch stream forever, resuming after errors with backoff."""

    def __init__(self, name: str, manager: ControllerManager, stream_fn, key_fn, stop: threading.Event,
                 backoff_base: float, backoff_max: float):
        super().__init__(name=name, daemon=True)
        self.manager = manager
        self.stream_fn = stream_fn
        self.key_fn = key_fn
        self.stop_event = stop
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

    def run(self):
        failures = 0
        while not self.stop_event.is_set():
            self.manager.heartbeat(self.name)
            try:
                for event_type, obj in self.stream_fn():
                    key = self.key_fn(obj)
                    if key:
                        LOG.debug("%s event %s for %s", self.name, event_type, key)
                        self.manager.enqueue(key)
                    self.manager.heartbeat(self.name)
                    if self.stop_event.is_set():
                        return
                failures = 0
            except Exception as e:
                delay = backoff_delay(failures, self.backoff_base, self.backoff_max)
                failures += 1
                LOG.warning("%s stream failed (%s), resuming in %.1fs", self.name, e, delay)
                self.stop_event.wait(delay)


async def start_health_server(port: int) -> asyncio.Task:
    app = FastAPI(title="chaos-operator")
    app.include_router(health_router)
    config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="warning")
    server = uvicorn.Server(config)
    # signals are handled by main()
    server.install_signal_handlers = lambda: None
    return asyncio.create_task(server.serve())


async def main() -> int:
    cfg = OperatorConfig.from_env()
    configure_logging(app_name="chaos-operator", level=cfg.log_level, json=cfg.log_json)
    LOG.info("Starting ChaosEngine controller (watch_namespace=%s workers=%d)",
             cfg.watch_namespace or "<all>", cfg.workers)

    load_kube_config(cfg.in_cluster)
    client = ClusterClient()
    reconciler = ChaosEngineReconciler(client, cfg, probe=ResultCRDProbe(client))
    manager = ControllerManager(
        reconciler,
        WorkQueue(backoff_base=cfg.backoff_base, backoff_max=cfg.backoff_max),
        workers=cfg.workers,
        reconcile_timeout=cfg.reconcile_timeout,
    )

    start_metrics_server(cfg.prometheus_port)
    bind_manager(manager)
    health_task = await start_health_server(cfg.health_port)
    await manager.start()

    stop = threading.Event()
    watches = [
        WatchThread("engine-watch", manager,
                    lambda: client.watch_engines(cfg.watch_namespace, timeout_seconds=WATCH_TIMEOUT_SECONDS),
                    engine_key, stop, cfg.backoff_base, cfg.backoff_max),
        WatchThread("runner-pod-watch", manager,
                    lambda: client.watch_pods(cfg.watch_namespace, RUNNER_POD_SELECTOR, timeout_seconds=WATCH_TIMEOUT_SECONDS),
                    owner_engine_key, stop, cfg.backoff_base, cfg.backoff_max),
    ]
    for w in watches:
        w.start()

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    await shutdown.wait()
    LOG.info("Shutdown signal received")
    stop.set()
    await manager.stop()
    health_task.cancel()
    LOG.info("Controller exited cleanly")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        LOG.info("Interrupted by user")
