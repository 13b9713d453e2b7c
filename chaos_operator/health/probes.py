# chaos_operator/health/probes.py
"""
Chaos Operator health endpoints

Provides:
 - /health/liveness   -> process is up and serving
 - /health/readiness  -> controller manager started and watches heartbeating
 - /health/metrics    -> operator metrics in Prometheus text format
"""

from __future__ import annotations

import os
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field

from chaos_operator.metrics import render_latest
from chaos_operator.utils.common import now_iso

LOG = logging.getLogger("chaosoperator.health")

HEARTBEAT_WINDOW = float(os.getenv("CHAOS_OPERATOR_HEARTBEAT_WINDOW", "600"))

router = APIRouter(prefix="/health")

# manager bound by the entrypoint
_STATE: Dict[str, Any] = {"manager": None}


def bind_manager(manager):
    _STATE["manager"] = manager


# -----------------------------
# Pydantic response models
# -----------------------------
class ComponentHealth(BaseModel):
    name: str
    status: str = Field(..., description="ok | fail")
    details: Optional[Dict[str, Any]] = None


class HealthReport(BaseModel):
    app: str = "chaos-operator"
    version: Optional[str] = None
    ts: str
    overall: str = Field(..., description="ok | fail")
    components: List[ComponentHealth] = Field(default_factory=list)


# -----------------------------
# Component checks
# -----------------------------
def _check_manager() -> ComponentHealth:
    manager = _STATE["manager"]
    if manager is None:
        return ComponentHealth(name="manager", status="fail", details={"reason": "not bound"})
    if not manager.started:
        return ComponentHealth(name="manager", status="fail", details={"reason": "not started"})
    return ComponentHealth(name="manager", status="ok", details={"workers": manager.workers, "queue_depth": manager.queue.depth()})


def _check_watches(window: float) -> ComponentHealth:
    manager = _STATE["manager"]
    if manager is None or not manager.heartbeats_fresh(window):
        return ComponentHealth(name="watches", status="fail", details={"window_sec": window})
    return ComponentHealth(name="watches", status="ok")


def compose_health(window: float = HEARTBEAT_WINDOW) -> HealthReport:
    components = [_check_manager(), _check_watches(window)]
    overall = "ok" if all(c.status == "ok" for c in components) else "fail"
    return HealthReport(version=os.getenv("CHAOS_OPERATOR_VERSION"), ts=now_iso(), overall=overall, components=components)


# -----------------------------
# Endpoints
# -----------------------------
@router.get("/liveness", summary="K8s liveness probe (fast)", tags=["health"])
async def liveness():
    return {"status": "alive", "ts": now_iso()}


@router.get("/readiness", summary="K8s readiness probe", tags=["health"])
async def readiness():
    report = compose_health()
    if report.overall != "ok":
        LOG.debug("readiness failing: %s", report.model_dump())
    return JSONResponse(report.model_dump(), status_code=200 if report.overall == "ok" else 503)


@router.get("/metrics", tags=["health"])
async def health_metrics():
    return Response(content=render_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = ["router", "bind_manager", "compose_health", "ComponentHealth", "HealthReport"]
