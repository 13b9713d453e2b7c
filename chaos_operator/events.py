# chaos_operator/events.py
"""
ChaosEngine notifications.

The reconciler reports what happened through an `EngineEventObserver`. In the
cluster the observer is a `KubernetesEventRecorder` that writes core/v1 Events
against the engine; tests inject a recording observer instead.
"""

from __future__ import annotations

import logging
from typing import Optional

from kubernetes import client as k8s_client

from chaos_operator.api.types import ChaosEngine
from chaos_operator.errors import ChaosOperatorError
from chaos_operator.metrics import EVENTS_EMITTED
from chaos_operator.utils.common import utc_now

LOG = logging.getLogger("chaosoperator.events")

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"

REASON_INITIALIZED = "ChaosEngineInitialized"
REASON_RUNNER_CREATED = "ChaosRunnerCreated"
REASON_STOPPED = "ChaosEngineStopped"
REASON_COMPLETED = "ChaosEngineCompleted"
REASON_RESTARTED = "RestartInProgress"
REASON_OPERATION_FAILED = "ChaosResourcesOperationFailed"

COMPONENT = "chaos-operator"


class EngineEventObserver:
    """One method per notification kind. The base class ignores everything."""

    def initialized(self, engine: ChaosEngine):
        pass

    def runner_created(self, engine: ChaosEngine):
        pass

    def stopped(self, engine: ChaosEngine):
        pass

    def completed(self, engine: ChaosEngine):
        pass

    def restarted(self, engine: ChaosEngine):
        pass

    def operation_failed(self, engine: ChaosEngine, phase: str, message: str):
        pass


class KubernetesEventRecorder(EngineEventObserver):
    """Writes each notification as a core/v1 Event on the engine."""

    def __init__(self, client, component: str = COMPONENT):
        self._client = client
        self._component = component

    def initialized(self, engine: ChaosEngine):
        self._emit(engine, EVENT_NORMAL, REASON_INITIALIZED,
                   "Identifying app under test & launching %s" % engine.runner_name)

    def runner_created(self, engine: ChaosEngine):
        self._emit(engine, EVENT_NORMAL, REASON_RUNNER_CREATED,
                   "Chaos runner pod %s created" % engine.runner_name)

    def stopped(self, engine: ChaosEngine):
        self._emit(engine, EVENT_NORMAL, REASON_STOPPED, "Chaos resources deleted successfully")

    def completed(self, engine: ChaosEngine):
        self._emit(engine, EVENT_NORMAL, REASON_COMPLETED,
                   "ChaosEngine completed, will delete or retain the resources according to jobCleanUpPolicy")

    def restarted(self, engine: ChaosEngine):
        self._emit(engine, EVENT_NORMAL, REASON_RESTARTED, "ChaosEngine is restarted")

    def operation_failed(self, engine: ChaosEngine, phase: str, message: str):
        self._emit(engine, EVENT_WARNING, REASON_OPERATION_FAILED, "(%s) %s" % (phase, message))

    def build_event(self, engine: ChaosEngine, event_type: str, reason: str, message: str) -> k8s_client.CoreV1Event:
        now = utc_now()
        return k8s_client.CoreV1Event(
            metadata=k8s_client.V1ObjectMeta(generate_name=f"{engine.name}.", namespace=engine.namespace),
            involved_object=k8s_client.V1ObjectReference(
                api_version=engine.api_version,
                kind=engine.kind,
                name=engine.name,
                namespace=engine.namespace,
                uid=engine.metadata.uid,
                resource_version=engine.metadata.resource_version,
            ),
            reason=reason,
            message=message,
            type=event_type,
            count=1,
            first_timestamp=now,
            last_timestamp=now,
            source=k8s_client.V1EventSource(component=self._component),
        )

    def _emit(self, engine: ChaosEngine, event_type: str, reason: str, message: str):
        event = self.build_event(engine, event_type, reason, message)
        try:
            self._client.create_event(engine.namespace, event)
        except ChaosOperatorError as e:
            # events never fail a reconcile
            LOG.warning("failed to record event %s for %s/%s: %s", reason, engine.namespace, engine.name, e)
            return
        EVENTS_EMITTED.labels(reason=reason, type=event_type).inc()
        LOG.debug("event %s/%s recorded for %s/%s", event_type, reason, engine.namespace, engine.name)


__all__ = [
    "EngineEventObserver",
    "KubernetesEventRecorder",
    "EVENT_NORMAL",
    "EVENT_WARNING",
    "REASON_INITIALIZED",
    "REASON_RUNNER_CREATED",
    "REASON_STOPPED",
    "REASON_COMPLETED",
    "REASON_RESTARTED",
    "REASON_OPERATION_FAILED",
]
