# chaos_operator/controllers/cleanup.py
"""
Removal of the resources an engine spawned (runner pod, experiment jobs and
their pods).
"""

from __future__ import annotations

import logging
from typing import Dict, List

from chaos_operator.api.types import CHAOS_UID_LABEL, CleanUpPolicy, ChaosEngine
from chaos_operator.errors import ApiError, CleanupError
from chaos_operator.events import EngineEventObserver

LOG = logging.getLogger("chaosoperator.controllers.cleanup")

PHASE_STOP = "chaos stop"


class EngineResourceIndex:
    """
    Resources belonging to one engine, keyed by the engine uid.

    Membership is carried by labels on the spawned objects, so every lookup
    is a label-selector query in the engine namespace.
    """

    def __init__(self, client):
        self.client = client

    @staticmethod
    def chaos_labels(engine: ChaosEngine) -> Dict[str, str]:
        """Everything spawned for this engine (runner, experiment jobs, helpers)."""
        return {CHAOS_UID_LABEL: engine.uid}

    @staticmethod
    def default_labels(engine: ChaosEngine) -> Dict[str, str]:
        """Default chaos pods: those that carry the engine name as app label."""
        return {"app": engine.name, CHAOS_UID_LABEL: engine.uid}

    def chaos_pods(self, engine: ChaosEngine) -> List:
        return self.client.list_pods(engine.namespace, self.chaos_labels(engine))

    def default_pods(self, engine: ChaosEngine) -> List:
        return self.client.list_pods(engine.namespace, self.default_labels(engine))


class CleanupManager:
    def __init__(self, client, observer: EngineEventObserver, index: EngineResourceIndex = None):
        self.client = client
        self.observer = observer
        self.index = index or EngineResourceIndex(client)

    def force_remove(self, engine: ChaosEngine):
        """
        Delete every Job and Pod labelled with the engine's chaosUID (background
        propagation). Both kinds are attempted; failures are reported together.
        """
        labels = self.index.chaos_labels(engine)
        grace = engine.spec.termination_grace_period_seconds or None
        failed_kinds: List[str] = []
        causes: List[BaseException] = []
        for kind, delete in (("Jobs", self.client.delete_jobs), ("Pods", self.client.delete_pods)):
            try:
                delete(engine.namespace, labels, grace_period_seconds=grace)
            except ApiError as e:
                LOG.warning("force delete of %s for %s/%s failed: %s", kind, engine.namespace, engine.name, e)
                failed_kinds.append(kind)
                causes.append(e)
        if failed_kinds:
            self.observer.operation_failed(
                engine, PHASE_STOP,
                "Unable to delete chaos resources: %s allocated to chaosengine" % ", ".join(failed_kinds),
            )
            raise CleanupError(failed_kinds, causes)
        LOG.info("chaos resources of %s/%s deleted (grace=%s)", engine.namespace, engine.name, grace)

    def graceful_remove(self, engine: ChaosEngine) -> int:
        """
        With jobCleanUpPolicy=delete, delete the default chaos pods one by one
        in list order. The first failure stops the loop and is raised.
        Returns the number of pods deleted.
        """
        policy = (engine.spec.job_clean_up_policy or "").lower()
        if policy != CleanUpPolicy.DELETE.value:
            LOG.debug("jobCleanUpPolicy=%s for %s/%s, retaining chaos pods", policy or "unset", engine.namespace, engine.name)
            return 0
        deleted = 0
        for pod in self.index.default_pods(engine):
            self.client.delete_pod(engine.namespace, pod.metadata.name)
            deleted += 1
        LOG.info("%d chaos pods of %s/%s deleted", deleted, engine.namespace, engine.name)
        return deleted


__all__ = ["EngineResourceIndex", "CleanupManager", "PHASE_STOP"]
