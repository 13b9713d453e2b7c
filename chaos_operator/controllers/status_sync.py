# chaos_operator/controllers/status_sync.py
"""
Status synchronization on the abort / delete path.

Experiment helpers report per-target chaos status by annotating the
ChaosResult (`<kind>/<name>: injected|reverted|targeted`). Once every chaos
pod of the engine is gone, those annotations are folded into
`status.history.targets` and removed from the object.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from chaos_operator.api.types import CHAOS_UID_LABEL, ChaosEngine, ChaosResult, ResultHistory, TargetDetails
from chaos_operator.config import OperatorConfig
from chaos_operator.controllers.cleanup import EngineResourceIndex
from chaos_operator.utils.retry import CancelToken, current_token, retry_times

LOG = logging.getLogger("chaosoperator.controllers.status_sync")

CHAOS_STATUS_VALUES = frozenset(("injected", "reverted", "targeted"))


class ChaosPodsPresent(Exception):
    """Chaos pods of the engine are still terminating."""


def _split_target_key(key: str) -> Optional[Tuple[str, str]]:
    if "/" not in key:
        return None
    kind, name = key.split("/", 1)
    return kind.strip(), name.strip()


def drain_annotations(result: ChaosResult) -> bool:
    """
    Move recognized status annotations of `result` into its target history,
    in place. Returns True when anything changed.

    Existing history entries are updated by name; new targets are appended.
    Annotations with other values, or keys that are not `kind/name`, stay.
    """
    annotations = result.metadata.annotations or {}
    history = result.status.history or ResultHistory()
    targets: List[TargetDetails] = list(history.targets or [])
    remaining = {}
    changed = False
    for key, value in annotations.items():
        parsed = _split_target_key(key)
        if value.lower() not in CHAOS_STATUS_VALUES or parsed is None:
            remaining[key] = value
            continue
        kind, name = parsed
        for t in targets:
            if t.name == name:
                t.chaos_status = value
                break
        else:
            targets.append(TargetDetails(name=name, kind=kind, chaos_status=value))
        changed = True
    if changed:
        history.targets = targets
        result.status.history = history
        result.metadata.annotations = remaining
    return changed


class StatusSynchronizer:
    def __init__(
        self,
        client,
        config: OperatorConfig,
        probe,
        index: Optional[EngineResourceIndex] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.client = client
        self.config = config
        self.probe = probe
        self.index = index or EngineResourceIndex(client)
        self._sleep = sleep

    def sync(self, engine: ChaosEngine, cancel: Optional[CancelToken] = None) -> bool:
        """Wait for chaos pods to go away, then drain the result annotations. Returns True if a write happened."""
        self.wait_for_termination(engine, cancel)
        # namespace-scoped operators cannot list CRDs; the ChaosResult kind is assumed there
        if self.config.cluster_scoped and not self.probe.available():
            LOG.info("ChaosResult CRD not installed, skipping status update for %s/%s", engine.namespace, engine.name)
            return False
        return self.update_result(engine)

    def wait_for_termination(self, engine: ChaosEngine, cancel: Optional[CancelToken] = None):
        def _check():
            pods = self.index.chaos_pods(engine)
            if pods:
                raise ChaosPodsPresent("%d chaos pods are not deleted yet" % len(pods))

        retry_times(
            _check,
            attempts=self.config.termination_attempts,
            delay=self.config.termination_delay,
            cancel=cancel or current_token(),
            sleep=self._sleep,
        )

    def update_result(self, engine: ChaosEngine) -> bool:
        for result in self.client.list_results(engine.namespace, {CHAOS_UID_LABEL: engine.uid}):
            if (result.metadata.labels or {}).get(CHAOS_UID_LABEL) != engine.uid:
                continue
            if not result.metadata.annotations:
                return False
            working = result.model_copy(deep=True)
            if not drain_annotations(working) or working.to_dict() == result.to_dict():
                return False
            LOG.info("updating chaos status inside chaosresult %s", result.metadata.name)
            self.client.replace_result(working)
            return True
        return False


__all__ = ["StatusSynchronizer", "drain_annotations", "CHAOS_STATUS_VALUES", "ChaosPodsPresent"]
