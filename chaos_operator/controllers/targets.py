# chaos_operator/controllers/targets.py
"""
Target and label derivation for the chaos runner.

Everything here is a pure function of the ChaosEngine; nothing mutates the
engine and nothing talks to the cluster.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

from chaos_operator.api.types import CHAOS_UID_LABEL, ChaosEngine
from chaos_operator.errors import ValidationError

DEFAULT_APP_KIND = "KIND"


def _target(kind: str, namespace: str, flt: str) -> str:
    return ":".join((kind, namespace, f"[{flt}]"))


def get_targets(engine: ChaosEngine) -> str:
    """
    Canonical target string handed to the runner:

      workloads -> "deployment:ns:[nginx];statefulset:ns:[app=db]"
      pods      -> "pod:ns:[pod-a,pod-b]"
      appinfo   -> "deployment:ns:[app=nginx]"

    Selectors take precedence over the legacy appinfo; within selectors,
    workloads take precedence over pods.
    """
    selectors = engine.spec.selectors
    appinfo = engine.spec.appinfo
    if selectors is None and (appinfo is None or appinfo.is_empty()):
        return ""

    if selectors is not None:
        if selectors.workloads is not None:
            return ";".join(_target(w.kind, w.namespace, w.names or w.labels or "") for w in selectors.workloads)
        return ";".join(_target("pod", p.namespace, p.names) for p in selectors.pods or [])

    appns = appinfo.appns or engine.namespace
    appkind = appinfo.appkind or DEFAULT_APP_KIND
    return _target(appkind, appns, appinfo.applabel or "")


def validate_target_selection(engine: ChaosEngine):
    """Raise ValidationError when the engine cannot be turned into a runner."""
    if not engine.experiment_names:
        raise ValidationError("application experiment list is empty")
    selectors = engine.spec.selectors
    if selectors is not None and selectors.workloads is None and selectors.pods is None:
        raise ValidationError("specify one out of workloads or pods")
    appinfo = engine.spec.appinfo
    if appinfo is not None and bool(appinfo.appkind) != bool(appinfo.applabel):
        raise ValidationError("incomplete appinfo, provide appkind and applabel both")


def get_runner_labels(engine: ChaosEngine) -> Dict[str, str]:
    labels = {
        "app": engine.name,
        CHAOS_UID_LABEL: engine.uid,
        "app.kubernetes.io/component": "chaos-runner",
        "app.kubernetes.io/part-of": "litmus",
    }
    labels.update(engine.runner.runner_labels or {})
    return labels


def get_runner_env(engine: ChaosEngine, targets: str, client_uuid: str) -> List[Tuple[str, str]]:
    """Runner environment, in the order the chaos-runner expects it."""
    return [
        ("CHAOSENGINE", engine.name),
        ("TARGETS", targets),
        ("EXPERIMENT_LIST", ",".join(engine.experiment_names)),
        ("CHAOS_SVC_ACC", engine.spec.chaos_service_account or ""),
        ("AUXILIARY_APPINFO", engine.spec.auxiliary_app_info or ""),
        ("CLIENT_UUID", client_uuid),
        ("CHAOS_NAMESPACE", engine.namespace),
    ]


__all__ = ["get_targets", "validate_target_selection", "get_runner_labels", "get_runner_env", "DEFAULT_APP_KIND"]
