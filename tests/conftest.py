"""
Chaos Operator Pytest Configuration
-----------------------------------

Centralized fixtures for all tests.

Features:
 - FakeCluster: in-memory stand-in for ClusterClient with resourceVersion
   conflict checks, label selection, call recording and failure injection
 - RecordingObserver: captures engine notifications
 - Factories for ChaosEngine / ChaosExperiment / ChaosResult / Pod objects
 - Auto-clean environment variables
"""

import os
import copy
import logging
from typing import Any, Dict, List, Optional

import pytest
from kubernetes import client as k8s_client

from chaos_operator.api.types import (
    API_VERSION,
    RESULT_CRD_NAME,
    ChaosEngine,
    ChaosExperiment,
    ChaosResult,
)
from chaos_operator.config import OperatorConfig
from chaos_operator.controllers.chaosengine import ChaosEngineReconciler, Request
from chaos_operator.errors import AlreadyExistsError, ConflictError, NotFoundError
from chaos_operator.events import EngineEventObserver
from chaos_operator.kube.capabilities import ResultCRDProbe

# -----------------------------------------------------------------------------
# Logging setup for tests
# -----------------------------------------------------------------------------
LOG = logging.getLogger("chaosoperator.tests")
LOG.setLevel(logging.WARNING)

NAMESPACE = "litmus"
ENGINE_NAME = "nginx-chaos"
ENGINE_UID = "7f3c2a10-uid"
CLIENT_UUID = "test-client-uuid"

# -----------------------------------------------------------------------------
# Global environment sanitization
# -----------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Clear operator env vars that could leak into config parsing."""
    for var in [
        "CHAOS_RUNNER_IMAGE",
        "WATCH_NAMESPACE",
        "CLIENT_UUID",
        "CONTROLLER_WORKERS",
        "CHAOS_POD_TERMINATION_ATTEMPTS",
        "CHAOS_POD_TERMINATION_DELAY",
        "RECONCILE_TIMEOUT",
        "RETRY_BACKOFF_BASE",
        "RETRY_BACKOFF_MAX",
        "K8S_IN_CLUSTER",
        "PROMETHEUS_PORT",
        "HEALTH_PORT",
        "CHAOS_OPERATOR_LOG_LEVEL",
        "CHAOS_OPERATOR_LOG_JSON",
    ]:
        monkeypatch.delenv(var, raising=False)
    yield

# -----------------------------------------------------------------------------
# Factories
# -----------------------------------------------------------------------------
def make_engine(
    name: str = ENGINE_NAME,
    namespace: str = NAMESPACE,
    uid: str = ENGINE_UID,
    engine_state: Optional[str] = None,
    engine_status: Optional[str] = None,
    finalizers: Optional[List[str]] = None,
    experiments: Optional[List[str]] = None,
    experiment_statuses: Optional[List[Dict[str, Any]]] = None,
    deletion_timestamp: Optional[str] = None,
    **spec: Any,
) -> Dict[str, Any]:
    obj: Dict[str, Any] = {
        "apiVersion": API_VERSION,
        "kind": "ChaosEngine",
        "metadata": {"name": name, "namespace": namespace, "uid": uid},
        "spec": {
            "appinfo": {"appns": "default", "applabel": "app=nginx", "appkind": "deployment"},
            "chaosServiceAccount": "pod-delete-sa",
            "jobCleanUpPolicy": "delete",
            "experiments": [{"name": e} for e in (experiments if experiments is not None else ["pod-delete"])],
        },
        "status": {},
    }
    obj["spec"].update(spec)
    if engine_state is not None:
        obj["spec"]["engineState"] = engine_state
    if engine_status is not None:
        obj["status"]["engineStatus"] = engine_status
    if experiment_statuses is not None:
        obj["status"]["experiments"] = experiment_statuses
    if finalizers is not None:
        obj["metadata"]["finalizers"] = finalizers
    if deletion_timestamp is not None:
        obj["metadata"]["deletionTimestamp"] = deletion_timestamp
    return obj


def make_experiment(name: str = "pod-delete", namespace: str = NAMESPACE, security_context=None) -> Dict[str, Any]:
    obj: Dict[str, Any] = {
        "apiVersion": API_VERSION,
        "kind": "ChaosExperiment",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"definition": {"image": "litmuschaos/go-runner:latest"}},
    }
    if security_context is not None:
        obj["spec"]["definition"]["securityContext"] = security_context
    return obj


def make_result(
    name: str = ENGINE_NAME + "-pod-delete",
    namespace: str = NAMESPACE,
    uid: str = ENGINE_UID,
    annotations: Optional[Dict[str, str]] = None,
    targets: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    obj: Dict[str, Any] = {
        "apiVersion": API_VERSION,
        "kind": "ChaosResult",
        "metadata": {"name": name, "namespace": namespace, "labels": {"chaosUID": uid}},
        "spec": {"engine": ENGINE_NAME, "experiment": "pod-delete"},
        "status": {"experimentStatus": {"phase": "Running"}},
    }
    if annotations is not None:
        obj["metadata"]["annotations"] = annotations
    if targets is not None:
        obj["status"]["history"] = {"targets": targets}
    return obj


def make_pod(
    name: str,
    namespace: str = NAMESPACE,
    labels: Optional[Dict[str, str]] = None,
    phase: Optional[str] = None,
    container_statuses: Optional[List[k8s_client.V1ContainerStatus]] = None,
) -> k8s_client.V1Pod:
    status = None
    if phase is not None or container_statuses is not None:
        status = k8s_client.V1PodStatus(phase=phase, container_statuses=container_statuses)
    return k8s_client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=k8s_client.V1ObjectMeta(name=name, namespace=namespace, labels=dict(labels or {})),
        status=status,
    )


def runner_status(name: str = "chaos-runner", ready: bool = False, reason: Optional[str] = "Completed",
                  terminated: bool = True) -> k8s_client.V1ContainerStatus:
    if terminated:
        state = k8s_client.V1ContainerState(
            terminated=k8s_client.V1ContainerStateTerminated(exit_code=0, reason=reason)
        )
    else:
        state = k8s_client.V1ContainerState(running=k8s_client.V1ContainerStateRunning())
    return k8s_client.V1ContainerStatus(
        name=name,
        image="litmuschaos/chaos-runner:latest",
        image_id="",
        ready=ready,
        restart_count=0,
        state=state,
    )

# -----------------------------------------------------------------------------
# Fake cluster
# -----------------------------------------------------------------------------
def _matches(labels: Optional[Dict[str, str]], selector: Dict[str, str]) -> bool:
    labels = labels or {}
    return all(labels.get(k) == v for k, v in selector.items())


class FakeCluster:
    """
    In-memory implementation of the ClusterClient surface used by the controller.

    - replace_* enforces metadata.resourceVersion (ConflictError when stale)
    - an engine with deletionTimestamp and no finalizers is removed on replace
    - fail_next(method, exc) makes the next call(s) of a method raise
    - termination_lag keeps force-deleted pods listed for N more list calls
    """

    def __init__(self):
        self.engines: Dict[tuple, Dict[str, Any]] = {}
        self.experiments: Dict[tuple, Dict[str, Any]] = {}
        self.results: Dict[tuple, Dict[str, Any]] = {}
        self.pods: Dict[tuple, k8s_client.V1Pod] = {}
        self.jobs: Dict[tuple, Dict[str, str]] = {}
        self.crds: List[str] = [RESULT_CRD_NAME]
        self.events: List[k8s_client.CoreV1Event] = []
        self.calls: List[tuple] = []
        self.termination_lag = 0
        self._terminating: Dict[tuple, int] = {}
        self._failures: Dict[str, List[Exception]] = {}
        self._rv = 100

    # ---- helpers ----
    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def _record(self, method: str, *args):
        self.calls.append((method,) + args)
        queue = self._failures.get(method)
        if queue:
            raise queue.pop(0)

    def fail_next(self, method: str, exc: Exception, times: int = 1):
        self._failures.setdefault(method, []).extend([exc] * times)

    def count(self, method: str) -> int:
        return sum(1 for c in self.calls if c[0] == method)

    def add_engine(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        obj = copy.deepcopy(obj)
        obj["metadata"]["resourceVersion"] = self._next_rv()
        self.engines[(obj["metadata"]["namespace"], obj["metadata"]["name"])] = obj
        return obj

    def engine(self, namespace: str = NAMESPACE, name: str = ENGINE_NAME) -> Optional[Dict[str, Any]]:
        return self.engines.get((namespace, name))

    def add_experiment(self, obj: Dict[str, Any]):
        self.experiments[(obj["metadata"]["namespace"], obj["metadata"]["name"])] = copy.deepcopy(obj)

    def add_result(self, obj: Dict[str, Any]):
        obj = copy.deepcopy(obj)
        obj["metadata"]["resourceVersion"] = self._next_rv()
        self.results[(obj["metadata"]["namespace"], obj["metadata"]["name"])] = obj

    def result(self, name: str = ENGINE_NAME + "-pod-delete", namespace: str = NAMESPACE):
        return self.results.get((namespace, name))

    def add_pod(self, pod: k8s_client.V1Pod):
        self.pods[(pod.metadata.namespace, pod.metadata.name)] = pod

    def add_job(self, name: str, namespace: str = NAMESPACE, labels: Optional[Dict[str, str]] = None):
        self.jobs[(namespace, name)] = dict(labels or {})

    # ---- ChaosEngine ----
    def get_engine(self, namespace, name):
        self._record("get_engine", namespace, name)
        obj = self.engines.get((namespace, name))
        if obj is None:
            raise NotFoundError(f"chaosengine {namespace}/{name} not found", status=404)
        return ChaosEngine.from_dict(copy.deepcopy(obj))

    def replace_engine(self, engine: ChaosEngine):
        self._record("replace_engine", engine.namespace, engine.name)
        key = (engine.namespace, engine.name)
        stored = self.engines.get(key)
        if stored is None:
            raise NotFoundError(f"chaosengine {key} not found", status=404)
        body = engine.to_dict()
        if body["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ConflictError("the object has been modified", status=409)
        body["metadata"]["resourceVersion"] = self._next_rv()
        if body["metadata"].get("deletionTimestamp") and not body["metadata"].get("finalizers"):
            del self.engines[key]
        else:
            self.engines[key] = body
        return ChaosEngine.from_dict(copy.deepcopy(body))

    # ---- ChaosExperiment / ChaosResult ----
    def get_experiment(self, namespace, name):
        self._record("get_experiment", namespace, name)
        obj = self.experiments.get((namespace, name))
        if obj is None:
            raise NotFoundError(f"chaosexperiment {namespace}/{name} not found", status=404)
        return ChaosExperiment.from_dict(copy.deepcopy(obj))

    def list_results(self, namespace, labels):
        self._record("list_results", namespace, dict(labels))
        return [
            ChaosResult.from_dict(copy.deepcopy(obj))
            for (ns, _), obj in sorted(self.results.items())
            if ns == namespace and _matches(obj["metadata"].get("labels"), labels)
        ]

    def replace_result(self, result: ChaosResult):
        self._record("replace_result", result.metadata.namespace, result.metadata.name)
        key = (result.metadata.namespace, result.metadata.name)
        stored = self.results.get(key)
        if stored is None:
            raise NotFoundError(f"chaosresult {key} not found", status=404)
        body = result.to_dict()
        if body["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ConflictError("the object has been modified", status=409)
        body["metadata"]["resourceVersion"] = self._next_rv()
        self.results[key] = body
        return ChaosResult.from_dict(copy.deepcopy(body))

    def list_crd_names(self):
        self._record("list_crd_names")
        return list(self.crds)

    # ---- Pods & Jobs ----
    def get_pod(self, namespace, name):
        self._record("get_pod", namespace, name)
        pod = self.pods.get((namespace, name))
        if pod is None:
            raise NotFoundError(f"pod {namespace}/{name} not found", status=404)
        return pod

    def create_pod(self, pod):
        self._record("create_pod", pod.metadata.namespace, pod.metadata.name)
        key = (pod.metadata.namespace, pod.metadata.name)
        if key in self.pods:
            raise AlreadyExistsError(f"pod {key} already exists", status=409)
        self.pods[key] = pod
        return pod

    def list_pods(self, namespace, labels):
        self._record("list_pods", namespace, dict(labels))
        out = [p for (ns, _), p in sorted(self.pods.items()) if ns == namespace and _matches(p.metadata.labels, labels)]
        for key in list(self._terminating):
            if self._terminating[key] <= 1:
                del self._terminating[key]
                self.pods.pop(key, None)
            else:
                self._terminating[key] -= 1
        return out

    def delete_pod(self, namespace, name):
        self._record("delete_pod", namespace, name)
        if self.pods.pop((namespace, name), None) is None:
            raise NotFoundError(f"pod {namespace}/{name} not found", status=404)

    def delete_pods(self, namespace, labels, grace_period_seconds=None):
        self._record("delete_pods", namespace, dict(labels), grace_period_seconds)
        for key, pod in list(self.pods.items()):
            if key[0] == namespace and _matches(pod.metadata.labels, labels):
                if self.termination_lag:
                    self._terminating.setdefault(key, self.termination_lag)
                else:
                    del self.pods[key]

    def delete_jobs(self, namespace, labels, grace_period_seconds=None):
        self._record("delete_jobs", namespace, dict(labels), grace_period_seconds)
        for key, job_labels in list(self.jobs.items()):
            if key[0] == namespace and _matches(job_labels, labels):
                del self.jobs[key]

    # ---- Events ----
    def create_event(self, namespace, event):
        self._record("create_event", namespace, event.reason)
        self.events.append(event)


class RecordingObserver(EngineEventObserver):
    """Collects notifications as (kind, engine name[, phase, message]) tuples."""

    def __init__(self):
        self.records: List[tuple] = []

    def initialized(self, engine):
        self.records.append(("initialized", engine.name))

    def runner_created(self, engine):
        self.records.append(("runner_created", engine.name))

    def stopped(self, engine):
        self.records.append(("stopped", engine.name))

    def completed(self, engine):
        self.records.append(("completed", engine.name))

    def restarted(self, engine):
        self.records.append(("restarted", engine.name))

    def operation_failed(self, engine, phase, message):
        self.records.append(("operation_failed", engine.name, phase, message))

    def kinds(self) -> List[str]:
        return [r[0] for r in self.records]

# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def cluster():
    c = FakeCluster()
    c.add_experiment(make_experiment())
    return c


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def config():
    return OperatorConfig(client_uuid=CLIENT_UUID, termination_attempts=5, termination_delay=0.0)


@pytest.fixture
def reconciler(cluster, config, observer):
    return ChaosEngineReconciler(cluster, config, observer=observer, probe=ResultCRDProbe(cluster), sleep=lambda s: None)


@pytest.fixture
def request_key():
    return Request(namespace=NAMESPACE, name=ENGINE_NAME)
