# chaos_operator/api/types.py
"""
litmuschaos.io/v1alpha1 resource models (ChaosEngine, ChaosExperiment, ChaosResult).

The custom objects API hands us plain dicts. They are parsed into pydantic
models with camelCase aliases; fields this operator does not model are kept
as extras so that a read-modify-replace never drops them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# -------------------------
# API coordinates & constants
# -------------------------
GROUP = "litmuschaos.io"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"
ENGINE_KIND = "ChaosEngine"
ENGINE_PLURAL = "chaosengines"
EXPERIMENT_PLURAL = "chaosexperiments"
RESULT_PLURAL = "chaosresults"
RESULT_CRD_NAME = f"{RESULT_PLURAL}.{GROUP}"

FINALIZER = "chaosengine.litmuschaos.io/finalizer"
RUNNER_CONTAINER = "chaos-runner"
RUNNER_SUFFIX = "-runner"
CHAOS_UID_LABEL = "chaosUID"


class EngineState(str, Enum):
    ACTIVE = "active"
    STOP = "stop"


class EngineStatus(str, Enum):
    INITIALIZED = "initialized"
    COMPLETED = "completed"
    STOPPED = "stopped"


class ExperimentStatus(str, Enum):
    RUNNING = "Running"
    WAITING = "Waiting"
    COMPLETED = "Completed"
    ABORTED = "Aborted"


class CleanUpPolicy(str, Enum):
    DELETE = "delete"
    RETAIN = "retain"


class _Resource(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class ObjectMeta(_Resource):
    name: str
    namespace: Optional[str] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    finalizers: Optional[List[str]] = None
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None
    deletion_timestamp: Optional[str] = None


# -------------------------
# ChaosEngine
# -------------------------
class AppInfo(_Resource):
    appns: Optional[str] = None
    applabel: Optional[str] = None
    appkind: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.appns or self.applabel or self.appkind)


class WorkloadSelector(_Resource):
    kind: str
    namespace: str
    names: Optional[str] = None
    labels: Optional[str] = None


class PodSelector(_Resource):
    namespace: str
    names: str


class Selectors(_Resource):
    workloads: Optional[List[WorkloadSelector]] = None
    pods: Optional[List[PodSelector]] = None


class VolumeSource(_Resource):
    name: str
    mount_path: str


class RunnerInfo(_Resource):
    image: Optional[str] = None
    image_pull_policy: Optional[str] = None
    image_pull_secrets: Optional[List[Dict[str, Any]]] = None
    args: Optional[List[str]] = None
    command: Optional[List[str]] = None
    config_maps: Optional[List[VolumeSource]] = None
    secrets: Optional[List[VolumeSource]] = None
    runner_annotations: Optional[Dict[str, str]] = None
    runner_labels: Optional[Dict[str, str]] = None
    node_selector: Optional[Dict[str, str]] = None
    tolerations: Optional[List[Dict[str, Any]]] = None
    resources: Optional[Dict[str, Any]] = None


class ComponentParams(_Resource):
    runner: Optional[RunnerInfo] = None


class ExperimentRef(_Resource):
    name: str


class ChaosEngineSpec(_Resource):
    engine_state: Optional[str] = None
    appinfo: Optional[AppInfo] = None
    selectors: Optional[Selectors] = None
    chaos_service_account: Optional[str] = None
    auxiliary_app_info: Optional[str] = None
    job_clean_up_policy: Optional[str] = None
    termination_grace_period_seconds: Optional[int] = None
    experiments: Optional[List[ExperimentRef]] = None
    components: Optional[ComponentParams] = None


class ExperimentStatusEntry(_Resource):
    name: Optional[str] = None
    runner: Optional[str] = None
    experiment_pod: Optional[str] = None
    status: Optional[str] = None
    verdict: Optional[str] = None
    last_update_time: Optional[str] = None


class ChaosEngineStatus(_Resource):
    engine_status: Optional[str] = None
    experiments: Optional[List[ExperimentStatusEntry]] = None


class ChaosEngine(_Resource):
    api_version: str = API_VERSION
    kind: str = ENGINE_KIND
    metadata: ObjectMeta
    spec: ChaosEngineSpec = Field(default_factory=ChaosEngineSpec)
    status: ChaosEngineStatus = Field(default_factory=ChaosEngineStatus)

    # convenience accessors
    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace or "default"

    @property
    def uid(self) -> str:
        return self.metadata.uid or ""

    @property
    def runner(self) -> RunnerInfo:
        """Runner component, empty when the engine does not declare one."""
        if self.spec.components is None or self.spec.components.runner is None:
            return RunnerInfo()
        return self.spec.components.runner

    @property
    def runner_name(self) -> str:
        return self.name + RUNNER_SUFFIX

    @property
    def experiment_names(self) -> List[str]:
        return [e.name for e in (self.spec.experiments or [])]

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "ChaosEngine":
        return cls.model_validate(obj)


# -------------------------
# ChaosExperiment (read only)
# -------------------------
class SecurityContext(_Resource):
    pod_security_context: Optional[Dict[str, Any]] = None
    container_security_context: Optional[Dict[str, Any]] = None


class ExperimentDefinition(_Resource):
    security_context: Optional[SecurityContext] = None


class ChaosExperimentSpec(_Resource):
    definition: Optional[ExperimentDefinition] = None


class ChaosExperiment(_Resource):
    metadata: ObjectMeta
    spec: ChaosExperimentSpec = Field(default_factory=ChaosExperimentSpec)

    def security_context(self) -> SecurityContext:
        if self.spec.definition is None or self.spec.definition.security_context is None:
            return SecurityContext()
        return self.spec.definition.security_context

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "ChaosExperiment":
        return cls.model_validate(obj)


# -------------------------
# ChaosResult
# -------------------------
class TargetDetails(_Resource):
    name: Optional[str] = None
    kind: Optional[str] = None
    chaos_status: Optional[str] = None


class ResultHistory(_Resource):
    targets: Optional[List[TargetDetails]] = None


class ChaosResultStatus(_Resource):
    history: Optional[ResultHistory] = None


class ChaosResult(_Resource):
    api_version: str = API_VERSION
    kind: str = "ChaosResult"
    metadata: ObjectMeta
    spec: Optional[Dict[str, Any]] = None
    status: ChaosResultStatus = Field(default_factory=ChaosResultStatus)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "ChaosResult":
        return cls.model_validate(obj)


__all__ = [
    "GROUP", "VERSION", "API_VERSION", "ENGINE_KIND", "ENGINE_PLURAL", "EXPERIMENT_PLURAL",
    "RESULT_PLURAL", "RESULT_CRD_NAME", "FINALIZER", "RUNNER_CONTAINER", "RUNNER_SUFFIX",
    "CHAOS_UID_LABEL", "EngineState", "EngineStatus", "ExperimentStatus", "CleanUpPolicy",
    "ObjectMeta", "AppInfo", "WorkloadSelector", "PodSelector", "Selectors", "VolumeSource",
    "RunnerInfo", "ComponentParams", "ExperimentRef", "ChaosEngineSpec", "ExperimentStatusEntry",
    "ChaosEngineStatus", "ChaosEngine", "SecurityContext", "ExperimentDefinition",
    "ChaosExperimentSpec", "ChaosExperiment", "TargetDetails", "ResultHistory",
    "ChaosResultStatus", "ChaosResult",
]
