# chaos_operator/controllers/runner.py
"""
Runner lifecycle: build the chaos-runner pod for an engine and make sure
exactly one exists.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from kubernetes import client as k8s_client

from chaos_operator.api.types import RUNNER_CONTAINER, ChaosEngine, ChaosExperiment
from chaos_operator.config import OperatorConfig
from chaos_operator.controllers.targets import get_runner_env, get_runner_labels, get_targets, validate_target_selection
from chaos_operator.errors import AlreadyExistsError, NotFoundError
from chaos_operator.events import EngineEventObserver
from chaos_operator.kube.client import to_k8s_model
from chaos_operator.metrics import RUNNER_PODS_CREATED

LOG = logging.getLogger("chaosoperator.controllers.runner")

DEFAULT_PULL_POLICY = "IfNotPresent"
RESTART_POLICY = "OnFailure"

# runner pod phases in which the container can report completion
_COMPLETION_PHASES = ("Running", "Succeeded")


def _volumes(engine: ChaosEngine):
    runner = engine.runner
    volumes: List[k8s_client.V1Volume] = []
    mounts: List[k8s_client.V1VolumeMount] = []
    for cm in runner.config_maps or []:
        volumes.append(k8s_client.V1Volume(name=cm.name, config_map=k8s_client.V1ConfigMapVolumeSource(name=cm.name)))
        mounts.append(k8s_client.V1VolumeMount(name=cm.name, mount_path=cm.mount_path))
    for secret in runner.secrets or []:
        volumes.append(k8s_client.V1Volume(name=secret.name, secret=k8s_client.V1SecretVolumeSource(secret_name=secret.name)))
        mounts.append(k8s_client.V1VolumeMount(name=secret.name, mount_path=secret.mount_path))
    return volumes, mounts


def build_runner_pod(
    engine: ChaosEngine,
    experiment: ChaosExperiment,
    config: OperatorConfig,
    targets: Optional[str] = None,
) -> k8s_client.V1Pod:
    """
    Deterministic runner pod for the engine. Optional fields are only set
    when the engine (or the first experiment, for security contexts) provides
    them.
    """
    runner = engine.runner
    if targets is None:
        targets = get_targets(engine)
    volumes, mounts = _volumes(engine)
    sec = experiment.security_context()

    container = k8s_client.V1Container(
        name=RUNNER_CONTAINER,
        image=config.runner_image(runner.image),
        image_pull_policy=runner.image_pull_policy or DEFAULT_PULL_POLICY,
        env=[k8s_client.V1EnvVar(name=k, value=v) for k, v in get_runner_env(engine, targets, config.client_uuid)],
    )
    if runner.args:
        container.args = list(runner.args)
    if runner.command:
        container.command = list(runner.command)
    if mounts:
        container.volume_mounts = mounts
    if runner.resources:
        container.resources = to_k8s_model(runner.resources, "V1ResourceRequirements")
    if sec.container_security_context:
        container.security_context = to_k8s_model(sec.container_security_context, "V1SecurityContext")

    spec = k8s_client.V1PodSpec(containers=[container], restart_policy=RESTART_POLICY)
    if engine.spec.chaos_service_account:
        spec.service_account_name = engine.spec.chaos_service_account
    if runner.tolerations:
        spec.tolerations = to_k8s_model(runner.tolerations, "list[V1Toleration]")
    if runner.node_selector:
        spec.node_selector = dict(runner.node_selector)
    if volumes:
        spec.volumes = volumes
    if runner.image_pull_secrets:
        spec.image_pull_secrets = to_k8s_model(runner.image_pull_secrets, "list[V1LocalObjectReference]")
    if sec.pod_security_context:
        spec.security_context = to_k8s_model(sec.pod_security_context, "V1PodSecurityContext")

    metadata = k8s_client.V1ObjectMeta(
        name=engine.runner_name,
        namespace=engine.namespace,
        labels=get_runner_labels(engine),
        owner_references=[
            k8s_client.V1OwnerReference(
                api_version=engine.api_version,
                kind=engine.kind,
                name=engine.name,
                uid=engine.uid,
                controller=True,
                block_owner_deletion=True,
            )
        ],
    )
    if runner.runner_annotations:
        metadata.annotations = dict(runner.runner_annotations)

    return k8s_client.V1Pod(api_version="v1", kind="Pod", metadata=metadata, spec=spec)


def is_runner_completed(pod: k8s_client.V1Pod) -> bool:
    """The chaos-runner container terminated with reason Completed and is no longer ready."""
    status = pod.status
    if status is None or status.phase not in _COMPLETION_PHASES:
        return False
    completed = False
    for cs in status.container_statuses or []:
        if cs.name != RUNNER_CONTAINER or cs.state is None or cs.state.terminated is None:
            continue
        if cs.state.terminated.reason == "Completed":
            completed = not cs.ready
    return completed


class RunnerManager:
    def __init__(self, client, config: OperatorConfig, observer: EngineEventObserver):
        self.client = client
        self.config = config
        self.observer = observer

    def get_runner(self, engine: ChaosEngine) -> Optional[k8s_client.V1Pod]:
        try:
            return self.client.get_pod(engine.namespace, engine.runner_name)
        except NotFoundError:
            return None

    def build(self, engine: ChaosEngine) -> k8s_client.V1Pod:
        """Validate the engine, dereference the first experiment and build the pod."""
        validate_target_selection(engine)
        targets = get_targets(engine)
        experiment = self.client.get_experiment(engine.namespace, engine.experiment_names[0])
        LOG.info(
            "runner derived for %s/%s",
            engine.namespace,
            engine.name,
            extra={"targets": targets, "experiments": engine.experiment_names,
                   "runner_image": self.config.runner_image(engine.runner.image)},
        )
        return build_runner_pod(engine, experiment, self.config, targets)

    def ensure_runner(self, engine: ChaosEngine, pod: Optional[k8s_client.V1Pod] = None) -> bool:
        """
        Create the runner pod unless it already exists. Returns True only when
        this call created it; the runner_created notification fires only then.
        """
        if pod is None:
            pod = self.build(engine)
        name = pod.metadata.name
        try:
            self.client.get_pod(engine.namespace, name)
            LOG.info("Skip reconcile: runner pod %s/%s already exists", engine.namespace, name)
            return False
        except NotFoundError:
            pass
        try:
            self.client.create_pod(pod)
        except AlreadyExistsError:
            LOG.info("Skip reconcile: runner pod %s/%s already exists", engine.namespace, name)
            return False
        LOG.info("runner pod %s/%s created", engine.namespace, name)
        RUNNER_PODS_CREATED.inc()
        self.observer.runner_created(engine)
        return True


__all__ = ["RunnerManager", "build_runner_pod", "is_runner_completed", "DEFAULT_PULL_POLICY", "RESTART_POLICY"]
