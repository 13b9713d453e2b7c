# chaos_operator/kube/client.py
"""
Thin facade over the kubernetes python client.

All controller code talks to the cluster through `ClusterClient`; it never
sees `ApiException`. Statuses are translated into the operator error taxonomy:

    404                 -> NotFoundError
    409 on create       -> AlreadyExistsError
    409 on replace      -> ConflictError
    anything else       -> ApiError

Every call checks the reconcile CancelToken bound to the current context and
passes the remaining deadline as `_request_timeout`.
"""

from __future__ import annotations

import re
import logging
import contextlib
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Type

from kubernetes import client as k8s_client, config as k8s_config, watch as k8s_watch
from kubernetes.client.rest import ApiException as K8sApiException
from pydantic import ValidationError as ModelValidationError
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from chaos_operator.api.types import (
    GROUP,
    VERSION,
    ENGINE_PLURAL,
    EXPERIMENT_PLURAL,
    RESULT_PLURAL,
    ChaosEngine,
    ChaosExperiment,
    ChaosResult,
)
from chaos_operator.errors import (
    ApiError,
    NotFoundError,
    AlreadyExistsError,
    ConflictError,
)
from chaos_operator.utils.retry import current_token

LOG = logging.getLogger("chaosoperator.kube.client")

PROPAGATION_BACKGROUND = "Background"

# openapi_types spellings across client releases: list[X] / List[X], dict(str, X) / Dict[str, X]
_LIST_TYPE = re.compile(r"^[lL]ist\[(.+)\]$")
_DICT_TYPE = re.compile(r"^(?:dict\(str, *(.+)\)|Dict\[str, *(.+)\])$")


def label_selector(labels: Mapping[str, str]) -> str:
    """{"app": "x", "chaosUID": "u"} -> "app=x,chaosUID=u" """
    return ",".join(f"{k}={v}" for k, v in labels.items())


def load_kube_config(in_cluster: bool) -> None:
    if in_cluster:
        k8s_config.load_incluster_config()
    else:
        k8s_config.load_kube_config()
    LOG.info("Kubernetes client configured (in_cluster=%s)", in_cluster)


def to_k8s_model(obj: Any, type_name: str) -> Any:
    """
    Build a kubernetes client model (e.g. "V1Toleration") from its camelCase
    wire form, recursing through nested models, lists and maps. Keys the
    model does not know are dropped.
    """
    if obj is None:
        return None
    m = _LIST_TYPE.match(type_name)
    if m:
        return [to_k8s_model(i, m.group(1)) for i in obj]
    m = _DICT_TYPE.match(type_name)
    if m:
        inner = m.group(1) or m.group(2)
        return {k: to_k8s_model(v, inner) for k, v in obj.items()}
    klass = getattr(k8s_client, type_name, None)
    if klass is None or not hasattr(klass, "attribute_map") or not isinstance(obj, Mapping):
        return obj
    wire_to_attr = {wire: attr for attr, wire in klass.attribute_map.items()}
    kwargs: Dict[str, Any] = {}
    for key, value in obj.items():
        attr = wire_to_attr.get(key)
        if attr is None:
            LOG.warning("dropping unknown field %r of %s", key, type_name)
            continue
        kwargs[attr] = to_k8s_model(value, klass.openapi_types[attr])
    return klass(**kwargs)


def _parse(what: str, model, obj: Dict[str, Any]):
    """Parse a custom object; schema violations surface as ApiError."""
    try:
        return model.from_dict(obj)
    except ModelValidationError as e:
        raise ApiError(f"{what}: invalid object: {e}") from e


@contextlib.contextmanager
def _translate(what: str, on_conflict: Type[ApiError] = ConflictError) -> Iterator[None]:
    token = current_token()
    if token is not None:
        token.raise_if_cancelled()
    try:
        yield
    except K8sApiException as e:
        status = e.status
        msg = f"{what}: {status} {e.reason}"
        if status == 404:
            raise NotFoundError(msg, status=status, reason=e.reason) from e
        if status == 409:
            raise on_conflict(msg, status=status, reason=e.reason) from e
        raise ApiError(msg, status=status, reason=e.reason) from e
    except Urllib3HTTPError as e:
        raise ApiError(f"{what}: {e}") from e


def _call_opts() -> Dict[str, Any]:
    token = current_token()
    if token is None:
        return {}
    remaining = token.remaining()
    if remaining is None:
        return {}
    return {"_request_timeout": max(remaining, 0.001)}


class ClusterClient:
    """Cluster access used by the ChaosEngine controller."""

    def __init__(self, api_client: Optional[k8s_client.ApiClient] = None):
        self.core = k8s_client.CoreV1Api(api_client)
        self.batch = k8s_client.BatchV1Api(api_client)
        self.custom = k8s_client.CustomObjectsApi(api_client)
        self.apiext = k8s_client.ApiextensionsV1Api(api_client)

    # ---------------------------
    # ChaosEngine
    # ---------------------------
    def get_engine(self, namespace: str, name: str) -> ChaosEngine:
        with _translate(f"get chaosengine {namespace}/{name}"):
            obj = self.custom.get_namespaced_custom_object(
                GROUP, VERSION, namespace, ENGINE_PLURAL, name, **_call_opts()
            )
        return _parse(f"get chaosengine {namespace}/{name}", ChaosEngine, obj)

    def replace_engine(self, engine: ChaosEngine) -> ChaosEngine:
        """Conditional write: the body carries the resourceVersion that was read."""
        with _translate(f"update chaosengine {engine.namespace}/{engine.name}"):
            obj = self.custom.replace_namespaced_custom_object(
                GROUP, VERSION, engine.namespace, ENGINE_PLURAL, engine.name, engine.to_dict(), **_call_opts()
            )
        return _parse(f"update chaosengine {engine.namespace}/{engine.name}", ChaosEngine, obj)

    def watch_engines(self, namespace: Optional[str], timeout_seconds: int = 300) -> Iterator[Tuple[str, Dict[str, Any]]]:
        w = k8s_watch.Watch()
        if namespace:
            stream = w.stream(self.custom.list_namespaced_custom_object, GROUP, VERSION, namespace, ENGINE_PLURAL,
                              timeout_seconds=timeout_seconds)
        else:
            stream = w.stream(self.custom.list_cluster_custom_object, GROUP, VERSION, ENGINE_PLURAL,
                              timeout_seconds=timeout_seconds)
        for event in stream:
            yield event["type"], event["object"]

    # ---------------------------
    # ChaosExperiment / ChaosResult
    # ---------------------------
    def get_experiment(self, namespace: str, name: str) -> ChaosExperiment:
        with _translate(f"get chaosexperiment {namespace}/{name}"):
            obj = self.custom.get_namespaced_custom_object(
                GROUP, VERSION, namespace, EXPERIMENT_PLURAL, name, **_call_opts()
            )
        return _parse(f"get chaosexperiment {namespace}/{name}", ChaosExperiment, obj)

    def list_results(self, namespace: str, labels: Mapping[str, str]) -> List[ChaosResult]:
        with _translate(f"list chaosresults in {namespace}"):
            resp = self.custom.list_namespaced_custom_object(
                GROUP, VERSION, namespace, RESULT_PLURAL, label_selector=label_selector(labels), **_call_opts()
            )
        return [_parse(f"list chaosresults in {namespace}", ChaosResult, i) for i in resp.get("items", [])]

    def replace_result(self, result: ChaosResult) -> ChaosResult:
        ns = result.metadata.namespace
        name = result.metadata.name
        with _translate(f"update chaosresult {ns}/{name}"):
            obj = self.custom.replace_namespaced_custom_object(
                GROUP, VERSION, ns, RESULT_PLURAL, name, result.to_dict(), **_call_opts()
            )
        return _parse(f"update chaosresult {ns}/{name}", ChaosResult, obj)

    def list_crd_names(self) -> List[str]:
        with _translate("list customresourcedefinitions"):
            resp = self.apiext.list_custom_resource_definition(**_call_opts())
        return [crd.metadata.name for crd in resp.items]

    # ---------------------------
    # Pods & Jobs
    # ---------------------------
    def get_pod(self, namespace: str, name: str) -> k8s_client.V1Pod:
        with _translate(f"get pod {namespace}/{name}"):
            return self.core.read_namespaced_pod(name, namespace, **_call_opts())

    def create_pod(self, pod: k8s_client.V1Pod) -> k8s_client.V1Pod:
        ns = pod.metadata.namespace
        with _translate(f"create pod {ns}/{pod.metadata.name}", on_conflict=AlreadyExistsError):
            return self.core.create_namespaced_pod(ns, pod, **_call_opts())

    def list_pods(self, namespace: str, labels: Mapping[str, str]) -> List[k8s_client.V1Pod]:
        with _translate(f"list pods in {namespace}"):
            resp = self.core.list_namespaced_pod(namespace, label_selector=label_selector(labels), **_call_opts())
        return list(resp.items)

    def delete_pod(self, namespace: str, name: str) -> None:
        with _translate(f"delete pod {namespace}/{name}"):
            self.core.delete_namespaced_pod(name, namespace, **_call_opts())

    def delete_pods(self, namespace: str, labels: Mapping[str, str], grace_period_seconds: Optional[int] = None) -> None:
        kwargs = self._delete_collection_kwargs(labels, grace_period_seconds)
        with _translate(f"delete pods in {namespace}"):
            self.core.delete_collection_namespaced_pod(namespace, **kwargs)

    def delete_jobs(self, namespace: str, labels: Mapping[str, str], grace_period_seconds: Optional[int] = None) -> None:
        kwargs = self._delete_collection_kwargs(labels, grace_period_seconds)
        with _translate(f"delete jobs in {namespace}"):
            self.batch.delete_collection_namespaced_job(namespace, **kwargs)

    @staticmethod
    def _delete_collection_kwargs(labels: Mapping[str, str], grace_period_seconds: Optional[int]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "label_selector": label_selector(labels),
            "propagation_policy": PROPAGATION_BACKGROUND,
        }
        if grace_period_seconds:
            kwargs["grace_period_seconds"] = grace_period_seconds
        kwargs.update(_call_opts())
        return kwargs

    def watch_pods(self, namespace: Optional[str], selector: str,
                   timeout_seconds: int = 300) -> Iterator[Tuple[str, k8s_client.V1Pod]]:
        """Watch pods matching a raw label selector, e.g. "chaosUID" for key presence."""
        w = k8s_watch.Watch()
        if namespace:
            stream = w.stream(self.core.list_namespaced_pod, namespace, label_selector=selector,
                              timeout_seconds=timeout_seconds)
        else:
            stream = w.stream(self.core.list_pod_for_all_namespaces, label_selector=selector,
                              timeout_seconds=timeout_seconds)
        for event in stream:
            yield event["type"], event["object"]

    # ---------------------------
    # Events
    # ---------------------------
    def create_event(self, namespace: str, event: k8s_client.CoreV1Event) -> None:
        with _translate(f"create event in {namespace}", on_conflict=AlreadyExistsError):
            self.core.create_namespaced_event(namespace, event, **_call_opts())


__all__ = ["ClusterClient", "label_selector", "load_kube_config", "to_k8s_model", "PROPAGATION_BACKGROUND"]
