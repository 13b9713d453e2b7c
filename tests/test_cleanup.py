"""
Resource cleanup tests
----------------------

Validates:
 - forceful removal of Jobs and Pods by chaosUID with grace period
 - both kinds attempted even when one fails, errors aggregated
 - graceful removal gated by jobCleanUpPolicy
"""

import pytest

from chaos_operator.api.types import ChaosEngine
from chaos_operator.controllers.cleanup import CleanupManager
from chaos_operator.errors import ApiError, CleanupError

from conftest import ENGINE_UID, NAMESPACE, make_engine, make_pod


def _engine(**kw) -> ChaosEngine:
    return ChaosEngine.from_dict(make_engine(**kw))


def _seed(cluster):
    cluster.add_pod(make_pod("nginx-chaos-runner", labels={"app": "nginx-chaos", "chaosUID": ENGINE_UID}))
    cluster.add_pod(make_pod("pod-delete-abc", labels={"app": "nginx-chaos", "chaosUID": ENGINE_UID}))
    cluster.add_pod(make_pod("helper-xyz", labels={"name": "helper", "chaosUID": ENGINE_UID}))
    cluster.add_pod(make_pod("unrelated", labels={"app": "nginx"}))
    cluster.add_job("pod-delete-job", labels={"chaosUID": ENGINE_UID})

# -----------------------------------------------------------------------------
# force_remove
# -----------------------------------------------------------------------------
def test_force_remove_deletes_jobs_and_pods(cluster, observer):
    _seed(cluster)
    CleanupManager(cluster, observer).force_remove(_engine(terminationGracePeriodSeconds=30))
    assert cluster.calls[-2] == ("delete_jobs", NAMESPACE, {"chaosUID": ENGINE_UID}, 30)
    assert cluster.calls[-1] == ("delete_pods", NAMESPACE, {"chaosUID": ENGINE_UID}, 30)
    assert list(cluster.pods) == [(NAMESPACE, "unrelated")]
    assert cluster.jobs == {}
    assert observer.records == []


def test_force_remove_without_grace_period(cluster, observer):
    CleanupManager(cluster, observer).force_remove(_engine(terminationGracePeriodSeconds=0))
    assert cluster.calls[-1][-1] is None


def test_force_remove_attempts_both_kinds_and_aggregates(cluster, observer):
    _seed(cluster)
    cluster.fail_next("delete_jobs", ApiError("forbidden", status=403))
    with pytest.raises(CleanupError) as exc:
        CleanupManager(cluster, observer).force_remove(_engine())
    assert exc.value.kinds == ["Jobs"]
    assert cluster.count("delete_pods") == 1
    assert (NAMESPACE, "nginx-chaos-runner") not in cluster.pods
    assert observer.records == [(
        "operation_failed", "nginx-chaos", "chaos stop",
        "Unable to delete chaos resources: Jobs allocated to chaosengine",
    )]


def test_force_remove_both_kinds_failing(cluster, observer):
    cluster.fail_next("delete_jobs", ApiError("boom", status=500))
    cluster.fail_next("delete_pods", ApiError("boom", status=500))
    with pytest.raises(CleanupError) as exc:
        CleanupManager(cluster, observer).force_remove(_engine())
    assert exc.value.kinds == ["Jobs", "Pods"]
    assert len(exc.value.causes) == 2

# -----------------------------------------------------------------------------
# graceful_remove
# -----------------------------------------------------------------------------
def test_graceful_remove_retain_policy_deletes_nothing(cluster, observer):
    _seed(cluster)
    assert CleanupManager(cluster, observer).graceful_remove(_engine(jobCleanUpPolicy="retain")) == 0
    assert cluster.count("delete_pod") == 0
    assert cluster.count("list_pods") == 0


def test_graceful_remove_delete_policy_one_call_per_pod(cluster, observer):
    _seed(cluster)
    deleted = CleanupManager(cluster, observer).graceful_remove(_engine(jobCleanUpPolicy="Delete"))
    assert deleted == 2
    assert [c[2] for c in cluster.calls if c[0] == "delete_pod"] == ["nginx-chaos-runner", "pod-delete-abc"]
    # pods without app=<engine> are left alone
    assert (NAMESPACE, "helper-xyz") in cluster.pods


def test_graceful_remove_stops_at_first_failure(cluster, observer):
    _seed(cluster)
    cluster.fail_next("delete_pod", ApiError("boom", status=500))
    with pytest.raises(ApiError):
        CleanupManager(cluster, observer).graceful_remove(_engine())
    assert cluster.count("delete_pod") == 1
