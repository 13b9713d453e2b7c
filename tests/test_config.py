"""
Operator configuration tests
----------------------------
"""

import pydantic
import pytest

from chaos_operator.config import DEFAULT_RUNNER_IMAGE, OperatorConfig


def test_defaults_from_empty_env():
    cfg = OperatorConfig.from_env(env={})
    assert cfg.watch_namespace is None
    assert cfg.cluster_scoped is True
    assert cfg.workers == 1
    assert cfg.termination_attempts == 180
    assert cfg.termination_delay == 1.0
    assert cfg.client_uuid


def test_client_uuid_is_stable_within_process():
    assert OperatorConfig.from_env(env={}).client_uuid == OperatorConfig.from_env(env={}).client_uuid


def test_env_values_are_parsed():
    cfg = OperatorConfig.from_env(env={
        "CHAOS_RUNNER_IMAGE": "registry.local/chaos-runner:2.0",
        "WATCH_NAMESPACE": "litmus",
        "CLIENT_UUID": "abc-123",
        "CONTROLLER_WORKERS": "4",
        "CHAOS_POD_TERMINATION_ATTEMPTS": "10",
        "CHAOS_POD_TERMINATION_DELAY": "0.5",
        "K8S_IN_CLUSTER": "false",
        "CHAOS_OPERATOR_LOG_LEVEL": "debug",
    })
    assert cfg.runner_image_override == "registry.local/chaos-runner:2.0"
    assert cfg.cluster_scoped is False
    assert cfg.client_uuid == "abc-123"
    assert cfg.workers == 4
    assert cfg.termination_attempts == 10
    assert cfg.termination_delay == 0.5
    assert cfg.in_cluster is False
    assert cfg.log_level == "DEBUG"


def test_blank_namespace_means_cluster_wide():
    cfg = OperatorConfig.from_env(env={"WATCH_NAMESPACE": "  ", "CHAOS_RUNNER_IMAGE": ""})
    assert cfg.cluster_scoped is True
    assert cfg.runner_image(None) == DEFAULT_RUNNER_IMAGE


def test_process_env_is_read(monkeypatch):
    monkeypatch.setenv("WATCH_NAMESPACE", "chaos")
    assert OperatorConfig.from_env(dotenv=False).watch_namespace == "chaos"


@pytest.mark.parametrize("env", [
    {"CONTROLLER_WORKERS": "0"},
    {"CHAOS_POD_TERMINATION_ATTEMPTS": "-1"},
    {"CHAOS_POD_TERMINATION_DELAY": "-2"},
    {"RECONCILE_TIMEOUT": "0"},
    {"CONTROLLER_WORKERS": "many"},
])
def test_invalid_values_are_rejected(env):
    with pytest.raises(pydantic.ValidationError):
        OperatorConfig.from_env(env=env)


def test_runner_image_precedence():
    cfg = OperatorConfig(runner_image_override="operator/runner:1")
    assert cfg.runner_image("engine/runner:2") == "engine/runner:2"
    assert cfg.runner_image(None) == "operator/runner:1"
    assert OperatorConfig().runner_image("") == DEFAULT_RUNNER_IMAGE
