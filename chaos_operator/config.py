# chaos_operator/config.py
"""
Operator configuration.

Everything is read from the environment once at startup (a local `.env` is
loaded first for development runs). The resulting `OperatorConfig` is passed
explicitly into the reconciler and the runtime; nothing below reads
os.environ after startup.
"""

from __future__ import annotations

import os
import uuid
import logging
from typing import Optional, Mapping

from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

LOG = logging.getLogger("chaosoperator.config")

DEFAULT_RUNNER_IMAGE = "litmuschaos/chaos-runner:latest"

# generated once per process when CLIENT_UUID is not provided
_PROCESS_CLIENT_UUID = str(uuid.uuid4())


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class OperatorConfig(BaseModel):
    runner_image_override: Optional[str] = Field(None, description="CHAOS_RUNNER_IMAGE")
    watch_namespace: Optional[str] = Field(None, description="empty means cluster-wide")
    client_uuid: str = Field(default_factory=lambda: _PROCESS_CLIENT_UUID)
    workers: int = 1
    termination_attempts: int = 180
    termination_delay: float = 1.0
    reconcile_timeout: float = 300.0
    backoff_base: float = 2.0
    backoff_max: float = 300.0
    in_cluster: bool = True
    prometheus_port: int = 8080
    health_port: int = 8081
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("workers", "termination_attempts")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("termination_delay", "backoff_base", "backoff_max")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("reconcile_timeout")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("runner_image_override", "watch_namespace")
    @classmethod
    def _blank_is_unset(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def cluster_scoped(self) -> bool:
        return self.watch_namespace is None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "OperatorConfig":
        """
        Build the config from environment variables. Unset variables keep the
        model defaults; malformed values raise pydantic.ValidationError.
        """
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ
        mapping = {
            "CHAOS_RUNNER_IMAGE": "runner_image_override",
            "WATCH_NAMESPACE": "watch_namespace",
            "CLIENT_UUID": "client_uuid",
            "CONTROLLER_WORKERS": "workers",
            "CHAOS_POD_TERMINATION_ATTEMPTS": "termination_attempts",
            "CHAOS_POD_TERMINATION_DELAY": "termination_delay",
            "RECONCILE_TIMEOUT": "reconcile_timeout",
            "RETRY_BACKOFF_BASE": "backoff_base",
            "RETRY_BACKOFF_MAX": "backoff_max",
            "PROMETHEUS_PORT": "prometheus_port",
            "HEALTH_PORT": "health_port",
            "CHAOS_OPERATOR_LOG_LEVEL": "log_level",
        }
        values = {}
        for key, field in mapping.items():
            raw = env.get(key)
            if raw is None:
                continue
            if raw == "" and field not in ("runner_image_override", "watch_namespace"):
                continue
            values[field] = raw
        for key, field in (("K8S_IN_CLUSTER", "in_cluster"), ("CHAOS_OPERATOR_LOG_JSON", "log_json")):
            raw = env.get(key)
            if raw:
                values[field] = _truthy(raw)
        cfg = cls(**values)
        LOG.debug("operator config loaded: %s", cfg.model_dump(exclude={"client_uuid"}))
        return cfg

    def runner_image(self, engine_image: Optional[str]) -> str:
        """Engine-level image wins, then the operator override, then the default."""
        if engine_image:
            return engine_image
        if self.runner_image_override:
            return self.runner_image_override
        return DEFAULT_RUNNER_IMAGE


__all__ = ["OperatorConfig", "DEFAULT_RUNNER_IMAGE"]
