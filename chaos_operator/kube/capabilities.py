# chaos_operator/kube/capabilities.py
"""Cluster capability probes, cached for the lifetime of the process."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from chaos_operator.api.types import RESULT_CRD_NAME

LOG = logging.getLogger("chaosoperator.kube.capabilities")


class ResultCRDProbe:
    """
    Answers "is the ChaosResult CRD installed?".

    A positive or negative answer is cached after the first successful lookup;
    a failed lookup is not cached and raises, so the caller retries later.
    """

    def __init__(self, client, crd_name: str = RESULT_CRD_NAME):
        self._client = client
        self._crd_name = crd_name
        self._lock = threading.Lock()
        self._available: Optional[bool] = None

    def available(self) -> bool:
        with self._lock:
            if self._available is None:
                self._available = self._crd_name in self._client.list_crd_names()
                LOG.info("CRD %s available=%s", self._crd_name, self._available)
            return self._available

    def reset(self):
        with self._lock:
            self._available = None


class StaticProbe:
    """Probe with a fixed answer (namespace-scoped deployments, tests)."""

    def __init__(self, available: bool):
        self._available = available

    def available(self) -> bool:
        return self._available


__all__ = ["ResultCRDProbe", "StaticProbe"]
