# chaos_operator/errors.py
"""
ChaosEngine operator error taxonomy.

The reconciler branches on these classes rather than on raw HTTP statuses:
 - NotFoundError       -> resource absent (no-op for the engine, create for the runner)
 - AlreadyExistsError  -> idempotent success on create
 - ConflictError       -> stale resourceVersion; requeue without backoff
 - ValidationError     -> broken engine spec; forces engineState=stop
 - ApiError            -> any other API failure; warning event + backoff retry
 - WaitExhaustedError  -> bounded poll never converged
 - ReconcileCancelled  -> deadline / shutdown interrupted the pass
"""

from __future__ import annotations

from typing import Iterable, Optional


class ChaosOperatorError(Exception):
    """Base error for the chaos operator."""


class ApiError(ChaosOperatorError):
    """Kubernetes API call failed with an unexpected status."""

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class NotFoundError(ApiError):
    """HTTP 404."""


class AlreadyExistsError(ApiError):
    """HTTP 409 returned by a create call."""


class ConflictError(ApiError):
    """HTTP 409 returned by a conditional write (stale resourceVersion)."""


class ValidationError(ChaosOperatorError):
    """The ChaosEngine spec cannot be turned into a runner."""


class CleanupError(ChaosOperatorError):
    """One or more delete-collection calls failed."""

    def __init__(self, kinds: Iterable[str], causes: Iterable[BaseException]):
        self.kinds = list(kinds)
        self.causes = list(causes)
        super().__init__(
            "unable to delete chaos resources (%s): %s"
            % (", ".join(self.kinds), "; ".join(str(c) for c in self.causes))
        )


class WaitExhaustedError(ChaosOperatorError):
    """A bounded poll ran out of attempts before the condition held."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class ReconcileCancelled(ChaosOperatorError):
    """The reconcile deadline passed or the operator is shutting down."""


class PhaseError(ChaosOperatorError):
    """An error tagged with the reconcile phase it happened in, e.g. "chaos stop"."""

    def __init__(self, phase: str, message: str):
        super().__init__(f"({phase}) {message}")
        self.phase = phase


__all__ = [
    "ChaosOperatorError",
    "ApiError",
    "NotFoundError",
    "AlreadyExistsError",
    "ConflictError",
    "ValidationError",
    "CleanupError",
    "WaitExhaustedError",
    "ReconcileCancelled",
    "PhaseError",
]
