# chaos_operator/controllers/finalizer.py
"""
Finalizer bookkeeping and the ordered pre-delete hooks.

The finalizer keeps the ChaosEngine around until its spawned resources are
gone and its ChaosResult has been brought up to date. The delete path runs
every PreDeleteHook in order; the finalizer is released only when all of
them report done.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from chaos_operator.api.types import FINALIZER, EngineStatus, ChaosEngine
from chaos_operator.utils.common import contains_string, remove_string

LOG = logging.getLogger("chaosoperator.controllers.finalizer")


@dataclass
class DeleteContext:
    engine: ChaosEngine
    chaos_pods: List = field(default_factory=list)

    @property
    def pods_present(self) -> bool:
        return bool(self.chaos_pods)


class PreDeleteHook:
    """A step that must finish before the finalizer can be dropped."""

    name = "hook"

    def run(self, ctx: DeleteContext) -> bool:
        """Return True when done. Raise on failure."""
        raise NotImplementedError


class ForceCleanupHook(PreDeleteHook):
    name = "force-cleanup"

    def __init__(self, cleanup):
        self.cleanup = cleanup

    def run(self, ctx: DeleteContext) -> bool:
        if ctx.pods_present:
            LOG.info("Performing a force delete of chaos experiment pods for %s", ctx.engine.name)
            self.cleanup.force_remove(ctx.engine)
        return True


class StatusSyncHook(PreDeleteHook):
    name = "status-sync"

    def __init__(self, synchronizer):
        self.synchronizer = synchronizer

    def run(self, ctx: DeleteContext) -> bool:
        self.synchronizer.sync(ctx.engine)
        return True


class FinalizerGuard:
    def __init__(self, hooks: Sequence[PreDeleteHook], finalizer: str = FINALIZER):
        self.hooks = list(hooks)
        self.finalizer = finalizer

    def needs_finalizer(self, engine: ChaosEngine) -> bool:
        return (
            engine.status.engine_status == EngineStatus.INITIALIZED
            and not contains_string(engine.metadata.finalizers, self.finalizer)
        )

    def add(self, engine: ChaosEngine) -> None:
        """Add the finalizer to a working copy (no-op when present)."""
        finalizers = list(engine.metadata.finalizers or [])
        if not contains_string(finalizers, self.finalizer):
            finalizers.append(self.finalizer)
        engine.metadata.finalizers = finalizers

    def release(self, engine: ChaosEngine) -> ChaosEngine:
        """Copy of the engine without the finalizer."""
        released = engine.model_copy(deep=True)
        if released.metadata.finalizers is not None:
            released.metadata.finalizers = remove_string(released.metadata.finalizers, self.finalizer)
        return released

    def run_hooks(self, ctx: DeleteContext) -> bool:
        for hook in self.hooks:
            if not hook.run(ctx):
                LOG.info("pre-delete hook %s not done for %s/%s", hook.name, ctx.engine.namespace, ctx.engine.name)
                return False
        return True


__all__ = ["DeleteContext", "PreDeleteHook", "ForceCleanupHook", "StatusSyncHook", "FinalizerGuard"]
