# chaos_operator/controllers/chaosengine.py
"""
ChaosEngine reconciler.

Each pass fetches the engine and picks exactly one path from the
(spec.engineState, status.engineStatus) pair:

    active / initialized  -> ensure runner, watch for completion
    stop   / completed    -> graceful cleanup after completion
    stop   / initialized  -> forceful abort (same as deletion)
    active / stopped      -> restart after abort
    active / completed    -> restart after completion
    anything else         -> nothing to do

A set deletionTimestamp always takes the abort path. Every write is a replace
of a modified copy carrying the resourceVersion that was read, and is skipped
when the copy is unchanged. Conflicts end the pass with an immediate requeue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from chaos_operator.api.types import (
    ChaosEngine,
    EngineState,
    EngineStatus,
    ExperimentStatus,
)
from chaos_operator.config import OperatorConfig
from chaos_operator.controllers.cleanup import CleanupManager, EngineResourceIndex
from chaos_operator.controllers.finalizer import (
    DeleteContext,
    FinalizerGuard,
    ForceCleanupHook,
    StatusSyncHook,
)
from chaos_operator.controllers.runner import RunnerManager, is_runner_completed
from chaos_operator.controllers.status_sync import StatusSynchronizer
from chaos_operator.errors import (
    ApiError,
    ChaosOperatorError,
    CleanupError,
    ConflictError,
    NotFoundError,
    PhaseError,
    ReconcileCancelled,
    ValidationError,
    WaitExhaustedError,
)
from chaos_operator.events import EngineEventObserver, KubernetesEventRecorder
from chaos_operator.kube.capabilities import ResultCRDProbe
from chaos_operator.metrics import record_result, time_reconcile
from chaos_operator.utils.common import clear_context, now_iso, set_context, trace_span
from chaos_operator.utils.logger import StructuredLoggerAdapter
from chaos_operator.utils.retry import CancelToken, bind_token

LOG = logging.getLogger("chaosoperator.controllers.chaosengine")

PHASE_INIT = "chaos init"
PHASE_START = "chaos start"
PHASE_RUNNING = "chaos running"
PHASE_COMPLETED = "chaos completed"
PHASE_COMPLETION = "chaos completion"
PHASE_STOP = "chaos stop"
PHASE_RESTART = "chaos restart"

_ABORTABLE = (ExperimentStatus.RUNNING.value, ExperimentStatus.WAITING.value)


@dataclass(frozen=True)
class Request:
    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_key(cls, key: str) -> "Request":
        namespace, _, name = key.partition("/")
        return cls(namespace=namespace, name=name)


@dataclass
class ReconcileResult:
    requeue: bool = False
    requeue_after: Optional[float] = None


def mark_experiments_aborted(engine: ChaosEngine) -> None:
    """Running and waiting experiments become Aborted / Stopped."""
    for exp in engine.status.experiments or []:
        if exp.status in _ABORTABLE:
            exp.status = ExperimentStatus.ABORTED.value
            exp.verdict = "Stopped"
            exp.last_update_time = now_iso()


class ChaosEngineReconciler:
    def __init__(
        self,
        client,
        config: OperatorConfig,
        observer: Optional[EngineEventObserver] = None,
        probe=None,
        sleep=None,
    ):
        self.client = client
        self.config = config
        self.observer = observer or KubernetesEventRecorder(client)
        self.index = EngineResourceIndex(client)
        self.runner = RunnerManager(client, config, self.observer)
        self.cleanup = CleanupManager(client, self.observer, self.index)
        self.status_sync = StatusSynchronizer(client, config, probe or ResultCRDProbe(client), self.index, sleep=sleep)
        self.guard = FinalizerGuard([ForceCleanupHook(self.cleanup), StatusSyncHook(self.status_sync)])

    # ---------------------------
    # Entry point
    # ---------------------------
    @trace_span("chaosengine.reconcile")
    def reconcile(self, request: Request, cancel: Optional[CancelToken] = None) -> ReconcileResult:
        set_context("request_namespace", request.namespace)
        set_context("request_name", request.name)
        log = StructuredLoggerAdapter(LOG, {"request_namespace": request.namespace, "request_name": request.name})
        log.info("Reconciling ChaosEngine")
        try:
            with bind_token(cancel), time_reconcile():
                result = self._reconcile(request, log)
        except ConflictError as e:
            log.info("write conflict, requeueing: %s", e)
            record_result("conflict")
            return ReconcileResult(requeue=True)
        except PhaseError as e:
            record_result("error", e.phase)
            raise
        except ReconcileCancelled:
            record_result("cancelled")
            raise
        except ChaosOperatorError:
            record_result("error")
            raise
        finally:
            clear_context()
        record_result("requeue" if result.requeue else "success")
        return result

    def _reconcile(self, request: Request, log) -> ReconcileResult:
        try:
            engine = self.client.get_engine(request.namespace, request.name)
        except NotFoundError:
            log.info("ChaosEngine not found, it was probably deleted")
            return ReconcileResult()

        if engine.metadata.deletion_timestamp:
            return self.reconcile_for_delete(engine, log)

        engine, requeue = self.init_engine(engine, log)
        if requeue:
            return ReconcileResult(requeue=True)

        state = engine.spec.engine_state
        status = engine.status.engine_status
        if state == EngineState.ACTIVE and status == EngineStatus.INITIALIZED:
            return self.reconcile_for_creation_and_running(engine, log)
        if state == EngineState.STOP and status == EngineStatus.COMPLETED:
            return self.reconcile_for_complete(engine, log)
        if state == EngineState.STOP and status == EngineStatus.INITIALIZED:
            return self.reconcile_for_delete(engine, log)
        if state == EngineState.ACTIVE and status == EngineStatus.STOPPED:
            return self.reconcile_for_restart_after_abort(engine, log)
        if state == EngineState.ACTIVE and status == EngineStatus.COMPLETED:
            return self.reconcile_for_restart_after_complete(engine, log)
        log.debug("nothing to do for engineState=%s engineStatus=%s", state, status)
        return ReconcileResult()

    # ---------------------------
    # Helpers
    # ---------------------------
    def _fail(self, engine: ChaosEngine, phase: str, message: str, err: BaseException) -> PhaseError:
        self.observer.operation_failed(engine, phase, message)
        return PhaseError(phase, f"{message}: {err}")

    def _write(self, snapshot: ChaosEngine, working: ChaosEngine) -> Optional[ChaosEngine]:
        """Replace the engine with `working` if it differs from `snapshot`."""
        if working.to_dict() == snapshot.to_dict():
            return None
        return self.client.replace_engine(working)

    # ---------------------------
    # Initialization
    # ---------------------------
    def init_engine(self, engine: ChaosEngine, log):
        """
        Apply defaults and add the finalizer on first initialization. Returns
        (engine, requeue); requeue is True when the finalizer write happened.
        """
        working = engine.model_copy(deep=True)
        if not working.spec.engine_state:
            working.spec.engine_state = EngineState.ACTIVE.value
        if working.spec.engine_state == EngineState.ACTIVE and not working.status.engine_status:
            working.status.engine_status = EngineStatus.INITIALIZED.value

        if not self.guard.needs_finalizer(working):
            return working, False

        self.guard.add(working)
        try:
            updated = self.client.replace_engine(working)
        except ConflictError:
            raise
        except ApiError as e:
            raise self._fail(engine, PHASE_INIT, "Unable to initialize chaosengine", e) from e
        log.info("ChaosEngine initialized, finalizer added")
        self.observer.initialized(updated)
        return updated, True

    # ---------------------------
    # active / initialized
    # ---------------------------
    def reconcile_for_creation_and_running(self, engine: ChaosEngine, log) -> ReconcileResult:
        try:
            runner = self.runner.get_runner(engine)
        except ApiError as e:
            raise self._fail(engine, PHASE_RUNNING, "Unable to check chaos status", e) from e
        if runner is None:
            return self._create_runner(engine, log)

        if is_runner_completed(runner):
            working = engine.model_copy(deep=True)
            working.status.engine_status = EngineStatus.COMPLETED.value
            working.spec.engine_state = EngineState.STOP.value
            try:
                updated = self.client.replace_engine(working)
            except ConflictError:
                raise
            except ApiError as e:
                raise self._fail(engine, PHASE_COMPLETED, "Unable to update chaos engine", e) from e
            log.info("chaos runner completed")
            self.observer.completed(updated)
            return ReconcileResult()

        log.info("Skip reconcile: runner pod %s already exists", runner.metadata.name)
        return ReconcileResult()

    def _create_runner(self, engine: ChaosEngine, log) -> ReconcileResult:
        try:
            pod = self.runner.build(engine)
        except ValidationError as e:
            log.warning("invalid chaosengine, stopping it: %s", e)
            self._force_stop(engine)
            self.observer.operation_failed(engine, PHASE_START, "Invalid chaosengine: %s" % e)
            raise
        except ApiError as e:
            raise self._fail(engine, PHASE_START, "Unable to get chaos resources", e) from e
        try:
            self.runner.ensure_runner(engine, pod)
        except ApiError as e:
            raise self._fail(engine, PHASE_START, "Unable to get chaos resources", e) from e
        return ReconcileResult()

    def _force_stop(self, engine: ChaosEngine):
        working = engine.model_copy(deep=True)
        working.spec.engine_state = EngineState.STOP.value
        try:
            self._write(engine, working)
        except ConflictError:
            raise
        except ApiError as e:
            raise self._fail(engine, PHASE_STOP, "Unable to update chaosengine", e) from e

    # ---------------------------
    # stop / completed
    # ---------------------------
    def reconcile_for_complete(self, engine: ChaosEngine, log) -> ReconcileResult:
        try:
            self.cleanup.graceful_remove(engine)
        except ApiError as e:
            raise self._fail(engine, PHASE_COMPLETION, "Unable to delete chaos pods upon chaos completion", e) from e

        working = engine.model_copy(deep=True)
        working.spec.engine_state = EngineState.STOP.value
        try:
            self._write(engine, working)
        except ConflictError:
            raise
        except ApiError as e:
            raise self._fail(engine, PHASE_COMPLETION, "Unable to update chaosengine", e) from e
        return ReconcileResult()

    # ---------------------------
    # stop / initialized, deletion
    # ---------------------------
    def reconcile_for_delete(self, engine: ChaosEngine, log) -> ReconcileResult:
        log.info("Checking if there are any chaos resources to be deleted")
        try:
            pods = self.index.chaos_pods(engine)
        except ApiError as e:
            raise self._fail(engine, PHASE_STOP, "Unable to list chaos experiment pods", e) from e

        ctx = DeleteContext(engine=engine, chaos_pods=pods)
        try:
            done = self.guard.run_hooks(ctx)
        except (ConflictError, ReconcileCancelled):
            raise
        except CleanupError as e:
            raise self._fail(engine, PHASE_STOP, "Unable to delete chaos experiment pods", e) from e
        except (ApiError, WaitExhaustedError) as e:
            raise self._fail(engine, PHASE_STOP, "Unable to update chaos status", e) from e
        if not done:
            return ReconcileResult(requeue=True)

        working = self.guard.release(engine)
        mark_experiments_aborted(working)
        working.status.engine_status = EngineStatus.STOPPED.value
        try:
            self._write(engine, working)
        except NotFoundError:
            log.info("ChaosEngine already gone")
        except ConflictError:
            raise
        except ApiError as e:
            raise self._fail(engine, PHASE_STOP, "Unable to update chaosengine", e) from e

        # only after the finalizer is released
        if ctx.pods_present:
            self.observer.stopped(working)
        return ReconcileResult()

    # ---------------------------
    # restarts
    # ---------------------------
    def _force_remove_for_restart(self, engine: ChaosEngine):
        try:
            self.cleanup.force_remove(engine)
        except CleanupError as e:
            raise PhaseError(PHASE_RESTART, str(e)) from e

    def reconcile_for_restart_after_abort(self, engine: ChaosEngine, log) -> ReconcileResult:
        self._force_remove_for_restart(engine)
        working = engine.model_copy(deep=True)
        working.status.engine_status = EngineStatus.INITIALIZED.value
        working.status.experiments = None
        try:
            updated = self.client.replace_engine(working)
        except ConflictError:
            raise
        except ApiError as e:
            raise self._fail(engine, PHASE_RESTART, "Unable to update chaosengine", e) from e
        log.info("ChaosEngine restarted after abort")
        self.observer.restarted(updated)
        return ReconcileResult()

    def reconcile_for_restart_after_complete(self, engine: ChaosEngine, log) -> ReconcileResult:
        self._force_remove_for_restart(engine)
        # dropping the finalizer makes the next pass initialize the engine like a new one
        working = self.guard.release(engine)
        working.status.engine_status = EngineStatus.INITIALIZED.value
        working.status.experiments = None
        try:
            updated = self.client.replace_engine(working)
        except ConflictError:
            raise
        except ApiError as e:
            raise self._fail(engine, PHASE_RESTART, "Unable to update chaosengine", e) from e
        log.info("ChaosEngine restarted after completion")
        self.observer.restarted(updated)
        return ReconcileResult()


__all__ = ["ChaosEngineReconciler", "Request", "ReconcileResult", "mark_experiments_aborted"]
