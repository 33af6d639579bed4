# creatorengine/core/executor.py
"""
CreatorEngine Executor
Facade over the permission gate, operation tracker, state capture,
dispatcher, sandbox, snapshot manager and rollback engine.

Entry points:
1.  **execute(action, context)**: one typed action, wrapped in
    before/after capture and a DELTA snapshot.
2.  **run_code(source, context)**: generated code in the sandbox; with
    watched targets it is wrapped in a FULL snapshot.
3.  **restore(snapshot_id)**: replays a snapshot's inverse instructions.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from creatorengine.config.settings import EngineConfig
from creatorengine.core.actions import Action, ActionContext, ActionResult, ActionType
from creatorengine.core.audit import AuditLogger
from creatorengine.core.delta_backup import Delta, DeltaBackup
from creatorengine.core.dispatcher import ActionDispatcher
from creatorengine.core.errors import ErrorHandler
from creatorengine.core.exceptions import ErrorCode, LockTimeoutError
from creatorengine.core.execution import CodeExecutor, ExecutionResult, SandboxFunctions, strip_code_fences
from creatorengine.core.handlers import ActionRegistry, build_default_registry
from creatorengine.core.locks import TargetLockManager
from creatorengine.core.permissions import CapabilityChecker, CapabilityLookup
from creatorengine.core.rollback import RollbackEngine, RollbackResult
from creatorengine.core.snapshots import SnapshotKind, SnapshotManager
from creatorengine.core.tracker import OperationTracker, utc_now
from creatorengine.stores.base import ContentStore

logger = logging.getLogger(__name__)


class ActionExecutor:

    def __init__(
        self,
        store: ContentStore,
        config: Optional[EngineConfig] = None,
        capability_lookup: Optional[CapabilityLookup] = None,
        audit: Optional[AuditLogger] = None,
        registry: Optional[ActionRegistry] = None,
        tracker: Optional[OperationTracker] = None,
        snapshots: Optional[SnapshotManager] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.audit = audit or AuditLogger()
        self.error_handler = ErrorHandler(self.audit)

        self.registry = registry or build_default_registry()
        self.permissions = CapabilityChecker(capability_lookup, self.config.allowed_action_types)
        self.dispatcher = ActionDispatcher(self.registry, store)
        self.delta_backup = DeltaBackup(store, self.registry)
        self.tracker = tracker or OperationTracker(self.config.storage_dir, clock=clock)
        self.snapshots = snapshots or SnapshotManager.from_config(self.config, self.audit, clock)
        self.rollback = RollbackEngine(store, self.snapshots, self.tracker, self.audit)
        self.code_executor = CodeExecutor(self.config)
        self.locks = TargetLockManager(self.config.lock_timeout_seconds)

    # ------------------------------------------------------------------ #
    # Typed actions
    # ------------------------------------------------------------------ #

    def execute(self, action: Union[Action, Dict[str, Any]], context: Optional[ActionContext] = None) -> ActionResult:
        if isinstance(action, dict):
            action = Action.from_dict(action)
        context = context or ActionContext()

        if ActionType.lookup(action.type) is ActionType.EXECUTE_CODE:
            return self._execute_code_action(action, context)

        # Pre-effect checks: vocabulary, permission, params. No operation is recorded for these.
        registration = self.registry.get(action.type)
        if registration is None:
            return self.error_handler.handle(
                ActionResult.fail(f"Unknown action type: {action.type}", ErrorCode.UNKNOWN_ACTION_TYPE), action
            )

        decision = self.permissions.check(registration.action_type.value, context.caller)
        if not decision:
            return self.error_handler.handle(
                ActionResult.fail(decision.reason, ErrorCode.PERMISSION_DENIED), action
            )

        invalid = self.dispatcher.validate(action.type, action.params)
        if invalid is not None:
            return self.error_handler.handle(invalid, action)

        target, invalid = self.dispatcher.resolve_target(action.type, action.params)
        if invalid is not None:
            return self.error_handler.handle(invalid, action)

        try:
            with self.locks.hold([target] if target else [], self.config.lock_timeout_seconds):
                return self._execute_locked(action, registration.action_type.value, target, context)
        except LockTimeoutError as e:
            return self.error_handler.handle(e, action)

    def _execute_locked(self, action: Action, action_type: str, target: Optional[str],
                        context: ActionContext) -> ActionResult:
        params = action.params
        operation_id = self.tracker.start(action_type, target, self._tracking_context(context, params))
        if operation_id is None:
            return self.error_handler.handle(
                ActionResult.fail("Failed to start operation tracking", ErrorCode.OPERATION_ERROR), action
            )

        def add_step(name: str, data: Optional[Dict[str, Any]] = None) -> None:
            self.tracker.add_step(name, data, operation_id)

        try:
            before = self.delta_backup.capture_before(action_type, params, target)
            add_step("before_state_captured", {"target": target, "exists": before is not None})

            result = self.dispatcher.execute(action_type, params, add_step=add_step, caller=context.caller)

            if not result.success:
                self.tracker.fail(result.error or "Action failed", operation_id)
                return self.error_handler.handle(result, action, operation_id=operation_id)

            target = (result.data or {}).get("target") or target
            after = self.delta_backup.capture_after(action_type, params, result, target)
            add_step("after_state_captured", {"target": target, "exists": after is not None})

            delta = self.delta_backup.format_operation(action_type, target, before, after, "completed")
            snapshot_id = self._write_snapshot(context, operation_id, [delta], SnapshotKind.DELTA)

            self.tracker.complete(snapshot_id, result.data, operation_id)
            self.audit.success("action_executed", {
                "action_type": action_type,
                "target": target,
                "operation_id": operation_id,
                "snapshot_id": snapshot_id,
                "user_id": context.caller.user_id,
            })

            result.operation_id = operation_id
            result.snapshot_id = snapshot_id
            return result

        except Exception as e:
            logger.exception(f"Action failed: {action_type}")
            self.tracker.fail(str(e) or e.__class__.__name__, operation_id)
            return self.error_handler.handle(e, action, operation_id=operation_id)

    # ------------------------------------------------------------------ #
    # Generated code
    # ------------------------------------------------------------------ #

    def run_code(self, source: str, context: Optional[ActionContext] = None) -> ExecutionResult:
        context = context or ActionContext()
        payload = {"type": ActionType.EXECUTE_CODE.value, "params": {"code": source}}

        decision = self.permissions.check(ActionType.EXECUTE_CODE.value, context.caller)
        if not decision:
            failure = self.error_handler.handle(
                ActionResult.fail(decision.reason, ErrorCode.PERMISSION_DENIED), payload
            )
            return ExecutionResult(success=False, error=failure.error, code=failure.code)

        checked = self.code_executor.validate(strip_code_fences(source))
        if not checked.valid:
            self.error_handler.handle(
                ActionResult.fail(checked.error, checked.code), payload, symbol=checked.symbol, line=checked.line
            )
            return ExecutionResult(
                success=False,
                error=checked.error,
                code=checked.code,
                symbol=checked.symbol,
                errors=[{"type": "validation", "message": checked.error, "line": checked.line}],
            )

        watched = [t for t in context.targets if t]
        try:
            with self.locks.hold(watched, self.config.lock_timeout_seconds):
                return self._run_code_locked(source, watched, context, payload)
        except LockTimeoutError as e:
            failure = self.error_handler.handle(e, payload)
            return ExecutionResult(success=False, error=failure.error, code=failure.code)

    def _run_code_locked(self, source: str, watched: List[str], context: ActionContext,
                         payload: Dict[str, Any]) -> ExecutionResult:
        operation_id = self.tracker.start(
            ActionType.EXECUTE_CODE.value,
            watched[0] if len(watched) == 1 else None,
            self._tracking_context(context, {"targets": watched}),
        )
        if operation_id is None:
            failure = self.error_handler.handle(
                ActionResult.fail("Failed to start operation tracking", ErrorCode.OPERATION_ERROR), payload
            )
            return ExecutionResult(success=False, error=failure.error, code=failure.code)

        try:
            before = {target: self.store.read(target) for target in watched}
            self.tracker.add_step("before_state_captured", {"targets": watched}, operation_id)

            functions = SandboxFunctions(self.store)
            result = self.code_executor.execute(
                source, functions=functions.namespace(), timeout=self.config.code_timeout_seconds
            )
            result.operation_id = operation_id
            self.tracker.add_step("code_executed", {
                "success": result.success,
                "duration_ms": result.duration_ms,
                "diagnostics": len(result.errors),
            }, operation_id)

            if not result.success:
                self.tracker.fail(result.error or "Code execution failed", operation_id)
                self.error_handler.handle(
                    ActionResult.fail(result.error or "Code execution failed", result.code),
                    payload,
                    operation_id=operation_id,
                    output=result.output[-2000:],
                )
                return result

            snapshot_id = None
            targets = watched + [t for t in functions.created if t not in before]
            if targets:
                deltas = [
                    Delta(
                        type=ActionType.EXECUTE_CODE.value,
                        target=target,
                        before=before.get(target),
                        after=self.store.read(target),
                    )
                    for target in targets
                ]
                self.tracker.add_step("after_state_captured", {"targets": targets}, operation_id)
                snapshot_id = self._write_snapshot(context, operation_id, deltas, SnapshotKind.FULL)

            result.snapshot_id = snapshot_id
            self.tracker.complete(snapshot_id, {"output": result.output[-2000:]}, operation_id)
            self.audit.success("code_executed", {"operation_id": operation_id, "snapshot_id": snapshot_id})
            return result

        except Exception as e:
            logger.exception("Generated code execution failed outside the sandbox")
            self.tracker.fail(str(e) or e.__class__.__name__, operation_id)
            failure = self.error_handler.handle(e, payload, operation_id=operation_id)
            return ExecutionResult(success=False, error=failure.error, code=failure.code, operation_id=operation_id)

    def _execute_code_action(self, action: Action, context: ActionContext) -> ActionResult:
        source = action.params.get("code")
        if not source:
            return self.error_handler.handle(
                ActionResult.fail("Missing required parameter(s) for execute_code: code", ErrorCode.PARAMETER_ERROR),
                action,
            )
        result = self.run_code(source, context)
        return ActionResult(
            success=result.success,
            data={"output": result.output, "return_value": result.return_value, "errors": result.errors},
            error=result.error,
            code=result.code,
            operation_id=result.operation_id,
            snapshot_id=result.snapshot_id,
        )

    # ------------------------------------------------------------------ #
    # Rollback
    # ------------------------------------------------------------------ #

    def restore(self, snapshot_id: str) -> RollbackResult:
        snapshot = self.snapshots.get(snapshot_id)
        targets = [d.target for d in snapshot.operations if d.target] if snapshot else []
        try:
            with self.locks.hold(targets, self.config.lock_timeout_seconds):
                return self.rollback.restore(snapshot_id)
        except LockTimeoutError as e:
            self.audit.warning("rollback_failed", {"snapshot_id": snapshot_id, "reason": str(e)})
            return RollbackResult(
                success=False,
                snapshot_id=snapshot_id,
                error=str(e),
                code=ErrorCode.ROLLBACK_FAILED,
            )

    def recover_interrupted(self, older_than_seconds: float = 300) -> List[str]:
        return self.tracker.recover_interrupted(older_than_seconds)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _write_snapshot(self, context: ActionContext, operation_id: str, deltas: List[Delta],
                        kind: SnapshotKind) -> Optional[str]:
        try:
            snapshot_id = self.snapshots.create_snapshot(
                context.context_id, context.message_id, operation_id, deltas, kind=kind
            )
        except OSError as e:
            logger.warning(f"Snapshot could not be written for operation {operation_id}: {e}")
            self.audit.warning("snapshot_failed", {"operation_id": operation_id, "error": str(e)})
            return None
        self.tracker.add_step("snapshot_created", {"snapshot_id": snapshot_id}, operation_id)
        return snapshot_id

    @staticmethod
    def _tracking_context(context: ActionContext, params: Any) -> Dict[str, Any]:
        return {
            "context_id": context.context_id,
            "message_id": context.message_id,
            "user_id": context.caller.user_id,
            "params": dict(params),
        }
