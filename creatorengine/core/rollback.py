# creatorengine/core/rollback.py
"""
Rollback Engine

Replays a snapshot's inverse instructions against the content store in
the order they were recorded. A failed instruction stops the replay; the
engine reports what was applied and what failed and leaves recovery to an
external backup. It never compensates or retries.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from creatorengine.core.audit import AuditLogger
from creatorengine.core.exceptions import ErrorCode
from creatorengine.core.snapshots import Snapshot, SnapshotManager
from creatorengine.core.tracker import OperationStatus, OperationTracker
from creatorengine.stores.base import ContentStore
from creatorengine.utils.targets import POST, meta_target, parse_target

logger = logging.getLogger(__name__)

EXPIRED_MESSAGE = "Snapshot expired, use full backup"
BACKUP_RECOMMENDATION = "Restore the affected content manually or from a full site backup."


@dataclass
class RollbackResult:
    success: bool
    snapshot_id: str
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None
    previous_state: List[Dict[str, Any]] = field(default_factory=list)
    applied: int = 0
    total: int = 0
    failed_instruction: Optional[Dict[str, Any]] = None
    recommendation: Optional[str] = None

    @property
    def partial(self) -> bool:
        return not self.success and self.applied > 0

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "snapshot_id": self.snapshot_id}
        if self.message:
            result["message"] = self.message
        if self.error:
            result["error"] = self.error
        if self.code is not None:
            result["code"] = self.code.value
        if self.success:
            result["previous_state"] = self.previous_state
        if self.total:
            result["applied"] = self.applied
            result["total"] = self.total
        if self.failed_instruction is not None:
            result["failed_instruction"] = self.failed_instruction
        if self.recommendation:
            result["recommendation"] = self.recommendation
        return result


class InstructionFailed(Exception):
    pass


class RollbackEngine:

    def __init__(
        self,
        store: ContentStore,
        snapshots: SnapshotManager,
        tracker: Optional[OperationTracker] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.snapshots = snapshots
        self.tracker = tracker
        self.audit = audit or AuditLogger()

    def restore(self, snapshot_id: str) -> RollbackResult:
        snapshot = self.snapshots.get(snapshot_id)
        if snapshot is None or snapshot.deleted:
            self.audit.warning("rollback_failed", {"snapshot_id": snapshot_id, "reason": "expired"})
            return RollbackResult(
                success=False,
                snapshot_id=snapshot_id,
                error=EXPIRED_MESSAGE,
                code=ErrorCode.ROLLBACK_FAILED,
                recommendation=BACKUP_RECOMMENDATION,
            )

        operation = self.tracker.get(snapshot.operation_id) if self.tracker and snapshot.operation_id else None
        if operation is not None and operation.status is OperationStatus.ROLLED_BACK:
            self.audit.warning("rollback_failed", {"snapshot_id": snapshot_id, "reason": "already rolled back"})
            return RollbackResult(
                success=False,
                snapshot_id=snapshot_id,
                error=f"Operation {operation.id} is already rolled back",
                code=ErrorCode.ROLLBACK_FAILED,
            )

        return self._replay(snapshot)

    # ------------------------------------------------------------------ #
    # Replay
    # ------------------------------------------------------------------ #

    def _replay(self, snapshot: Snapshot) -> RollbackResult:
        instructions = snapshot.rollback_instructions
        total = len(instructions)
        logger.info(f"Rolling back snapshot {snapshot.id}: {total} instruction(s)")

        applied = 0
        for instruction in instructions:
            try:
                self._apply(instruction)
            except Exception as e:
                logger.exception(f"Rollback instruction failed: {instruction.get('op')} {instruction.get('target')}")
                self.audit.failure("rollback_partial", {
                    "snapshot_id": snapshot.id,
                    "operation_id": snapshot.operation_id,
                    "applied": applied,
                    "total": total,
                    "failed_instruction": instruction,
                    "error": str(e),
                })
                return RollbackResult(
                    success=False,
                    snapshot_id=snapshot.id,
                    message=f"Rolled back {applied} of {total} change(s)" if applied else None,
                    error=f"Rollback instruction {applied + 1} of {total} failed: {e}",
                    code=ErrorCode.ROLLBACK_FAILED,
                    applied=applied,
                    total=total,
                    failed_instruction=instruction,
                    recommendation=BACKUP_RECOMMENDATION,
                )
            applied += 1

        previous_state = [{"target": d.target, "state": d.before} for d in snapshot.operations]
        if self.tracker is not None and snapshot.operation_id:
            self.tracker.mark_rolled_back(snapshot.operation_id, {"snapshot_id": snapshot.id})
        self.audit.success("rollback_completed", {
            "snapshot_id": snapshot.id,
            "operation_id": snapshot.operation_id,
            "applied": applied,
        })

        return RollbackResult(
            success=True,
            snapshot_id=snapshot.id,
            message=f"Rolled back {applied} change(s)",
            previous_state=previous_state,
            applied=applied,
            total=total,
        )

    def _apply(self, instruction: Dict[str, Any]) -> None:
        op = instruction.get("op")
        target = instruction.get("target")
        fields = instruction.get("fields") or {}

        if op == "delete":
            if not self.store.delete(target, force=True):
                logger.warning(f"Rollback delete: {target} is already gone")
            return

        if op == "create":
            self.store.create(instruction.get("kind", "post"), fields, target=target)
            return

        if op == "update":
            if parse_target(target).kind == POST:
                self._restore_post(target, fields)
            elif not self.store.update(target, fields):
                raise InstructionFailed(f"{target} no longer exists")
            return

        raise InstructionFailed(f"Unknown rollback operation: {op}")

    def _restore_post(self, target: str, fields: Dict[str, Any]) -> None:
        current = self.store.read(target)
        if current is None:
            raise InstructionFailed(f"{target} no longer exists")

        previous_meta = fields.get("meta") or {}
        post_id = parse_target(target).object_id
        for key in (current.get("meta") or {}):
            if key not in previous_meta:
                self.store.delete(meta_target(post_id, key))

        if not self.store.update(target, fields):
            raise InstructionFailed(f"{target} no longer exists")
