# creatorengine/core/tracker.py
"""
Operation Tracker

Records the lifecycle of one execution attempt:

    pending -(start)-> running -(add_step)*-> running -(complete|fail)-> completed|failed
    completed -(mark_rolled_back)-> rolled_back

Transitions only move forward. Each operation is persisted as one JSON
document under ``<storage_dir>/operations/``; without a storage dir the
tracker keeps records in memory only. Records are never deleted here.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class OperationStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


_TRANSITIONS = {
    OperationStatus.PENDING: {OperationStatus.RUNNING, OperationStatus.FAILED},
    OperationStatus.RUNNING: {OperationStatus.COMPLETED, OperationStatus.FAILED},
    OperationStatus.COMPLETED: {OperationStatus.ROLLED_BACK},
    OperationStatus.FAILED: set(),
    OperationStatus.ROLLED_BACK: set(),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OperationStep:
    name: str
    timestamp: str
    elapsed_ms: float
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "timestamp": self.timestamp,
            "elapsed_ms": self.elapsed_ms,
            "data": self.data,
        }


@dataclass
class Operation:
    id: str
    action_type: str
    target: Optional[str]
    status: OperationStatus = OperationStatus.PENDING
    steps: List[OperationStep] = field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    snapshot_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action_type": self.action_type,
            "target": self.target,
            "status": self.status.value,
            "steps": [s.to_dict() for s in self.steps],
            "result": self.result,
            "error": self.error,
            "snapshot_id": self.snapshot_id,
            "context": self.context,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Operation":
        return cls(
            id=data["id"],
            action_type=data["action_type"],
            target=data.get("target"),
            status=OperationStatus(data.get("status", "pending")),
            steps=[OperationStep(**s) for s in data.get("steps", [])],
            result=data.get("result"),
            error=data.get("error"),
            snapshot_id=data.get("snapshot_id"),
            context=data.get("context") or {},
            created_at=data.get("created_at", ""),
            completed_at=data.get("completed_at"),
        )


class OperationTracker:

    def __init__(
        self,
        storage_dir: Optional[Path] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage_dir = Path(storage_dir) / "operations" if storage_dir else None
        self.clock = clock
        self._operations: Dict[str, Operation] = {}
        self._started: Dict[str, float] = {}
        self._lock = threading.RLock()
        # The operation the current thread is executing.
        self._local = threading.local()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self, action_type: str, target: Optional[str], context: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Begin tracking an execution attempt.

        Returns:
            The new operation id, or None when no tracking record could be
            persisted; the caller must abort before running any effect.
        """
        operation = Operation(
            id=uuid.uuid4().hex,
            action_type=action_type,
            target=target,
            context=dict(context or {}),
            created_at=self.clock().isoformat(),
        )
        with self._lock:
            self._operations[operation.id] = operation
            self._started[operation.id] = time.monotonic()
            try:
                self._transition(operation, OperationStatus.RUNNING)
            except OSError as e:
                logger.error(f"Could not persist operation record: {e}")
                self._operations.pop(operation.id, None)
                self._started.pop(operation.id, None)
                return None

        self._local.current = operation.id
        logger.info(f"Operation {operation.id} started: {action_type} on {target}")
        return operation.id

    def add_step(self, name: str, data: Optional[Dict[str, Any]] = None, operation_id: Optional[str] = None) -> None:
        operation = self._resolve(operation_id)
        if operation is None:
            logger.warning(f"add_step({name}) with no active operation")
            return

        with self._lock:
            elapsed = (time.monotonic() - self._started.get(operation.id, time.monotonic())) * 1000
            if operation.steps:
                elapsed = max(elapsed, operation.steps[-1].elapsed_ms)
            operation.steps.append(OperationStep(
                name=name,
                timestamp=self.clock().isoformat(),
                elapsed_ms=round(elapsed, 3),
                data=dict(data or {}),
            ))
            self._save_quietly(operation)

    def complete(self, snapshot_id: Optional[str], result_data: Optional[Dict[str, Any]] = None,
                 operation_id: Optional[str] = None) -> None:
        operation = self._resolve(operation_id)
        if operation is None:
            logger.warning("complete() with no active operation")
            return
        if operation.status is not OperationStatus.RUNNING:
            logger.warning(f"Operation {operation.id} is {operation.status.value}; not completing")
            return

        with self._lock:
            operation.snapshot_id = snapshot_id
            operation.result = dict(result_data or {})
            operation.completed_at = self.clock().isoformat()
            self.add_step("completed", {"snapshot_id": snapshot_id}, operation.id)
            self._transition_quietly(operation, OperationStatus.COMPLETED)
        self._clear_current(operation.id)

    def fail(self, error_message: str, operation_id: Optional[str] = None) -> None:
        operation = self._resolve(operation_id)
        if operation is None:
            logger.warning("fail() with no active operation")
            return
        if operation.status not in (OperationStatus.PENDING, OperationStatus.RUNNING):
            logger.warning(f"Operation {operation.id} is {operation.status.value}; not failing")
            return

        with self._lock:
            operation.error = error_message
            operation.completed_at = self.clock().isoformat()
            self.add_step("failed", {"error": error_message}, operation.id)
            self._transition_quietly(operation, OperationStatus.FAILED)
        self._clear_current(operation.id)

    def mark_rolled_back(self, operation_id: str, data: Optional[Dict[str, Any]] = None) -> bool:
        operation = self.get(operation_id)
        if operation is None or operation.status is not OperationStatus.COMPLETED:
            return False
        with self._lock:
            self.add_step("rolled_back", data, operation.id)
            self._transition_quietly(operation, OperationStatus.ROLLED_BACK)
        return operation.status is OperationStatus.ROLLED_BACK

    def recover_interrupted(self, older_than_seconds: float = 300) -> List[str]:
        """
        Fail operations left in ``running`` by an interrupted process.

        Returns:
            Ids of the operations that were marked failed
        """
        now = self.clock()
        recovered = []
        for operation in self.list():
            if operation.status is not OperationStatus.RUNNING or operation.id in self._started:
                continue
            try:
                age = (now - datetime.fromisoformat(operation.created_at)).total_seconds()
            except ValueError:
                continue
            if age < older_than_seconds:
                continue
            self.fail("interrupted: execution did not finish; content may be mutated without a snapshot",
                      operation.id)
            recovered.append(operation.id)

        if recovered:
            logger.warning(f"Marked {len(recovered)} interrupted operation(s) failed")
        return recovered

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    @property
    def current_id(self) -> Optional[str]:
        return getattr(self._local, "current", None)

    def get(self, operation_id: str) -> Optional[Operation]:
        with self._lock:
            operation = self._operations.get(operation_id)
            if operation is None and self.storage_dir is not None:
                operation = self._load(operation_id)
                if operation is not None:
                    self._operations[operation_id] = operation
            return operation

    def list(self) -> List[Operation]:
        with self._lock:
            if self.storage_dir is not None and self.storage_dir.exists():
                for path in self.storage_dir.glob("*.json"):
                    if path.stem not in self._operations:
                        loaded = self._load(path.stem)
                        if loaded is not None:
                            self._operations[loaded.id] = loaded
            return sorted(self._operations.values(), key=lambda o: o.created_at)

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _resolve(self, operation_id: Optional[str]) -> Optional[Operation]:
        operation_id = operation_id or self.current_id
        return self.get(operation_id) if operation_id else None

    def _clear_current(self, operation_id: str) -> None:
        if self.current_id == operation_id:
            self._local.current = None
        self._started.pop(operation_id, None)

    def _transition(self, operation: Operation, status: OperationStatus) -> None:
        if status not in _TRANSITIONS[operation.status]:
            raise ValueError(f"Illegal operation transition {operation.status.value} -> {status.value}")
        operation.status = status
        self._save(operation)

    def _transition_quietly(self, operation: Operation, status: OperationStatus) -> None:
        try:
            self._transition(operation, status)
        except ValueError as e:
            logger.error(f"Operation {operation.id}: {e}")
        except OSError as e:
            logger.error(f"Operation {operation.id}: failed to persist status {status.value}: {e}")

    def _save_quietly(self, operation: Operation) -> None:
        try:
            self._save(operation)
        except OSError as e:
            logger.error(f"Operation {operation.id}: failed to persist step log: {e}")

    def _save(self, operation: Operation) -> None:
        if self.storage_dir is None:
            return
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        path = self.storage_dir / f"{operation.id}.json"
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(operation.to_dict(), indent=2, default=str), encoding="utf-8")
        tmp.replace(path)

    def _load(self, operation_id: str) -> Optional[Operation]:
        path = self.storage_dir / f"{operation_id}.json"
        if not path.exists():
            return None
        try:
            return Operation.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (ValueError, KeyError, OSError) as e:
            logger.warning(f"Failed to load operation {operation_id}: {e}")
            return None
