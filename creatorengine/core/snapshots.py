# creatorengine/core/snapshots.py
"""
Snapshot Manager

Persists the Delta list of a completed operation together with the
instructions that reverse it, one JSON document per snapshot under
``<storage_dir>/snapshots/``. Retention runs on every creation:

1. snapshots older than the retention window are soft-deleted
2. the oldest live snapshots are soft-deleted while the total size is over budget
3. soft-deleted snapshots past the purge grace period are removed from disk
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from creatorengine.core.audit import AuditLogger
from creatorengine.core.delta_backup import Delta, is_deleted
from creatorengine.core.tracker import utc_now
from creatorengine.utils.targets import FILE, META, OPTION, parse_target

logger = logging.getLogger(__name__)


class SnapshotKind(Enum):
    DELTA = "DELTA"
    FULL = "FULL"


@dataclass
class Snapshot:
    id: str
    context_id: Optional[str]
    message_id: Optional[str]
    operation_id: Optional[str]
    kind: SnapshotKind = SnapshotKind.DELTA
    operations: List[Delta] = field(default_factory=list)
    rollback_instructions: List[Dict[str, Any]] = field(default_factory=list)
    storage_ref: Optional[str] = None
    size_bytes: int = 0
    deleted: bool = False
    deleted_at: Optional[str] = None
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "context_id": self.context_id,
            "message_id": self.message_id,
            "operation_id": self.operation_id,
            "kind": self.kind.value,
            "operations": [d.to_dict() for d in self.operations],
            "rollback_instructions": self.rollback_instructions,
            "storage_ref": self.storage_ref,
            "size_bytes": self.size_bytes,
            "deleted": self.deleted,
            "deleted_at": self.deleted_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            id=data["id"],
            context_id=data.get("context_id"),
            message_id=data.get("message_id"),
            operation_id=data.get("operation_id"),
            kind=SnapshotKind(data.get("kind", "DELTA")),
            operations=[Delta.from_dict(d) for d in data.get("operations", [])],
            rollback_instructions=list(data.get("rollback_instructions", [])),
            storage_ref=data.get("storage_ref"),
            size_bytes=int(data.get("size_bytes", 0)),
            deleted=bool(data.get("deleted", False)),
            deleted_at=data.get("deleted_at"),
            created_at=data.get("created_at", ""),
        )


# ------------------------------------------------------------------ #
# Inversion
# ------------------------------------------------------------------ #

def record_kind(target: str, state: Optional[Dict[str, Any]]) -> str:
    ref = parse_target(target)
    if ref.kind in (META, OPTION, FILE):
        return ref.kind
    return (state or {}).get("type") or "post"


def invert_delta(delta: Delta) -> Optional[Dict[str, Any]]:
    """
    Derives the instruction that restores a Delta's before-state.

    Returns None when neither side holds a record (nothing to undo).
    """
    if not delta.target:
        return None
    before, after = delta.before, delta.after

    if before is None:
        if is_deleted(after):
            return None
        return {"op": "delete", "target": delta.target, "kind": record_kind(delta.target, after), "fields": None}

    kind = record_kind(delta.target, before)
    if is_deleted(after):
        return {"op": "create", "target": delta.target, "kind": kind, "fields": before}
    return {"op": "update", "target": delta.target, "kind": kind, "fields": before}


def build_rollback_instructions(deltas: List[Delta]) -> List[Dict[str, Any]]:
    instructions = []
    for delta in reversed(deltas):
        instruction = invert_delta(delta)
        if instruction is not None:
            instructions.append(instruction)
    return instructions


# ------------------------------------------------------------------ #
# Manager
# ------------------------------------------------------------------ #

class SnapshotManager:

    def __init__(
        self,
        storage_dir: Optional[Path] = None,
        retention_days: int = 30,
        max_size_bytes: int = 500 * 1024 * 1024,
        purge_grace_days: int = 7,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage_dir = Path(storage_dir) / "snapshots" if storage_dir else None
        self.retention_days = retention_days
        self.max_size_bytes = max_size_bytes
        self.purge_grace_days = purge_grace_days
        self.audit = audit or AuditLogger()
        self.clock = clock

        self._snapshots: Dict[str, Snapshot] = {}
        self._loaded = False
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config, audit: Optional[AuditLogger] = None, clock: Callable[[], datetime] = utc_now):
        return cls(
            storage_dir=config.storage_dir,
            retention_days=config.snapshot_retention_days,
            max_size_bytes=config.snapshot_max_size_bytes,
            purge_grace_days=config.snapshot_purge_grace_days,
            audit=audit,
            clock=clock,
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def create_snapshot(
        self,
        context_id: Optional[str],
        message_id: Optional[str],
        operation_id: Optional[str],
        deltas: List[Delta],
        kind: SnapshotKind = SnapshotKind.DELTA,
    ) -> str:
        """
        Persist a snapshot and apply retention.

        Returns:
            The new snapshot id

        Raises:
            OSError: If the snapshot document could not be written
        """
        snapshot = Snapshot(
            id=uuid.uuid4().hex,
            context_id=context_id,
            message_id=message_id,
            operation_id=operation_id,
            kind=kind,
            operations=list(deltas),
            rollback_instructions=build_rollback_instructions(list(deltas)),
            created_at=self.clock().isoformat(),
        )
        snapshot.storage_ref = self._storage_ref(snapshot.id)
        snapshot.size_bytes = len(json.dumps(snapshot.to_dict(), default=str).encode("utf-8"))

        with self._lock:
            self._ensure_loaded()
            self._save(snapshot)
            self._snapshots[snapshot.id] = snapshot

            logger.info(
                f"Snapshot {snapshot.id} created for operation {operation_id} "
                f"({kind.value}, {len(snapshot.operations)} delta(s), {snapshot.size_bytes} bytes)"
            )
            self._apply_retention(keep=snapshot.id)
        return snapshot.id

    def get(self, snapshot_id: str) -> Optional[Snapshot]:
        """Returns the snapshot, soft-deleted or not, or None once purged."""
        with self._lock:
            self._ensure_loaded()
            return self._snapshots.get(snapshot_id)

    def exists(self, snapshot_id: str) -> bool:
        snapshot = self.get(snapshot_id)
        return snapshot is not None and not snapshot.deleted

    def list(self, context_id: Optional[str] = None, include_deleted: bool = False) -> List[Snapshot]:
        with self._lock:
            self._ensure_loaded()
            snapshots = [
                s for s in self._snapshots.values()
                if (context_id is None or s.context_id == context_id)
                and (include_deleted or not s.deleted)
            ]
        return sorted(snapshots, key=lambda s: s.created_at, reverse=True)

    def cleanup_old_snapshots(self, retention_days: Optional[int] = None) -> int:
        """Soft-delete live snapshots older than the retention window."""
        days = self.retention_days if retention_days is None else retention_days
        cutoff = self.clock() - timedelta(days=days)
        count = 0
        with self._lock:
            self._ensure_loaded()
            for snapshot in list(self._snapshots.values()):
                if not snapshot.deleted and self._created(snapshot) < cutoff:
                    self._soft_delete(snapshot, "retention")
                    count += 1
        return count

    def enforce_size_limit(self, max_size_bytes: Optional[int] = None, keep: Optional[str] = None) -> int:
        """Soft-delete the oldest live snapshots until the total size fits."""
        limit = self.max_size_bytes if max_size_bytes is None else max_size_bytes
        count = 0
        with self._lock:
            self._ensure_loaded()
            live = sorted(
                (s for s in self._snapshots.values() if not s.deleted),
                key=lambda s: s.created_at,
            )
            total = sum(s.size_bytes for s in live)
            for snapshot in live:
                if total <= limit:
                    break
                if snapshot.id == keep:
                    continue
                self._soft_delete(snapshot, "size_limit")
                total -= snapshot.size_bytes
                count += 1
        return count

    def purge_deleted(self, grace_days: Optional[int] = None) -> int:
        """Physically remove soft-deleted snapshots past the grace period."""
        days = self.purge_grace_days if grace_days is None else grace_days
        cutoff = self.clock() - timedelta(days=days)
        count = 0
        with self._lock:
            self._ensure_loaded()
            for snapshot in list(self._snapshots.values()):
                if not snapshot.deleted or not snapshot.deleted_at:
                    continue
                if datetime.fromisoformat(snapshot.deleted_at) >= cutoff:
                    continue
                self._remove(snapshot)
                count += 1
        if count:
            logger.info(f"Purged {count} soft-deleted snapshot(s)")
        return count

    def run_retention(self) -> Dict[str, int]:
        with self._lock:
            return self._apply_retention()

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _apply_retention(self, keep: Optional[str] = None) -> Dict[str, int]:
        summary = {
            "expired": self.cleanup_old_snapshots(),
            "over_size": self.enforce_size_limit(keep=keep),
            "purged": self.purge_deleted(),
        }
        if any(summary.values()):
            self.audit.info("snapshot_retention", summary)
        return summary

    def _created(self, snapshot: Snapshot) -> datetime:
        return datetime.fromisoformat(snapshot.created_at)

    def _soft_delete(self, snapshot: Snapshot, reason: str) -> None:
        snapshot.deleted = True
        snapshot.deleted_at = self.clock().isoformat()
        try:
            self._save(snapshot)
        except OSError as e:
            logger.error(f"Failed to persist soft-delete of snapshot {snapshot.id}: {e}")
        logger.info(f"Snapshot {snapshot.id} soft-deleted ({reason})")

    def _remove(self, snapshot: Snapshot) -> None:
        if self.storage_dir is not None:
            path = self.storage_dir / f"{snapshot.id}.json"
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"Failed to purge snapshot file {path}: {e}")
                return
        self._snapshots.pop(snapshot.id, None)

    def _storage_ref(self, snapshot_id: str) -> str:
        if self.storage_dir is None:
            return f"memory:{snapshot_id}"
        return str(self.storage_dir / f"{snapshot_id}.json")

    def _save(self, snapshot: Snapshot) -> None:
        if self.storage_dir is None:
            return
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        path = self.storage_dir / f"{snapshot.id}.json"
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(snapshot.to_dict(), indent=2, default=str), encoding="utf-8")
        tmp.replace(path)

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if self.storage_dir is None or not self.storage_dir.exists():
            return
        for path in self.storage_dir.glob("*.json"):
            try:
                snapshot = Snapshot.from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (ValueError, KeyError, OSError) as e:
                logger.warning(f"Skipping unreadable snapshot {path.name}: {e}")
                continue
            self._snapshots.setdefault(snapshot.id, snapshot)
