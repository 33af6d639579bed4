# creatorengine/core/delta_backup.py
"""
State Capture (Delta Backup)

Each action type registers one Capturer that reads the affected record
before the handler runs and again after it returns. Create actions have
no before-state; delete actions report a ``deleted`` marker afterwards
unless the record survived (trash).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from creatorengine.core.actions import ActionResult
from creatorengine.stores.base import ContentStore

logger = logging.getLogger(__name__)

State = Optional[Dict[str, Any]]


@dataclass
class Delta:
    """The recorded before/after pair for one effect."""
    type: str
    target: Optional[str]
    before: State
    after: State
    status: str = "completed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "target": self.target,
            "before": self.before,
            "after": self.after,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Delta":
        return cls(
            type=data.get("type", ""),
            target=data.get("target"),
            before=data.get("before"),
            after=data.get("after"),
            status=data.get("status", "completed"),
        )


def deleted_marker(target: str) -> Dict[str, Any]:
    return {"deleted": True, "target": target}


def is_deleted(state: State) -> bool:
    return state is None or bool(state.get("deleted"))


# ------------------------------------------------------------------ #
# Capturers
# ------------------------------------------------------------------ #

class Capturer(ABC):
    """Before/after state reader for one action type."""

    @abstractmethod
    def capture_before(self, store: ContentStore, target: Optional[str], params: Mapping[str, Any]) -> State:
        pass

    @abstractmethod
    def capture_after(
        self,
        store: ContentStore,
        target: Optional[str],
        params: Mapping[str, Any],
        result: ActionResult,
    ) -> State:
        pass


class CreateCapturer(Capturer):
    """The target does not exist yet; only the created record is meaningful."""

    def capture_before(self, store, target, params):
        return None

    def capture_after(self, store, target, params, result):
        created = (result.data or {}).get("target") or target
        return store.read(created) if created else None


class RecordCapturer(Capturer):
    """Reads the full record on both sides of an in-place update."""

    def capture_before(self, store, target, params):
        return store.read(target)

    def capture_after(self, store, target, params, result):
        return store.read(target)


class DeleteCapturer(RecordCapturer):

    def capture_after(self, store, target, params, result):
        # A trashed post is still readable; report what is left of it.
        remaining = store.read(target)
        return remaining if remaining is not None else deleted_marker(target)


# ------------------------------------------------------------------ #
# Delta backup
# ------------------------------------------------------------------ #

class DeltaBackup:
    """
    Resolves the registered Capturer for an action type and runs it
    against the content store.
    """

    def __init__(self, store: ContentStore, registry):
        self.store = store
        self.registry = registry

    def capture_before(self, action_type: str, params: Mapping[str, Any], target: Optional[str] = None) -> State:
        registration = self.registry.get(action_type)
        state = registration.capturer.capture_before(self.store, target, params)
        logger.debug(f"Captured before-state for {action_type} on {target}: {state is not None}")
        return state

    def capture_after(
        self,
        action_type: str,
        params: Mapping[str, Any],
        result: ActionResult,
        target: Optional[str] = None,
    ) -> State:
        registration = self.registry.get(action_type)
        return registration.capturer.capture_after(self.store, target, params, result)

    @staticmethod
    def format_operation(type: str, target: Optional[str], before: State, after: State,
                         status: str = "completed") -> Delta:
        return Delta(type=type, target=target, before=before, after=after, status=status)
