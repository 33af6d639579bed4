# creatorengine/core/actions.py
"""
Action data model.

Holds the fixed action vocabulary, the immutable Action instruction, the
execution context handed in by callers and the ActionResult shape shared
by handlers and the public executor.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from creatorengine.core.exceptions import ErrorCode


class ActionType(Enum):
    # Content entities
    CREATE_POST = "create_post"
    CREATE_PAGE = "create_page"
    UPDATE_POST = "update_post"
    UPDATE_PAGE = "update_page"
    DELETE_POST = "delete_post"

    # Metadata / configuration values
    UPDATE_META = "update_meta"
    DELETE_META = "delete_meta"
    UPDATE_OPTION = "update_option"
    DELETE_OPTION = "delete_option"

    # Page builder
    ADD_ELEMENTOR_WIDGET = "add_elementor_widget"
    UPDATE_ELEMENTOR = "update_elementor"

    # Site files
    WRITE_FILE = "write_file"
    DELETE_FILE = "delete_file"

    # Generated code (sandbox path, never dispatched)
    EXECUTE_CODE = "execute_code"

    @classmethod
    def lookup(cls, raw_type: Any) -> Optional["ActionType"]:
        """Returns the enum member for a type key, or None when it is not in the vocabulary."""
        if not isinstance(raw_type, str):
            return None
        try:
            return cls(raw_type.strip().lower())
        except ValueError:
            return None


class EffectKind(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Action:
    """
    A typed, parameterized instruction requesting a single effect.

    Immutable once constructed: params are frozen into a read-only mapping.
    """
    type: str
    params: Mapping[str, Any] = field(default_factory=dict)
    target: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "params", MappingProxyType(dict(self.params or {})))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        params = data.get("params", {}) or {}
        return cls(
            type=str(data.get("type", "") or ""),
            params=params,
            target=data.get("target") or params.get("target"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "params": dict(self.params), "target": self.target}


@dataclass(frozen=True)
class Caller:
    """The identity on whose behalf an action runs."""
    user_id: Optional[str] = None
    roles: Tuple[str, ...] = ()
    capabilities: FrozenSet[str] = frozenset()


@dataclass
class ActionContext:
    context_id: Optional[str] = None
    message_id: Optional[str] = None
    caller: Caller = field(default_factory=Caller)
    # Target ids whose full records are snapshotted around generated code.
    targets: List[str] = field(default_factory=list)


@dataclass
class ActionResult:
    success: bool
    data: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None
    operation_id: Optional[str] = None
    snapshot_id: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None, message: Optional[str] = None) -> "ActionResult":
        return cls(success=True, data=data or {}, message=message)

    @classmethod
    def fail(cls, error: str, code: ErrorCode = ErrorCode.EXECUTION_ERROR, **extra: Any) -> "ActionResult":
        return cls(success=False, error=error, code=code, **extra)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.operation_id is not None:
            result["operation_id"] = self.operation_id
        if self.snapshot_id is not None:
            result["snapshot_id"] = self.snapshot_id
        if self.data is not None:
            result["data"] = self.data
        if self.message is not None:
            result["message"] = self.message
        if self.error is not None:
            result["error"] = self.error
        if self.code is not None:
            result["code"] = self.code.value
        return result
