"""
Permission Gate

Authorizes an action type for a caller before anything executes. The
action-type to capability table is static; whether a caller holds a
capability is answered by a CapabilityLookup collaborator.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from creatorengine.core.actions import ActionType, Caller

logger = logging.getLogger(__name__)


ACTION_CAPABILITIES: Mapping[ActionType, str] = {
    ActionType.CREATE_POST: "edit_posts",
    ActionType.CREATE_PAGE: "edit_pages",
    ActionType.UPDATE_POST: "edit_posts",
    ActionType.UPDATE_PAGE: "edit_pages",
    ActionType.DELETE_POST: "delete_posts",
    ActionType.UPDATE_META: "edit_posts",
    ActionType.DELETE_META: "edit_posts",
    ActionType.UPDATE_OPTION: "manage_options",
    ActionType.DELETE_OPTION: "manage_options",
    ActionType.ADD_ELEMENTOR_WIDGET: "edit_pages",
    ActionType.UPDATE_ELEMENTOR: "edit_pages",
    ActionType.WRITE_FILE: "manage_files",
    ActionType.DELETE_FILE: "manage_files",
    ActionType.EXECUTE_CODE: "manage_options",
}

# WordPress default roles, reduced to the capabilities above. manage_files
# is not a core WordPress capability; only administrators get it.
DEFAULT_ROLE_CAPABILITIES: Dict[str, FrozenSet[str]] = {
    "administrator": frozenset({
        "edit_posts", "edit_pages", "delete_posts", "manage_options", "manage_files",
    }),
    "editor": frozenset({"edit_posts", "edit_pages", "delete_posts"}),
    "author": frozenset({"edit_posts", "delete_posts"}),
    "contributor": frozenset({"edit_posts"}),
    "subscriber": frozenset(),
}


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: Optional[str] = None
    capability: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


class CapabilityLookup(ABC):
    """Answers whether a caller holds a named capability."""

    @abstractmethod
    def has_capability(self, caller: Caller, capability: str) -> bool:
        pass


class RoleCapabilityLookup(CapabilityLookup):
    """
    Resolves capabilities from the caller's roles plus any capabilities
    granted to the caller directly.
    """

    def __init__(self, role_capabilities: Optional[Mapping[str, Iterable[str]]] = None):
        source = role_capabilities if role_capabilities is not None else DEFAULT_ROLE_CAPABILITIES
        self.role_capabilities = {role: frozenset(caps) for role, caps in source.items()}

    def has_capability(self, caller: Caller, capability: str) -> bool:
        if capability in caller.capabilities:
            return True
        return any(capability in self.role_capabilities.get(role, ()) for role in caller.roles)


class CapabilityChecker:
    """
    Pure permission check: no side effects, never raises.

    Denies when the action type is unknown to the capability table, when it
    is outside the configured allow-list, or when the caller lacks the
    required capability.
    """

    def __init__(
        self,
        lookup: Optional[CapabilityLookup] = None,
        allowed_action_types: Optional[Iterable[str]] = None,
    ):
        self.lookup = lookup or RoleCapabilityLookup()
        self.allowed_action_types = frozenset(allowed_action_types or ())

    def required_capability(self, action_type: str) -> Optional[str]:
        member = ActionType.lookup(action_type)
        return ACTION_CAPABILITIES.get(member) if member else None

    def check(self, action_type: str, caller: Caller) -> PermissionDecision:
        capability = self.required_capability(action_type)
        if capability is None:
            return PermissionDecision(False, f"Unknown action type: {action_type}")

        if self.allowed_action_types and action_type not in self.allowed_action_types:
            return PermissionDecision(
                False, f"Action type {action_type} is disabled by configuration", capability
            )

        try:
            allowed = self.lookup.has_capability(caller, capability)
        except Exception as e:
            logger.error(f"Capability lookup failed for {caller.user_id}: {e}")
            allowed = False

        if not allowed:
            return PermissionDecision(
                False,
                f"User {caller.user_id or 'anonymous'} lacks capability '{capability}' for {action_type}",
                capability,
            )
        return PermissionDecision(True, capability=capability)
