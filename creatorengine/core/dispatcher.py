# creatorengine/core/dispatcher.py
"""
Action Dispatcher

Static lookup from action type to its registered handler. Unknown types
and missing params are rejected without touching the content store.
Exceptions raised by handlers propagate to the caller's boundary.
"""

import logging
from typing import Any, Callable, Mapping, Optional, Tuple

from creatorengine.core.actions import ActionResult, Caller
from creatorengine.core.exceptions import ErrorCode
from creatorengine.core.handlers.base import HandlerContext, missing_params
from creatorengine.core.handlers.registry import ActionRegistry
from creatorengine.stores.base import ContentStore

logger = logging.getLogger(__name__)


class ActionDispatcher:

    def __init__(self, registry: ActionRegistry, store: ContentStore):
        self.registry = registry
        self.store = store

    def validate(self, action_type: str, params: Mapping[str, Any]) -> Optional[ActionResult]:
        """
        Pre-effect checks shared by execute() and the executor.

        Returns:
            A failed ActionResult, or None when the action may run
        """
        registration = self.registry.get(action_type)
        if registration is None:
            return ActionResult.fail(f"Unknown action type: {action_type}", ErrorCode.UNKNOWN_ACTION_TYPE)

        missing = missing_params(params, registration.required_params)
        if missing:
            return ActionResult.fail(
                f"Missing required parameter(s) for {registration.action_type.value}: {', '.join(missing)}",
                ErrorCode.PARAMETER_ERROR,
            )
        return None

    def resolve_target(self, action_type: str, params: Mapping[str, Any]) -> Tuple[Optional[str], Optional[ActionResult]]:
        """Derives the target id an action will touch. Create actions have none yet."""
        registration = self.registry.get(action_type)
        try:
            return registration.target_for(params), None
        except (KeyError, TypeError, ValueError) as e:
            return None, ActionResult.fail(f"Invalid target parameters: {e}", ErrorCode.PARAMETER_ERROR)

    def execute(
        self,
        action_type: str,
        params: Mapping[str, Any],
        add_step: Optional[Callable[..., None]] = None,
        caller: Optional[Caller] = None,
    ) -> ActionResult:
        error = self.validate(action_type, params)
        if error is not None:
            return error

        registration = self.registry.get(action_type)
        ctx = HandlerContext(store=self.store, caller=caller or Caller())
        if add_step is not None:
            ctx.add_step = add_step

        logger.info(f"Dispatching {registration.action_type.value} with params: {dict(params)}")
        return registration.handler(params, ctx)
