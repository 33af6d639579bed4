"""
Handler Registry

Every dispatchable action type is registered once with its handler, its
Capturer, the params it requires and the function that derives its target
id from those params. Incomplete registrations are refused here, so no
action type can reach the dispatcher without a capture pair.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Sequence, Tuple, Union

from creatorengine.core.actions import ActionType, EffectKind
from creatorengine.core.delta_backup import Capturer
from creatorengine.core.exceptions import RegistrationError
from creatorengine.core.handlers.base import Handler, TargetResolver, no_target

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionRegistration:
    action_type: ActionType
    handler: Handler
    capturer: Capturer
    effect: EffectKind
    required_params: Tuple[str, ...] = ()
    target_for: TargetResolver = no_target


class ActionRegistry:
    """Static action-type -> registration table."""

    def __init__(self):
        self._entries: Dict[ActionType, ActionRegistration] = {}

    def register(
        self,
        action_type: ActionType,
        handler: Handler,
        capturer: Capturer,
        effect: EffectKind,
        required_params: Sequence[str] = (),
        target_for: TargetResolver = no_target,
    ) -> ActionRegistration:
        """
        Register an action type.

        Raises:
            RegistrationError: If the type is already registered, is the
                sandbox-only type, or the handler/capturer/target resolver
                is missing
        """
        if not isinstance(action_type, ActionType):
            raise RegistrationError(f"Not an action type: {action_type!r}")
        if action_type is ActionType.EXECUTE_CODE:
            raise RegistrationError("execute_code runs in the sandbox and cannot be dispatched")
        if action_type in self._entries:
            raise RegistrationError(f"Action type {action_type.value} is already registered")
        if not callable(handler):
            raise RegistrationError(f"Handler for {action_type.value} is not callable")
        if not isinstance(capturer, Capturer):
            raise RegistrationError(
                f"Action type {action_type.value} needs a Capturer with capture_before and capture_after"
            )
        if effect is not EffectKind.CREATE and target_for is no_target:
            raise RegistrationError(f"Action type {action_type.value} must resolve its target from params")

        registration = ActionRegistration(
            action_type=action_type,
            handler=handler,
            capturer=capturer,
            effect=effect,
            required_params=tuple(required_params),
            target_for=target_for,
        )
        self._entries[action_type] = registration
        logger.debug(f"Registered action type {action_type.value}")
        return registration

    def get(self, action_type: Union[str, ActionType]) -> Optional[ActionRegistration]:
        if not isinstance(action_type, ActionType):
            action_type = ActionType.lookup(action_type)
        return self._entries.get(action_type) if action_type else None

    def __contains__(self, action_type: Union[str, ActionType]) -> bool:
        return self.get(action_type) is not None

    def __iter__(self) -> Iterator[ActionRegistration]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)
