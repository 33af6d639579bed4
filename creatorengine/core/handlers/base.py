"""
Base Handler Interface

A handler is a plain function ``handler(params, ctx) -> ActionResult``.
It validates what it needs beyond the registered required params, performs
exactly one logical effect through ``ctx.store`` and reports the affected
target id in ``data["target"]``. Driver-reported failures come back as
failed results; unexpected exceptions are left to propagate.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

from creatorengine.core.actions import ActionResult, Caller
from creatorengine.core.exceptions import ErrorCode
from creatorengine.stores.base import ContentStore


@dataclass
class HandlerContext:
    """What a handler may touch: the content store and the step log."""
    store: ContentStore
    add_step: Callable[..., None] = lambda name, data=None: None
    caller: Caller = field(default_factory=Caller)


Handler = Callable[[Mapping[str, Any], HandlerContext], ActionResult]
TargetResolver = Callable[[Mapping[str, Any]], Optional[str]]


def no_target(params: Mapping[str, Any]) -> Optional[str]:
    return None


def missing_params(params: Mapping[str, Any], required: Sequence[str]) -> Tuple[str, ...]:
    """Names of required params that are absent or empty."""
    return tuple(
        name for name in required
        if name not in params or params[name] is None or params[name] == ""
    )


def not_found(what: str) -> ActionResult:
    return ActionResult.fail(f"{what} not found", ErrorCode.EXECUTION_ERROR)
