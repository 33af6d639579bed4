"""
Error Handler

Classifies exceptions and failure results into the engine taxonomy,
attaches the originating action payload, and routes the record to the
audit collaborator. It never raises.
"""

import logging
import traceback
from typing import Any, Dict, Optional, Union

from creatorengine.core.actions import Action, ActionResult
from creatorengine.core.audit import AuditLogger
from creatorengine.core.exceptions import CodeTimeoutError, EngineError, ErrorCode

logger = logging.getLogger(__name__)

# Errors caught before any side effect ran.
_PRE_EFFECT = {
    ErrorCode.PERMISSION_DENIED,
    ErrorCode.UNKNOWN_ACTION_TYPE,
    ErrorCode.PARAMETER_ERROR,
    ErrorCode.SYNTAX_ERROR,
    ErrorCode.FORBIDDEN_FUNCTION_DETECTED,
}


class ErrorHandler:

    def __init__(self, audit: Optional[AuditLogger] = None):
        self.audit = audit or AuditLogger()

    def classify(self, error: Union[BaseException, ActionResult]) -> ErrorCode:
        if isinstance(error, ActionResult):
            return error.code or ErrorCode.EXECUTION_ERROR
        if isinstance(error, EngineError):
            return error.code
        if isinstance(error, SyntaxError):
            return ErrorCode.SYNTAX_ERROR
        if isinstance(error, (TimeoutError, CodeTimeoutError)):
            return ErrorCode.TIMEOUT
        return ErrorCode.EXECUTION_ERROR

    def handle(
        self,
        error: Union[BaseException, ActionResult],
        action: Optional[Union[Action, Dict[str, Any]]] = None,
        code: Optional[ErrorCode] = None,
        **extra: Any,
    ) -> ActionResult:
        """
        Record a failure and return the structured result for the caller.

        Args:
            error: The raised exception, or a failed ActionResult
            action: The action payload that was being processed
            code: Explicit classification, overriding classify()
            extra: Extra fields copied onto the returned result (operation_id, ...)

        Returns:
            A failed ActionResult carrying the error code
        """
        try:
            code = code or self.classify(error)
            if isinstance(error, ActionResult):
                message = error.error or error.message or "Unknown error"
            else:
                message = str(error) or error.__class__.__name__

            payload: Dict[str, Any] = {
                "code": code.value,
                "error": message,
                "action": action.to_dict() if isinstance(action, Action) else action,
            }
            if isinstance(error, BaseException):
                payload["exception"] = error.__class__.__name__
                payload["trace"] = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )[-2000:]
            payload.update({k: v for k, v in extra.items() if v is not None})

            severity = "warning" if code in _PRE_EFFECT else "failure"
            self.audit.log(code.value, severity, payload)

            if isinstance(error, ActionResult):
                result = ActionResult(
                    success=False,
                    data=error.data,
                    message=error.message,
                    error=message,
                    code=code,
                )
            else:
                result = ActionResult(success=False, error=message, code=code)
            for key in ("operation_id", "snapshot_id"):
                if extra.get(key) is not None:
                    setattr(result, key, extra[key])
            return result
        except Exception as e:
            logger.exception("Error handler failed while recording an error")
            return ActionResult(success=False, error=str(e), code=code or ErrorCode.EXECUTION_ERROR)
