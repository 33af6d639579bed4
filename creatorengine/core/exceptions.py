"""
Engine error taxonomy.

Every failure the engine reports to a caller carries one ErrorCode.
The exception classes below are raised internally and converted into
structured results at the executor boundary.
"""

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    PERMISSION_DENIED = "permission_denied"
    OPERATION_ERROR = "operation_error"
    UNKNOWN_ACTION_TYPE = "unknown_action_type"
    PARAMETER_ERROR = "parameter_error"
    EXECUTION_ERROR = "execution_error"
    SYNTAX_ERROR = "syntax_error"
    FORBIDDEN_FUNCTION_DETECTED = "forbidden_function_detected"
    TIMEOUT = "timeout"
    ROLLBACK_FAILED = "rollback_failed"


class EngineError(Exception):
    """Base exception for engine-side errors (configuration, registration, locking)."""

    code: ErrorCode = ErrorCode.EXECUTION_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class RegistrationError(EngineError):
    """An action type was registered without a complete handler/capturer pair."""


class ConfigError(EngineError):
    """Configuration file missing, unreadable, or holding invalid values."""


class ContentStoreError(EngineError):
    """Raised by content-store drivers when the backing system rejects a call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, ErrorCode.EXECUTION_ERROR)
        self.status_code = status_code


class LockTimeoutError(EngineError):
    code = ErrorCode.OPERATION_ERROR

    def __init__(self, target: str, timeout: float):
        super().__init__(f"Target {target} is locked by another execution (waited {timeout}s)")
        self.target = target
        self.timeout = timeout


class CodeTimeoutError(BaseException):
    """
    Raised inside generated code when its wall-clock budget is spent.

    Derives from BaseException so that ``except Exception`` blocks in the
    generated code cannot absorb it.
    """

    def __init__(self, timeout: float):
        super().__init__(f"Code execution exceeded {timeout}s")
        self.timeout = timeout
