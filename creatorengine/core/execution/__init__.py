from creatorengine.core.execution.code_executor import CodeExecutor, ExecutionResult
from creatorengine.core.execution.code_validator import (
    ForbiddenSurfaceValidator,
    ValidationResult,
    check_syntax,
    strip_code_fences,
)
from creatorengine.core.execution.sandbox_functions import SandboxFunctions

__all__ = [
    "CodeExecutor",
    "ExecutionResult",
    "ForbiddenSurfaceValidator",
    "SandboxFunctions",
    "ValidationResult",
    "check_syntax",
    "strip_code_fences",
]
