# creatorengine/core/execution/code_executor.py
"""
Code Execution Sandbox

Runs model-generated Python after it passes the syntax check and the
Forbidden-Surface Validator. Execution happens under:
- a restricted builtins table with an import hook limited to the allowed modules
- injected capability functions as the only route to the content store
- a per-run ``print`` bound to its own buffer, so printed text comes back
  as ``output`` without touching ``sys.stdout``
- warning capture, turning warnings into structured diagnostics
- a wall-clock deadline enforced by a trace function

Warning capture swaps process-wide state, so runs take ``_RUN_LOCK`` for
the duration of the generated code.

The sandbox never rolls anything back; callers wrap it in snapshots.
"""

import ast
import builtins
import functools
import io
import json
import logging
import sys
import threading
import time
import traceback
import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from creatorengine.config.settings import EngineConfig
from creatorengine.core.exceptions import CodeTimeoutError, ErrorCode
from creatorengine.core.execution.code_validator import (
    ForbiddenSurfaceValidator,
    check_syntax,
    strip_code_fences,
)

logger = logging.getLogger(__name__)

FILENAME = "<generated>"

_RUN_LOCK = threading.Lock()

SAFE_BUILTINS = (
    "abs", "all", "any", "bin", "bool", "callable", "chr", "dict", "divmod",
    "enumerate", "filter", "float", "format", "frozenset", "hash", "hex", "int",
    "isinstance", "issubclass", "iter", "len", "list", "map", "max", "min",
    "next", "oct", "ord", "pow", "print", "range", "repr", "reversed", "round",
    "set", "slice", "sorted", "str", "sum", "tuple", "zip",
    "ArithmeticError", "AssertionError", "AttributeError", "Exception",
    "IndexError", "KeyError", "LookupError", "NameError", "NotImplementedError",
    "RuntimeError", "StopIteration", "TypeError", "ValueError", "ZeroDivisionError",
    "True", "False", "None",
)


@dataclass
class ExecutionResult:
    success: bool
    output: str = ""
    return_value: Any = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    code: Optional[ErrorCode] = None
    symbol: Optional[str] = None
    duration_ms: float = 0.0
    snapshot_id: Optional[str] = None
    operation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "success": self.success,
            "output": self.output,
            "return_value": _jsonable(self.return_value),
            "errors": self.errors,
        }
        if self.error is not None:
            result["error"] = self.error
        if self.code is not None:
            result["code"] = self.code.value
        if self.symbol is not None:
            result["symbol"] = self.symbol
        if self.snapshot_id is not None:
            result["snapshot_id"] = self.snapshot_id
        if self.operation_id is not None:
            result["operation_id"] = self.operation_id
        return result


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return repr(value)


def _generated_line(tb) -> Optional[int]:
    """Line number of the innermost frame that belongs to the generated code."""
    line = None
    for frame in traceback.extract_tb(tb):
        if frame.filename == FILENAME:
            line = frame.lineno
    return line


class CodeExecutor:

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.validator = ForbiddenSurfaceValidator(
            self.config.forbidden_symbols, self.config.allowed_modules
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def validate(self, source: str):
        """Syntax check then deny-list scan. Returns the failing ValidationResult or the passing one."""
        checked = check_syntax(source, FILENAME)
        if not checked.valid:
            return checked
        return self.validator.validate(checked.tree)

    def execute(
        self,
        source: str,
        functions: Optional[Dict[str, Callable[..., Any]]] = None,
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        source = strip_code_fences(source)
        checked = self.validate(source)
        if not checked.valid:
            return ExecutionResult(
                success=False,
                error=checked.error,
                code=checked.code,
                symbol=checked.symbol,
                errors=[{"type": "validation", "message": checked.error, "line": checked.line}],
            )
        timeout = self.config.code_timeout_seconds if timeout is None else timeout
        return self._run(checked.tree, functions or {}, timeout)

    def execute_with_timeout(self, source: str, timeout: float = 30,
                             functions: Optional[Dict[str, Callable[..., Any]]] = None) -> ExecutionResult:
        return self.execute(source, functions=functions, timeout=timeout)

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def _run(self, tree: ast.Module, functions: Dict[str, Callable[..., Any]], timeout: float) -> ExecutionResult:
        body, last_expr = self._split_last_expression(tree)
        buffer = io.StringIO()
        namespace = self._namespace(functions, buffer)
        diagnostics: List[Dict[str, Any]] = []
        result = ExecutionResult(success=True)

        with _RUN_LOCK:
            started = time.monotonic()
            self._exec(body, last_expr, namespace, timeout, started, result, diagnostics)

        result.output = buffer.getvalue()
        result.errors = diagnostics
        result.duration_ms = round((time.monotonic() - started) * 1000, 3)
        return result

    def _exec(self, body, last_expr, namespace, timeout, started, result, diagnostics) -> None:
        deadline = started + timeout

        def tracer(frame, event, arg):
            if time.monotonic() > deadline:
                raise CodeTimeoutError(timeout)
            return tracer

        previous_tracer = sys.gettrace()
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                sys.settrace(tracer)
                try:
                    exec(compile(body, FILENAME, "exec"), namespace)
                    if last_expr is not None:
                        result.return_value = eval(compile(last_expr, FILENAME, "eval"), namespace)
                finally:
                    sys.settrace(previous_tracer)
            except CodeTimeoutError as e:
                logger.warning(f"Generated code timed out after {timeout}s")
                result.success = False
                result.error = str(e)
                result.code = ErrorCode.TIMEOUT
                diagnostics.append({"type": "timeout", "message": str(e), "line": _generated_line(e.__traceback__)})
            except Exception as e:
                logger.info(f"Generated code raised {e.__class__.__name__}: {e}")
                result.success = False
                result.error = f"{e.__class__.__name__}: {e}"
                result.code = ErrorCode.EXECUTION_ERROR
                diagnostics.append({
                    "type": "error",
                    "exception": e.__class__.__name__,
                    "message": str(e),
                    "line": _generated_line(e.__traceback__),
                })

            for w in caught:
                diagnostics.append({
                    "type": "warning",
                    "category": w.category.__name__,
                    "message": str(w.message),
                    "line": w.lineno if w.filename == FILENAME else None,
                })

    @staticmethod
    def _split_last_expression(tree: ast.Module):
        """Separates a trailing expression statement so its value can be returned."""
        statements = list(tree.body)
        last_expr = None
        if statements and isinstance(statements[-1], ast.Expr):
            last_expr = ast.Expression(body=statements.pop().value)
            ast.fix_missing_locations(last_expr)
        body = ast.Module(body=statements, type_ignores=[])
        ast.fix_missing_locations(body)
        return body, last_expr

    def _namespace(self, functions: Dict[str, Callable[..., Any]], buffer: io.StringIO) -> Dict[str, Any]:
        safe = {name: getattr(builtins, name) for name in SAFE_BUILTINS}
        safe["print"] = functools.partial(builtins.print, file=buffer)
        safe["__import__"] = self._guarded_import
        safe["__build_class__"] = builtins.__build_class__
        namespace: Dict[str, Any] = {"__builtins__": safe, "__name__": "__generated__"}
        namespace.update(functions)
        return namespace

    def _guarded_import(self, name, globals=None, locals=None, fromlist=(), level=0):
        if level or name.split(".")[0] not in self.config.allowed_modules:
            raise ImportError(f"Import of {name} is not allowed")
        return builtins.__import__(name, globals, locals, fromlist, level)
