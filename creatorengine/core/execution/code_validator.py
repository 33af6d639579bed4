"""
Syntax check and Forbidden-Surface Validator for generated code.

Both run on the parsed AST before a single line executes. The validator
rejects:
- calls to or references of denied symbols (``eval``, ``os.system``, ...),
  with import aliases resolved
- imports outside the allowed module list, and relative imports
- private attribute access (``_os``, ``__class__``, ``__globals__``, ...)
- attribute chains on an allowed module that reach a module outside the
  allow-list (``uuid.os``, ``warnings.sys``). Denied symbols are matched
  against the module they actually resolve to, so ``uuid.os.system``
  counts as ``os.system``
- handlers that catch BaseException, which could absorb the timeout
- SQL passed to execute()/executemany()/executescript() built by
  interpolation instead of bound parameters
"""

import ast
import importlib
import logging
import re
import types
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional

from creatorengine.core.exceptions import ErrorCode

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_+-]*\s*\n(.*?)\n\s*```\s*$", re.DOTALL)

QUERY_METHODS = {"execute", "executemany", "executescript"}
UNPARAMETERIZED_QUERY = "unparameterized_query"

# Attribute names that are only ever useful for leaving the sandbox.
UNSAFE_MODULE_ATTRS = frozenset({
    "os", "sys", "subprocess", "builtins", "importlib", "shutil", "socket",
    "ctypes", "pty", "posix", "nt", "io", "inspect", "gc",
})


@dataclass
class ValidationResult:
    valid: bool
    code: Optional[ErrorCode] = None
    error: Optional[str] = None
    symbol: Optional[str] = None
    line: Optional[int] = None
    tree: Optional[ast.Module] = None

    def to_dict(self):
        return {
            "valid": self.valid,
            "code": self.code.value if self.code else None,
            "error": self.error,
            "symbol": self.symbol,
            "line": self.line,
        }


def strip_code_fences(source: str) -> str:
    """Removes a surrounding markdown code fence, if the model added one."""
    match = _FENCE_RE.match(source or "")
    return match.group(1) if match else (source or "")


def check_syntax(source: str, filename: str = "<generated>") -> ValidationResult:
    try:
        tree = ast.parse(source, filename=filename)
    except SyntaxError as e:
        return ValidationResult(
            valid=False,
            code=ErrorCode.SYNTAX_ERROR,
            error=f"Syntax error on line {e.lineno}: {e.msg}",
            line=e.lineno,
        )
    return ValidationResult(valid=True, tree=tree)


class _Violation(Exception):

    def __init__(self, symbol: str, node: ast.AST, reason: str):
        super().__init__(reason)
        self.symbol = symbol
        self.line = getattr(node, "lineno", None)


class ForbiddenSurfaceValidator(ast.NodeVisitor):

    def __init__(self, forbidden_symbols: Iterable[str], allowed_modules: Iterable[str]):
        self.forbidden: FrozenSet[str] = frozenset(forbidden_symbols)
        self.allowed_modules: FrozenSet[str] = frozenset(allowed_modules)
        self.unsafe_attrs: FrozenSet[str] = UNSAFE_MODULE_ATTRS | frozenset(
            symbol.split(".")[0] for symbol in self.forbidden if "." in symbol
        )
        self._aliases: Dict[str, str] = {}
        self._disallowed_imports: List[_Violation] = []

    def validate(self, source_or_tree) -> ValidationResult:
        if isinstance(source_or_tree, ast.AST):
            tree = source_or_tree
        else:
            checked = check_syntax(source_or_tree)
            if not checked.valid:
                return checked
            tree = checked.tree

        self._aliases = {}
        self._disallowed_imports = []
        try:
            self.visit(tree)
            # Denied symbols are reported ahead of the import that reached them.
            if self._disallowed_imports:
                raise self._disallowed_imports[0]
        except _Violation as v:
            logger.warning(f"Generated code rejected: {v.symbol} (line {v.line})")
            return ValidationResult(
                valid=False,
                code=ErrorCode.FORBIDDEN_FUNCTION_DETECTED,
                error=f"Forbidden function detected: {v.symbol} ({v})",
                symbol=v.symbol,
                line=v.line,
            )
        return ValidationResult(valid=True, tree=tree)

    # ------------------------------------------------------------------ #
    # Imports
    # ------------------------------------------------------------------ #

    def visit_Import(self, node: ast.Import):
        for alias in node.names:
            if alias.name in self.forbidden:
                raise _Violation(alias.name, node, "denied module")
            self._check_module(alias.name, node)
            self._aliases[alias.asname or alias.name.split(".")[0]] = (
                alias.name if alias.asname else alias.name.split(".")[0]
            )
        self.generic_visit(node)

    def visit_ImportFrom(self, node: ast.ImportFrom):
        if node.level:
            raise _Violation("relative import", node, "relative imports are not available")
        module = node.module or ""
        for alias in node.names:
            full = f"{module}.{alias.name}"
            if alias.name.startswith("_"):
                raise _Violation(full, node, "private name imported")
            canonical, escaped = self._resolve(full)
            denied = self._denied(full) or self._denied(canonical)
            if denied or alias.name in self.forbidden:
                raise _Violation(denied or full, node, "denied symbol imported")
            if escaped:
                raise _Violation(escaped, node, f"reaches module {canonical} outside the allow-list")
            self._aliases[alias.asname or alias.name] = canonical
        self._check_module(module, node)
        self.generic_visit(node)

    def _check_module(self, module: str, node: ast.AST) -> None:
        if module.split(".")[0] not in self.allowed_modules:
            self._disallowed_imports.append(
                _Violation(f"import {module}", node, "module is not on the allow-list")
            )

    # ------------------------------------------------------------------ #
    # Names, attributes, calls
    # ------------------------------------------------------------------ #

    def visit_Name(self, node: ast.Name):
        resolved = self._aliases.get(node.id, node.id)
        if node.id in self.forbidden or resolved in self.forbidden:
            raise _Violation(resolved, node, "denied symbol")

    def visit_Attribute(self, node: ast.Attribute):
        if node.attr.startswith("_"):
            raise _Violation(node.attr, node, "private attribute access")
        dotted = self._dotted(node)
        if dotted:
            canonical, escaped = self._resolve(dotted)
            denied = self._denied(dotted) or self._denied(canonical)
            if denied:
                raise _Violation(denied, node, "denied symbol")
            if escaped:
                raise _Violation(escaped, node, "reaches a module outside the allow-list")
        if node.attr in self.unsafe_attrs:
            raise _Violation(dotted or node.attr, node, "module attribute outside the allow-list")
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call):
        func = node.func
        if isinstance(func, ast.Attribute) and func.attr in QUERY_METHODS and node.args:
            if self._is_interpolated(node.args[0]):
                raise _Violation(UNPARAMETERIZED_QUERY, node, f"{func.attr}() with interpolated SQL")
        self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler):
        if node.type is None:
            raise _Violation("bare except", node, "handler would catch the execution timeout")
        names = node.type.elts if isinstance(node.type, ast.Tuple) else [node.type]
        for name in names:
            if isinstance(name, ast.Name) and name.id == "BaseException":
                raise _Violation("except BaseException", node, "handler would catch the execution timeout")
        self.generic_visit(node)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _dotted(self, node: ast.AST) -> Optional[str]:
        parts = []
        while isinstance(node, ast.Attribute):
            parts.append(node.attr)
            node = node.value
        if not isinstance(node, ast.Name):
            return None
        parts.append(self._aliases.get(node.id, node.id))
        return ".".join(reversed(parts))

    def _denied(self, dotted: str) -> Optional[str]:
        """The denied symbol ``dotted`` names, also when it ends a longer chain."""
        if dotted in self.forbidden:
            return dotted
        parts = dotted.split(".")
        for i in range(1, len(parts) - 1):
            tail = ".".join(parts[i:])
            if tail in self.forbidden:
                return tail
        return None

    def _resolve(self, dotted: str):
        """
        Walks a dotted name rooted at an allowed module through the real objects.

        Returns ``(canonical, escaped)``. ``canonical`` renames every module
        on the way to its real name, so ``uuid.os.system`` becomes
        ``os.system``. ``escaped`` is the prefix of ``dotted`` that lands on
        a module outside the allow-list, or None.
        """
        parts = dotted.split(".")
        if parts[0] not in self.allowed_modules:
            return dotted, None
        try:
            obj = importlib.import_module(parts[0])
        except ImportError:
            return dotted, None

        canonical = parts[0]
        for i, part in enumerate(parts[1:], start=1):
            obj = getattr(obj, part, None)
            if obj is None:
                return ".".join([canonical] + parts[i:]), None
            if isinstance(obj, types.ModuleType):
                canonical = obj.__name__
                if canonical.split(".")[0] not in self.allowed_modules:
                    return ".".join([canonical] + parts[i + 1:]), ".".join(parts[:i + 1])
            else:
                canonical = f"{canonical}.{part}"
        return canonical, None

    @staticmethod
    def _is_interpolated(arg: ast.AST) -> bool:
        if isinstance(arg, ast.JoinedStr):
            return any(isinstance(v, ast.FormattedValue) for v in arg.values)
        if isinstance(arg, ast.BinOp) and isinstance(arg.op, (ast.Add, ast.Mod)):
            return True
        if isinstance(arg, ast.Call) and isinstance(arg.func, ast.Attribute):
            return arg.func.attr == "format"
        return False
