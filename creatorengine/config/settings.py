"""
Engine Configuration

EngineConfig is threaded explicitly through every component constructor;
nothing in the engine reads process-wide configuration state.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

DEFAULT_STORAGE_DIR = Path(os.path.expanduser("~/.creatorengine"))

DEFAULT_FORBIDDEN_SYMBOLS = frozenset({
    # Dynamic evaluation
    "eval", "exec", "compile", "__import__", "breakpoint",
    # Introspection that reaches past the sandbox namespace
    "globals", "locals", "vars", "getattr", "setattr", "delattr", "__builtins__",
    # Direct file / console access
    "open", "input",
    # Process spawning and shell execution
    "os.system", "os.popen", "os.execv", "os.execve", "os.execl", "os.spawnv",
    "os.fork", "os.kill", "os.remove", "os.unlink", "os.rmdir",
    "subprocess.run", "subprocess.call", "subprocess.Popen",
    "subprocess.check_call", "subprocess.check_output", "subprocess.getoutput",
    "pty.spawn", "shutil.rmtree", "shutil.move",
    # Network
    "socket.socket", "urllib.request.urlopen", "requests.get", "requests.post",
    # Decoding obfuscated payloads
    "base64.b64decode", "codecs.decode", "pickle.loads", "marshal.loads",
})

DEFAULT_ALLOWED_MODULES = frozenset({
    "math", "json", "re", "datetime", "decimal", "fractions", "random",
    "statistics", "string", "itertools", "functools", "collections",
    "textwrap", "html", "uuid", "warnings",
})


@dataclass(frozen=True)
class EngineConfig:
    forbidden_symbols: FrozenSet[str] = DEFAULT_FORBIDDEN_SYMBOLS
    allowed_modules: FrozenSet[str] = DEFAULT_ALLOWED_MODULES
    # Empty means every registered action type is allowed.
    allowed_action_types: FrozenSet[str] = frozenset()
    code_timeout_seconds: int = 30
    snapshot_retention_days: int = 30
    snapshot_max_size_mb: int = 500
    snapshot_purge_grace_days: int = 7
    lock_timeout_seconds: int = 30
    # None keeps operations and snapshots in memory only.
    storage_dir: Optional[Path] = field(default=DEFAULT_STORAGE_DIR)

    @property
    def snapshot_max_size_bytes(self) -> int:
        return self.snapshot_max_size_mb * 1024 * 1024

    def to_dict(self) -> Dict[str, Any]:
        return {
            "forbidden_symbols": sorted(self.forbidden_symbols),
            "allowed_modules": sorted(self.allowed_modules),
            "allowed_action_types": sorted(self.allowed_action_types),
            "code_timeout_seconds": self.code_timeout_seconds,
            "snapshot_retention_days": self.snapshot_retention_days,
            "snapshot_max_size_mb": self.snapshot_max_size_mb,
            "snapshot_purge_grace_days": self.snapshot_purge_grace_days,
            "lock_timeout_seconds": self.lock_timeout_seconds,
            "storage_dir": str(self.storage_dir) if self.storage_dir else None,
        }


def load_config(path: Optional[Path] = None) -> EngineConfig:
    """
    Loads an EngineConfig from a JSON or YAML file.
    Falls back to defaults when no path is given.
    """
    if path is None:
        return EngineConfig()

    from creatorengine.services.config_service import ConfigService
    return ConfigService(config_path=path).load()
