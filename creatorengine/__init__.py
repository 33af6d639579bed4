"""
CreatorEngine

Action and code execution engine with snapshot-based rollback.
"""

__version__ = "0.4.0"

from creatorengine.config.settings import EngineConfig
from creatorengine.core.actions import Action, ActionContext, ActionResult, Caller
from creatorengine.core.executor import ActionExecutor
from creatorengine.stores.memory_store import InMemoryContentStore

__all__ = [
    "Action",
    "ActionContext",
    "ActionExecutor",
    "ActionResult",
    "Caller",
    "EngineConfig",
    "InMemoryContentStore",
]
