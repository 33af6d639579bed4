"""
Content-store drivers.
"""

from creatorengine.stores.base import ContentStore
from creatorengine.stores.memory_store import InMemoryContentStore
from creatorengine.stores.rest_store import WordPressConfig, WordPressRestStore

__all__ = [
    "ContentStore",
    "InMemoryContentStore",
    "WordPressConfig",
    "WordPressRestStore",
]
