"""
Capability functions injected into generated code.

Generated code reaches the content store only through these functions;
the driver object itself is never exposed. Records created here are
remembered so the caller can include them in a snapshot.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from creatorengine.stores.base import POST_FIELDS, ContentStore
from creatorengine.utils.targets import meta_target, option_target, parse_target, post_target

logger = logging.getLogger(__name__)


class SandboxFunctions:

    def __init__(self, store: ContentStore):
        self._store = store
        self.created: List[str] = []

    def namespace(self) -> Dict[str, Callable[..., Any]]:
        return {
            "get_post": self.get_post,
            "create_post": self.create_post,
            "update_post": self.update_post,
            "get_post_meta": self.get_post_meta,
            "update_post_meta": self.update_post_meta,
            "get_option": self.get_option,
            "update_option": self.update_option,
        }

    def get_post(self, post_id: int) -> Optional[Dict[str, Any]]:
        return self._store.read(post_target(post_id))

    def create_post(self, title: str = "New Post", content: str = "", post_type: str = "post", **fields: Any) -> int:
        record = {name: fields[name] for name in POST_FIELDS if name in fields}
        record.update({"title": title, "content": content})
        record.setdefault("status", "draft")
        target = self._store.create("page" if post_type == "page" else "post", record)
        self.created.append(target)
        logger.debug(f"Generated code created {target}")
        return parse_target(target).object_id

    def update_post(self, post_id: int, **fields: Any) -> bool:
        unknown = set(fields) - set(POST_FIELDS) - {"meta"}
        if unknown:
            raise ValueError(f"Unknown post field(s): {', '.join(sorted(unknown))}")
        return self._store.update(post_target(post_id), fields)

    def get_post_meta(self, post_id: int, key: str, default: Any = None) -> Any:
        record = self._store.read(meta_target(post_id, key))
        return record["meta_value"] if record is not None else default

    def update_post_meta(self, post_id: int, key: str, value: Any) -> bool:
        return self._store.update(meta_target(post_id, key), {"meta_value": value})

    def get_option(self, name: str, default: Any = None) -> Any:
        record = self._store.read(option_target(name))
        return record["option_value"] if record is not None else default

    def update_option(self, name: str, value: Any) -> bool:
        return self._store.update(option_target(name), {"option_value": value})
