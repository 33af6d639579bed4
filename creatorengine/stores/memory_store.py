"""
In-memory content store.

Reference driver with WordPress-like semantics (posts, pages, post meta,
options, trash) plus a flat map of site files. Used by the test-suite and
by the CLI when no site is configured.
"""

import copy
import logging
from typing import Any, Dict, Optional

from creatorengine.core.exceptions import ContentStoreError
from creatorengine.stores.base import POST_FIELDS, POST_KINDS, ContentStore
from creatorengine.utils.targets import FILE, META, OPTION, POST, parse_target, post_target

logger = logging.getLogger(__name__)


class InMemoryContentStore(ContentStore):

    def __init__(self):
        self._posts: Dict[int, Dict[str, Any]] = {}
        self._meta: Dict[int, Dict[str, Any]] = {}
        self._options: Dict[str, Any] = {}
        self._files: Dict[str, str] = {}
        self._next_id = 1

    # ------------------------------------------------------------------ #
    # ContentStore
    # ------------------------------------------------------------------ #

    def create(self, kind: str, fields: Dict[str, Any], target: Optional[str] = None) -> str:
        if kind in POST_KINDS:
            return self._create_post(kind, fields, target)

        if kind in (META, OPTION, FILE):
            if not target:
                raise ContentStoreError(f"A target is required to create {kind} records")
            self.update(target, fields)
            return target

        raise ContentStoreError(f"Unsupported record kind: {kind}")

    def read(self, target: str) -> Optional[Dict[str, Any]]:
        ref = parse_target(target)

        if ref.kind == POST:
            post = self._posts.get(ref.object_id)
            if post is None:
                return None
            record = copy.deepcopy(post)
            record["meta"] = copy.deepcopy(self._meta.get(ref.object_id, {}))
            return record

        if ref.kind == META:
            bucket = self._meta.get(ref.object_id, {})
            if ref.key not in bucket:
                return None
            return {
                "object_id": ref.object_id,
                "meta_key": ref.key,
                "meta_value": copy.deepcopy(bucket[ref.key]),
            }

        if ref.kind == FILE:
            if ref.key not in self._files:
                return None
            return {"file_path": ref.key, "content": self._files[ref.key]}

        if ref.key not in self._options:
            return None
        return {"option_name": ref.key, "option_value": copy.deepcopy(self._options[ref.key])}

    def update(self, target: str, fields: Dict[str, Any]) -> bool:
        ref = parse_target(target)

        if ref.kind == POST:
            post = self._posts.get(ref.object_id)
            if post is None:
                return False
            for name in POST_FIELDS:
                if name in fields:
                    post[name] = copy.deepcopy(fields[name])
            for key, value in (fields.get("meta") or {}).items():
                self._meta.setdefault(ref.object_id, {})[key] = copy.deepcopy(value)
            return True

        if ref.kind == META:
            if "meta_value" not in fields:
                raise ContentStoreError("meta_value is required to write post meta")
            self._meta.setdefault(ref.object_id, {})[ref.key] = copy.deepcopy(fields["meta_value"])
            return True

        if ref.kind == FILE:
            if "content" not in fields:
                raise ContentStoreError("content is required to write a file")
            self._files[ref.key] = str(fields["content"])
            return True

        if "option_value" not in fields:
            raise ContentStoreError("option_value is required to write an option")
        self._options[ref.key] = copy.deepcopy(fields["option_value"])
        return True

    def delete(self, target: str, force: bool = True) -> bool:
        ref = parse_target(target)

        if ref.kind == POST:
            if ref.object_id not in self._posts:
                return False
            if force:
                del self._posts[ref.object_id]
                self._meta.pop(ref.object_id, None)
            else:
                self._posts[ref.object_id]["status"] = "trash"
            return True

        if ref.kind == META:
            bucket = self._meta.get(ref.object_id, {})
            if ref.key not in bucket:
                return False
            del bucket[ref.key]
            return True

        if ref.kind == FILE:
            return self._files.pop(ref.key, None) is not None

        if ref.key not in self._options:
            return False
        del self._options[ref.key]
        return True

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _create_post(self, kind: str, fields: Dict[str, Any], target: Optional[str]) -> str:
        if target:
            post_id = parse_target(target).object_id
            if post_id in self._posts:
                raise ContentStoreError(f"Post {post_id} already exists")
        else:
            post_id = self._next_id
        self._next_id = max(self._next_id, post_id + 1)

        post = {"id": post_id, "type": kind}
        for name in POST_FIELDS:
            post[name] = copy.deepcopy(fields.get(name))
        if not post["status"]:
            post["status"] = "draft"
        self._posts[post_id] = post

        meta = fields.get("meta") or {}
        if meta:
            self._meta[post_id] = copy.deepcopy(meta)

        logger.debug(f"Created {kind} {post_id}")
        return post_target(post_id)
