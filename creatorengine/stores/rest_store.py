# creatorengine/stores/rest_store.py
"""
WordPress REST content store.

Synchronous driver for the WordPress REST API (wp/v2), authenticated with
an application password. Posts and pages map to /wp/v2/posts and
/wp/v2/pages, post meta rides on the post's ``meta`` field (keys must be
registered with show_in_rest) and options map to /wp/v2/settings.

Server-side errors (429/502/503/504) are retried with exponential
backoff; every other HTTP failure is raised as ContentStoreError.

The REST API has no file endpoints. File targets are read and written on
the local disk under ``files_root`` (the WordPress install directory when
the engine runs on the same host) and are refused when it is not set.
"""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import requests

from creatorengine.core.exceptions import ContentStoreError
from creatorengine.stores.base import POST_FIELDS, POST_KINDS, ContentStore
from creatorengine.utils.targets import FILE, META, OPTION, POST, parse_target, post_target

logger = logging.getLogger(__name__)


@dataclass
class WordPressConfig:
    """Connection settings for a WordPress site."""
    site_url: str
    username: str
    app_password: str
    timeout: int = 15
    files_root: Optional[Path] = None

    def __post_init__(self):
        if not self.site_url:
            raise ContentStoreError("WordPress site_url is missing in config.")
        if not self.username or not self.app_password:
            raise ContentStoreError("WordPress username/app_password are missing in config.")
        self.site_url = self.site_url.rstrip("/")
        if self.files_root is not None:
            self.files_root = Path(self.files_root).expanduser()


class WordPressRestStore(ContentStore):

    API_PREFIX = "/wp-json/wp/v2"

    MAX_RETRIES = 3
    RETRY_STATUS_CODES = {429, 502, 503, 504}
    BACKOFF_FACTOR = 0.5  # 0.5s, 1s, 2s

    def __init__(self, config: WordPressConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.auth = (config.username, config.app_password)
        self.session.headers.update({"Accept": "application/json"})
        # post id -> "posts" | "pages"
        self._collections: Dict[int, str] = {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WordPressRestStore":
        return cls(WordPressConfig(
            site_url=data.get("site_url", ""),
            username=data.get("username", ""),
            app_password=data.get("app_password", ""),
            timeout=int(data.get("timeout", 15)),
            files_root=data.get("files_root"),
        ))

    # ============================================================
    # Core Request & Error Handling
    # ============================================================

    def _req(self, method: str, endpoint: str, allow_404: bool = False, **kwargs) -> Optional[Any]:
        """
        Request wrapper with retry and error mapping.

        Returns the decoded JSON body, or None for a 404 when allow_404 is set.
        """
        url = f"{self.config.site_url}{self.API_PREFIX}{endpoint}"

        for attempt in range(self.MAX_RETRIES + 1):
            try:
                response = self.session.request(method, url, timeout=self.config.timeout, **kwargs)
            except requests.exceptions.RequestException as e:
                logger.error(f"WordPress request failed: {method} {endpoint}: {e}")
                raise ContentStoreError(f"Network error communicating with WordPress: {e}") from e

            if response.status_code in self.RETRY_STATUS_CODES and attempt < self.MAX_RETRIES:
                sleep_time = self.BACKOFF_FACTOR * (2 ** attempt)
                logger.warning(
                    f"WordPress returned {response.status_code} for {endpoint}. Retrying in {sleep_time:.1f}s..."
                )
                time.sleep(sleep_time)
                continue

            if response.status_code == 404 and allow_404:
                return None

            if not response.ok:
                self._raise_api_error(response, endpoint)

            if response.status_code == 204:
                return None
            return response.json()

        raise ContentStoreError("Exhausted all retries.")

    def _raise_api_error(self, response: requests.Response, endpoint: str) -> None:
        try:
            content = response.json()
        except ValueError:
            content = {"message": response.text or "Unknown error"}
        if not isinstance(content, dict):
            content = {"message": str(content)}

        message = content.get("message", "Unknown API error")
        logger.error(
            f"WordPress API error on {endpoint}: {message} "
            f"(Status: {response.status_code}, code: {content.get('code')})"
        )
        raise ContentStoreError(message, status_code=response.status_code)

    # ============================================================
    # ContentStore
    # ============================================================

    def create(self, kind: str, fields: Dict[str, Any], target: Optional[str] = None) -> str:
        if kind in (META, OPTION, FILE):
            if not target:
                raise ContentStoreError(f"A target is required to create {kind} records")
            self.update(target, fields)
            return target

        if kind not in POST_KINDS:
            raise ContentStoreError(f"Unsupported record kind: {kind}")

        if target:
            # The REST API assigns ids itself; a deleted post comes back under a new id.
            logger.warning(f"Recreating {target} through REST assigns a new id")

        collection = "pages" if kind == "page" else "posts"
        body = self._post_body(fields)
        data = self._req("POST", f"/{collection}", json=body)
        post_id = int(data["id"])
        self._collections[post_id] = collection
        return post_target(post_id)

    def read(self, target: str) -> Optional[Dict[str, Any]]:
        ref = parse_target(target)

        if ref.kind == OPTION:
            settings = self._req("GET", "/settings") or {}
            if ref.key not in settings:
                return None
            return {"option_name": ref.key, "option_value": settings[ref.key]}

        if ref.kind == FILE:
            path = self._local_path(ref.key)
            if not path.is_file():
                return None
            return {"file_path": ref.key, "content": path.read_text(encoding="utf-8")}

        found = self._fetch_post(ref.object_id)
        if found is None:
            return None
        _, data = found

        if ref.kind == POST:
            return self._to_record(data)

        meta = data.get("meta") or {}
        if ref.key not in meta or meta[ref.key] in (None, ""):
            return None
        return {"object_id": ref.object_id, "meta_key": ref.key, "meta_value": meta[ref.key]}

    def update(self, target: str, fields: Dict[str, Any]) -> bool:
        ref = parse_target(target)

        if ref.kind == OPTION:
            if "option_value" not in fields:
                raise ContentStoreError("option_value is required to write an option")
            self._req("POST", "/settings", json={ref.key: fields["option_value"]})
            return True

        if ref.kind == FILE:
            if "content" not in fields:
                raise ContentStoreError("content is required to write a file")
            self._write_file(self._local_path(ref.key), str(fields["content"]))
            return True

        found = self._fetch_post(ref.object_id)
        if found is None:
            return False
        collection, _ = found

        if ref.kind == META:
            if "meta_value" not in fields:
                raise ContentStoreError("meta_value is required to write post meta")
            body = {"meta": {ref.key: fields["meta_value"]}}
        else:
            body = self._post_body(fields)

        self._req("POST", f"/{collection}/{ref.object_id}", json=body)
        return True

    def delete(self, target: str, force: bool = True) -> bool:
        ref = parse_target(target)

        if ref.kind == OPTION:
            raise ContentStoreError("The WordPress REST API cannot delete options")

        if ref.kind == FILE:
            path = self._local_path(ref.key)
            if not path.is_file():
                return False
            path.unlink()
            return True

        found = self._fetch_post(ref.object_id)
        if found is None:
            return False
        collection, data = found

        if ref.kind == META:
            if ref.key not in (data.get("meta") or {}):
                return False
            # WordPress deletes a registered meta key when it is set to null.
            self._req("POST", f"/{collection}/{ref.object_id}", json={"meta": {ref.key: None}})
            return True

        params = {"force": "true"} if force else {}
        self._req("DELETE", f"/{collection}/{ref.object_id}", params=params)
        if force:
            self._collections.pop(ref.object_id, None)
        return True

    # ============================================================
    # Internal Helpers
    # ============================================================

    def _local_path(self, relative: str) -> Path:
        """Resolves a site file under files_root; symlinks may not lead outside it."""
        root = self.config.files_root
        if root is None:
            raise ContentStoreError("files_root is not configured; file targets are unavailable")

        base = root.resolve()
        path = (base / relative).resolve()
        if path != base and base not in path.parents:
            raise ContentStoreError(f"Path outside files_root: {relative}")
        return path

    @staticmethod
    def _write_file(path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_text(content, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
            raise ContentStoreError(f"Cannot write {path.name}: {e}") from e

    def _fetch_post(self, post_id: int) -> Optional[Tuple[str, Dict[str, Any]]]:
        """Finds a post or page by id; remembers which collection it lives in."""
        known = self._collections.get(post_id)
        collections = [known] if known else ["posts", "pages"]
        for collection in collections:
            data = self._req("GET", f"/{collection}/{post_id}", allow_404=True, params={"context": "edit"})
            if data is not None:
                self._collections[post_id] = collection
                return collection, data
        return None

    @staticmethod
    def _post_body(fields: Dict[str, Any]) -> Dict[str, Any]:
        body = {name: fields[name] for name in POST_FIELDS if fields.get(name) is not None}
        if fields.get("meta"):
            body["meta"] = fields["meta"]
        return body

    @staticmethod
    def _to_record(data: Dict[str, Any]) -> Dict[str, Any]:
        def raw(value: Any) -> Any:
            # context=edit returns {"raw": ..., "rendered": ...} for text fields
            if isinstance(value, dict):
                return value.get("raw", value.get("rendered"))
            return value

        record = {"id": int(data["id"]), "type": data.get("type", "post")}
        for name in POST_FIELDS:
            record[name] = raw(data.get(name))
        record["meta"] = dict(data.get("meta") or {})
        return record
