"""
Content Store Interface

Abstract driver interface for the external, mutable system of record the
engine applies effects to. Every primitive is keyed by an opaque target id
(see creatorengine.utils.targets).
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

# Writable post fields, in the order records are reported.
POST_FIELDS = ("title", "content", "excerpt", "status", "parent", "template", "author")
POST_KINDS = ("post", "page")


class ContentStore(ABC):
    """
    Driver contract consumed by handlers, capturers and the rollback engine.

    Record shapes returned by read():
    - post/<id>:             {"id", "type", <POST_FIELDS>, "meta": {...}}
    - post/<id>/meta/<key>:  {"object_id", "meta_key", "meta_value"}
    - option/<name>:         {"option_name", "option_value"}
    - file/<path>:           {"file_path", "content"}
    """

    @abstractmethod
    def create(self, kind: str, fields: Dict[str, Any], target: Optional[str] = None) -> str:
        """
        Create a record.

        Args:
            kind: "post", "page", "meta", "option" or "file"
            fields: Record fields (same shape read() returns)
            target: Explicit target id, used to recreate a deleted record in place

        Returns:
            Target id of the created record

        Raises:
            ContentStoreError: If the backing system rejects the write
        """

    @abstractmethod
    def read(self, target: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the record, or None if it does not exist."""

    @abstractmethod
    def update(self, target: str, fields: Dict[str, Any]) -> bool:
        """
        Update a record. Meta, option and file targets are upserted.

        Returns:
            False if a post target does not exist
        """

    @abstractmethod
    def delete(self, target: str, force: bool = True) -> bool:
        """
        Delete a record. Posts are trashed unless force is set.

        Returns:
            False if the record does not exist
        """
