"""
Site file handlers.

Paths are site-relative (``wp-content/themes/child/style.css``); the
target resolver has already refused absolute paths and ``..``.
"""

from typing import Any, Mapping

from creatorengine.core.actions import ActionResult
from creatorengine.core.handlers.base import HandlerContext, not_found
from creatorengine.utils.targets import file_path, file_target


def resolve_file_target(params: Mapping[str, Any]) -> str:
    return file_target(params["file_path"])


def handle_write_file(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    path = file_path(params["file_path"])
    content = params.get("content")
    content = "" if content is None else str(content)

    target = file_target(path)
    ctx.store.update(target, {"content": content})
    ctx.add_step("file_written", {"path": path})

    return ActionResult.ok(
        data={"target": target, "file_path": path, "bytes": len(content.encode("utf-8"))},
        message="File written successfully",
    )


def handle_delete_file(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    path = file_path(params["file_path"])
    target = file_target(path)

    if not ctx.store.delete(target):
        return not_found(f"File {path}")

    ctx.add_step("file_deleted", {"path": path})
    return ActionResult.ok(data={"target": target, "file_path": path}, message="File deleted successfully")
