"""
Post and page handlers.
"""

import logging
from typing import Any, Dict, Mapping

from creatorengine.core.actions import ActionResult
from creatorengine.core.exceptions import ErrorCode
from creatorengine.core.handlers.base import HandlerContext, not_found
from creatorengine.stores.base import POST_FIELDS
from creatorengine.utils.targets import parse_target, post_target

logger = logging.getLogger(__name__)


def _post_fields(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {name: params[name] for name in POST_FIELDS if params.get(name) is not None}


def _create(kind: str, default_title: str, params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    fields = _post_fields(params)
    fields.setdefault("title", default_title)
    fields.setdefault("content", "")
    fields.setdefault("status", "draft")
    if ctx.caller.user_id is not None:
        fields.setdefault("author", ctx.caller.user_id)

    meta = dict(params.get("meta") or {})
    if kind == "page" and params.get("use_elementor"):
        meta["_elementor_edit_mode"] = "builder"
        meta["_elementor_data"] = []
    if meta:
        fields["meta"] = meta

    target = ctx.store.create(kind, fields)
    post_id = parse_target(target).object_id
    ctx.add_step(f"{kind}_created", {"post_id": post_id})

    return ActionResult.ok(
        data={"target": target, "post_id": post_id},
        message=f'{kind.capitalize()} "{fields["title"]}" created successfully',
    )


def handle_create_post(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    return _create("post", "New Post", params, ctx)


def handle_create_page(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    return _create("page", "New Page", params, ctx)


def handle_update_post(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    """Updates post or page fields in place. Used by update_post and update_page."""
    target = post_target(params["post_id"])
    fields = _post_fields(params)
    if params.get("meta"):
        fields["meta"] = dict(params["meta"])
    if not fields:
        return ActionResult.fail("No fields to update", ErrorCode.PARAMETER_ERROR)

    if not ctx.store.update(target, fields):
        return not_found(f"Post {params['post_id']}")

    ctx.add_step("post_updated", {"post_id": int(params["post_id"]), "fields": sorted(fields)})
    return ActionResult.ok(
        data={"target": target, "post_id": int(params["post_id"])},
        message="Post updated successfully",
    )


def handle_delete_post(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    target = post_target(params["post_id"])
    force = bool(params.get("force", False))

    if not ctx.store.delete(target, force=force):
        return ActionResult.fail(f"Failed to delete post {params['post_id']}: post not found")

    ctx.add_step("post_deleted", {"post_id": int(params["post_id"]), "force": force})
    return ActionResult.ok(
        data={"target": target, "post_id": int(params["post_id"]), "force": force},
        message="Post deleted successfully" if force else "Post moved to trash",
    )
