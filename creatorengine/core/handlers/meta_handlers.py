"""
Post meta and site option handlers.
"""

from typing import Any, Mapping

from creatorengine.core.actions import ActionResult
from creatorengine.core.handlers.base import HandlerContext, not_found
from creatorengine.utils.targets import meta_target, option_target, post_target


def handle_update_meta(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    object_id = int(params["object_id"])
    meta_key = str(params["meta_key"])

    if ctx.store.read(post_target(object_id)) is None:
        return not_found(f"Post {object_id}")

    target = meta_target(object_id, meta_key)
    ctx.store.update(target, {"meta_value": params.get("meta_value", "")})
    ctx.add_step("meta_updated", {"object_id": object_id, "meta_key": meta_key})

    return ActionResult.ok(
        data={"target": target, "object_id": object_id, "meta_key": meta_key},
        message="Meta updated successfully",
    )


def handle_delete_meta(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    object_id = int(params["object_id"])
    meta_key = str(params["meta_key"])
    target = meta_target(object_id, meta_key)

    if not ctx.store.delete(target):
        return not_found(f"Meta {meta_key} on post {object_id}")

    ctx.add_step("meta_deleted", {"object_id": object_id, "meta_key": meta_key})
    return ActionResult.ok(
        data={"target": target, "object_id": object_id, "meta_key": meta_key},
        message="Meta deleted successfully",
    )


def handle_update_option(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    option_name = str(params["option_name"])
    target = option_target(option_name)

    ctx.store.update(target, {"option_value": params.get("option_value", "")})
    ctx.add_step("option_updated", {"option_name": option_name})

    return ActionResult.ok(
        data={"target": target, "option_name": option_name},
        message="Option updated successfully",
    )


def handle_delete_option(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    option_name = str(params["option_name"])
    target = option_target(option_name)

    if not ctx.store.delete(target):
        return not_found(f"Option {option_name}")

    ctx.add_step("option_deleted", {"option_name": option_name})
    return ActionResult.ok(
        data={"target": target, "option_name": option_name},
        message="Option deleted successfully",
    )
