"""
Elementor page-builder handlers.

Elementor keeps a page's layout as a list of elements in the
``_elementor_data`` post meta. WordPress may hand it back either decoded
or as a JSON string.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Mapping

from creatorengine.core.actions import ActionResult
from creatorengine.core.exceptions import ErrorCode
from creatorengine.core.handlers.base import HandlerContext, not_found
from creatorengine.utils.targets import meta_target, post_target

logger = logging.getLogger(__name__)

ELEMENTOR_DATA_KEY = "_elementor_data"


def elementor_target(params: Mapping[str, Any]) -> str:
    return meta_target(params["post_id"], ELEMENTOR_DATA_KEY)


def _decode_elements(value: Any) -> List[Dict[str, Any]]:
    if value in (None, ""):
        return []
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, list):
        raise ValueError("Elementor data is not a list of elements")
    return list(value)


def handle_add_elementor_widget(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    post_id = int(params["post_id"])
    widget_type = params.get("widget_type") or "text-editor"
    settings = dict(params.get("settings") or {})

    post = ctx.store.read(post_target(post_id))
    if post is None:
        return not_found(f"Post {post_id}")

    try:
        elements = _decode_elements((post.get("meta") or {}).get(ELEMENTOR_DATA_KEY))
    except ValueError as e:
        return ActionResult.fail(f"Unreadable Elementor data on post {post_id}: {e}", ErrorCode.EXECUTION_ERROR)

    widget = {
        "id": uuid.uuid4().hex[:7],
        "elType": "widget",
        "widgetType": widget_type,
        "settings": settings,
    }
    elements.append(widget)

    target = elementor_target(params)
    ctx.store.update(target, {"meta_value": elements})
    ctx.add_step("elementor_widget_added", {"post_id": post_id, "widget_type": widget_type})

    return ActionResult.ok(
        data={"target": target, "post_id": post_id, "widget_id": widget["id"]},
        message="Widget added successfully",
    )


def handle_update_elementor(params: Mapping[str, Any], ctx: HandlerContext) -> ActionResult:
    """Replaces a page's whole Elementor element tree."""
    post_id = int(params["post_id"])

    if ctx.store.read(post_target(post_id)) is None:
        return not_found(f"Post {post_id}")

    try:
        elements = _decode_elements(params["elementor_data"])
    except ValueError as e:
        return ActionResult.fail(f"Invalid elementor_data: {e}", ErrorCode.PARAMETER_ERROR)

    target = elementor_target(params)
    ctx.store.update(target, {"meta_value": elements})
    ctx.add_step("elementor_updated", {"post_id": post_id, "elements": len(elements)})

    return ActionResult.ok(
        data={"target": target, "post_id": post_id, "elements": len(elements)},
        message="Elementor data updated successfully",
    )
