"""
Action handlers, grouped by the content they touch.

build_default_registry() wires the fixed action vocabulary.
"""

from creatorengine.core.actions import ActionType, EffectKind
from creatorengine.core.delta_backup import CreateCapturer, DeleteCapturer, RecordCapturer
from creatorengine.core.handlers.base import HandlerContext, missing_params
from creatorengine.core.handlers.builder_handlers import (
    elementor_target,
    handle_add_elementor_widget,
    handle_update_elementor,
)
from creatorengine.core.handlers.content_handlers import (
    handle_create_page,
    handle_create_post,
    handle_delete_post,
    handle_update_post,
)
from creatorengine.core.handlers.file_handlers import handle_delete_file, handle_write_file, resolve_file_target
from creatorengine.core.handlers.meta_handlers import (
    handle_delete_meta,
    handle_delete_option,
    handle_update_meta,
    handle_update_option,
)
from creatorengine.core.handlers.registry import ActionRegistration, ActionRegistry
from creatorengine.utils.targets import meta_target, option_target, post_target


def _post(params):
    return post_target(params["post_id"])


def _meta(params):
    return meta_target(params["object_id"], str(params["meta_key"]))


def _option(params):
    return option_target(str(params["option_name"]))


def build_default_registry() -> ActionRegistry:
    registry = ActionRegistry()

    registry.register(ActionType.CREATE_POST, handle_create_post, CreateCapturer(), EffectKind.CREATE)
    registry.register(ActionType.CREATE_PAGE, handle_create_page, CreateCapturer(), EffectKind.CREATE)
    registry.register(ActionType.UPDATE_POST, handle_update_post, RecordCapturer(), EffectKind.UPDATE,
                      ("post_id",), _post)
    registry.register(ActionType.UPDATE_PAGE, handle_update_post, RecordCapturer(), EffectKind.UPDATE,
                      ("post_id",), _post)
    registry.register(ActionType.DELETE_POST, handle_delete_post, DeleteCapturer(), EffectKind.DELETE,
                      ("post_id",), _post)

    registry.register(ActionType.UPDATE_META, handle_update_meta, RecordCapturer(), EffectKind.UPDATE,
                      ("object_id", "meta_key"), _meta)
    registry.register(ActionType.DELETE_META, handle_delete_meta, DeleteCapturer(), EffectKind.DELETE,
                      ("object_id", "meta_key"), _meta)
    registry.register(ActionType.UPDATE_OPTION, handle_update_option, RecordCapturer(), EffectKind.UPDATE,
                      ("option_name",), _option)
    registry.register(ActionType.DELETE_OPTION, handle_delete_option, DeleteCapturer(), EffectKind.DELETE,
                      ("option_name",), _option)

    registry.register(ActionType.ADD_ELEMENTOR_WIDGET, handle_add_elementor_widget, RecordCapturer(),
                      EffectKind.UPDATE, ("post_id",), elementor_target)
    registry.register(ActionType.UPDATE_ELEMENTOR, handle_update_elementor, RecordCapturer(),
                      EffectKind.UPDATE, ("post_id", "elementor_data"), elementor_target)

    registry.register(ActionType.WRITE_FILE, handle_write_file, RecordCapturer(), EffectKind.UPDATE,
                      ("file_path",), resolve_file_target)
    registry.register(ActionType.DELETE_FILE, handle_delete_file, DeleteCapturer(), EffectKind.DELETE,
                      ("file_path",), resolve_file_target)

    return registry


__all__ = [
    "ActionRegistration",
    "ActionRegistry",
    "HandlerContext",
    "build_default_registry",
    "missing_params",
]
