import json
import threading

import pytest

from creatorengine.config.settings import EngineConfig
from creatorengine.core.actions import Action, ActionContext, ActionType, Caller, EffectKind
from creatorengine.core.audit import AuditLogger
from creatorengine.core.delta_backup import RecordCapturer
from creatorengine.core.exceptions import ErrorCode
from creatorengine.core.executor import ActionExecutor
from creatorengine.core.handlers import ActionRegistry
from creatorengine.core.tracker import OperationStatus, OperationTracker
from creatorengine.stores.memory_store import InMemoryContentStore
from creatorengine.utils.targets import option_target

ADMIN = Caller(user_id="1", roles=("administrator",))
SUBSCRIBER = Caller(user_id="9", roles=("subscriber",))


class RecordingSink:
    def __init__(self):
        self.records = []

    def __call__(self, record):
        self.records.append(record)

    def events(self):
        return [r["event"] for r in self.records]


def make_executor(storage_dir=None, store=None, **kwargs):
    store = store or InMemoryContentStore()
    sink = RecordingSink()
    config = kwargs.pop("config", None) or EngineConfig(storage_dir=storage_dir)
    executor = ActionExecutor(store, config=config, audit=AuditLogger(sink), **kwargs)
    return executor, store, sink


def admin_context(**kwargs):
    return ActionContext(context_id="chat-1", message_id="msg-1", caller=ADMIN, **kwargs)


def create_post(executor, title="Test", **params):
    params["title"] = title
    result = executor.execute({"type": "create_post", "params": params}, admin_context())
    assert result.success, result.error
    return result


# ------------------------------------------------------------------ #
# Successful actions
# ------------------------------------------------------------------ #

def test_create_post_records_snapshot_with_empty_before_and_created_record_after():
    executor, store, _ = make_executor()

    result = create_post(executor, "Test")

    target = result.data["target"]
    assert target == f"post/{result.data['post_id']}"
    assert result.message == 'Post "Test" created successfully'

    snapshot = executor.snapshots.get(result.snapshot_id)
    assert snapshot.context_id == "chat-1"
    assert snapshot.message_id == "msg-1"
    assert snapshot.operation_id == result.operation_id
    assert len(snapshot.operations) == 1

    delta = snapshot.operations[0]
    assert delta.type == "create_post"
    assert delta.target == target
    assert delta.before is None
    assert delta.after["title"] == "Test"
    assert delta.after == store.read(target)


def test_create_post_defaults_to_draft_authored_by_caller():
    executor, store, _ = make_executor()

    result = executor.execute({"type": "create_post", "params": {}}, admin_context())

    record = store.read(result.data["target"])
    assert record["title"] == "New Post"
    assert record["content"] == ""
    assert record["status"] == "draft"
    assert record["author"] == "1"


def test_update_then_restore_returns_post_to_previous_title():
    executor, store, _ = make_executor()
    created = create_post(executor, "Test")
    target = created.data["target"]

    updated = executor.execute(
        {"type": "update_post", "params": {"post_id": created.data["post_id"], "title": "Updated"}},
        admin_context(),
    )
    assert updated.success
    assert store.read(target)["title"] == "Updated"

    delta = executor.snapshots.get(updated.snapshot_id).operations[0]
    assert delta.before["title"] == "Test"
    assert delta.after["title"] == "Updated"

    restored = executor.restore(updated.snapshot_id)

    assert restored.success
    assert store.read(target)["title"] == "Test"
    assert restored.previous_state == [{"target": target, "state": delta.before}]
    assert executor.tracker.get(updated.operation_id).status is OperationStatus.ROLLED_BACK


def test_restoring_a_create_snapshot_removes_the_created_post():
    executor, store, _ = make_executor()
    created = create_post(executor, "Temporary")

    restored = executor.restore(created.snapshot_id)

    assert restored.success
    assert store.read(created.data["target"]) is None


def test_second_restore_of_same_snapshot_is_refused():
    executor, store, _ = make_executor()
    created = create_post(executor, "Test")
    updated = executor.execute(
        {"type": "update_post", "params": {"post_id": created.data["post_id"], "title": "Updated"}},
        admin_context(),
    )
    assert executor.restore(updated.snapshot_id).success

    # Something else changes the post after the rollback.
    store.update(created.data["target"], {"title": "Later"})
    again = executor.restore(updated.snapshot_id)

    assert not again.success
    assert again.code is ErrorCode.ROLLBACK_FAILED
    assert "already rolled back" in again.error
    assert store.read(created.data["target"])["title"] == "Later"


def test_trash_delete_and_restore_brings_back_original_status():
    executor, store, _ = make_executor()
    created = create_post(executor, "Trashable", status="publish")
    target = created.data["target"]

    deleted = executor.execute(
        {"type": "delete_post", "params": {"post_id": created.data["post_id"]}}, admin_context()
    )
    assert deleted.success
    assert deleted.message == "Post moved to trash"
    assert store.read(target)["status"] == "trash"

    assert executor.restore(deleted.snapshot_id).success
    assert store.read(target)["status"] == "publish"


def test_force_delete_and_restore_recreates_post_with_same_id_and_meta():
    executor, store, _ = make_executor()
    created = create_post(executor, "Gone", meta={"_color": "blue"})
    target = created.data["target"]

    deleted = executor.execute(
        {"type": "delete_post", "params": {"post_id": created.data["post_id"], "force": True}},
        admin_context(),
    )
    assert deleted.success
    assert store.read(target) is None
    delta = executor.snapshots.get(deleted.snapshot_id).operations[0]
    assert delta.after == {"deleted": True, "target": target}

    assert executor.restore(deleted.snapshot_id).success

    record = store.read(target)
    assert record["title"] == "Gone"
    assert record["meta"] == {"_color": "blue"}


def test_update_meta_on_new_key_then_restore_removes_key():
    executor, store, _ = make_executor()
    created = create_post(executor)
    post_id = created.data["post_id"]

    result = executor.execute(
        {"type": "update_meta", "params": {"object_id": post_id, "meta_key": "_seo", "meta_value": "x"}},
        admin_context(),
    )
    assert result.success
    assert result.data["target"] == f"post/{post_id}/meta/_seo"
    assert store.read(result.data["target"])["meta_value"] == "x"

    assert executor.restore(result.snapshot_id).success
    assert store.read(result.data["target"]) is None


def test_update_meta_on_missing_post_fails_without_snapshot():
    executor, _, _ = make_executor()

    result = executor.execute(
        {"type": "update_meta", "params": {"object_id": 404, "meta_key": "_seo", "meta_value": "x"}},
        admin_context(),
    )

    assert not result.success
    assert result.code is ErrorCode.EXECUTION_ERROR
    assert result.error == "Post 404 not found"
    assert executor.snapshots.list() == []


def test_option_update_and_delete_restore_previous_values():
    executor, store, _ = make_executor()
    store.update(option_target("blogname"), {"option_value": "Old Name"})

    updated = executor.execute(
        {"type": "update_option", "params": {"option_name": "blogname", "option_value": "New Name"}},
        admin_context(),
    )
    deleted = executor.execute({"type": "delete_option", "params": {"option_name": "blogname"}}, admin_context())
    assert updated.success and deleted.success
    assert store.read("option/blogname") is None

    assert executor.restore(deleted.snapshot_id).success
    assert store.read("option/blogname")["option_value"] == "New Name"

    assert executor.restore(updated.snapshot_id).success
    assert store.read("option/blogname")["option_value"] == "Old Name"


def test_elementor_widget_is_appended_and_rolled_back():
    executor, store, _ = make_executor()
    page = executor.execute(
        {"type": "create_page", "params": {"title": "Landing", "use_elementor": True}}, admin_context()
    )
    post_id = page.data["post_id"]
    assert store.read(page.data["target"])["meta"]["_elementor_edit_mode"] == "builder"

    added = executor.execute(
        {"type": "add_elementor_widget",
         "params": {"post_id": post_id, "widget_type": "heading", "settings": {"title": "Hi"}}},
        admin_context(),
    )

    assert added.success
    elements = store.read(f"post/{post_id}/meta/_elementor_data")["meta_value"]
    assert len(elements) == 1
    assert elements[0]["widgetType"] == "heading"
    assert elements[0]["settings"] == {"title": "Hi"}
    assert elements[0]["id"] == added.data["widget_id"]

    assert executor.restore(added.snapshot_id).success
    assert store.read(f"post/{post_id}/meta/_elementor_data")["meta_value"] == []


def test_update_elementor_replaces_layout_and_restores_previous_one():
    executor, store, _ = make_executor()
    page = executor.execute(
        {"type": "create_page", "params": {"title": "Landing", "use_elementor": True}}, admin_context()
    )
    post_id = page.data["post_id"]
    layout = [{"id": "s1", "elType": "section", "elements": []}]

    updated = executor.execute(
        {"type": "update_elementor", "params": {"post_id": post_id, "elementor_data": json.dumps(layout)}},
        admin_context(),
    )

    assert updated.success, updated.error
    assert updated.data["elements"] == 1
    snapshot = executor.snapshots.get(updated.snapshot_id)
    assert snapshot.operations[0].before["meta_value"] == []
    assert snapshot.operations[0].after["meta_value"] == layout

    assert executor.restore(updated.snapshot_id).success
    assert store.read(f"post/{post_id}/meta/_elementor_data")["meta_value"] == []


def test_update_elementor_rejects_data_that_is_not_an_element_list():
    executor, store, _ = make_executor()
    post_id = create_post(executor).data["post_id"]

    result = executor.execute(
        {"type": "update_elementor", "params": {"post_id": post_id, "elementor_data": '{"id": "x"}'}},
        admin_context(),
    )

    assert not result.success
    assert result.code is ErrorCode.PARAMETER_ERROR
    assert store.read(f"post/{post_id}/meta/_elementor_data") is None
    assert result.snapshot_id is None


def test_write_file_captures_contents_and_restore_brings_them_back():
    store = InMemoryContentStore()
    store.update("file/wp-content/custom.css", {"content": "a { color: red; }"})
    executor, _, _ = make_executor(store=store)

    result = executor.execute(
        {"type": "write_file", "params": {"file_path": "wp-content/custom.css", "content": "a { color: blue; }"}},
        admin_context(),
    )

    assert result.success
    assert result.data["target"] == "file/wp-content/custom.css"
    delta = executor.snapshots.get(result.snapshot_id).operations[0]
    assert delta.before == {"file_path": "wp-content/custom.css", "content": "a { color: red; }"}
    assert delta.after["content"] == "a { color: blue; }"

    assert executor.restore(result.snapshot_id).success
    assert store.read("file/wp-content/custom.css")["content"] == "a { color: red; }"


def test_restoring_a_new_file_deletes_it():
    executor, store, _ = make_executor()

    result = executor.execute(
        {"type": "write_file", "params": {"file_path": "wp-content/new.php", "content": "<?php"}}, admin_context()
    )

    assert executor.snapshots.get(result.snapshot_id).operations[0].before is None
    assert executor.restore(result.snapshot_id).success
    assert store.read("file/wp-content/new.php") is None


def test_delete_file_is_undone_by_recreating_contents():
    store = InMemoryContentStore()
    store.update("file/robots.txt", {"content": "User-agent: *"})
    executor, _, _ = make_executor(store=store)

    result = executor.execute({"type": "delete_file", "params": {"file_path": "robots.txt"}}, admin_context())

    assert result.success
    assert store.read("file/robots.txt") is None
    assert executor.snapshots.get(result.snapshot_id).operations[0].after["deleted"] is True

    assert executor.restore(result.snapshot_id).success
    assert store.read("file/robots.txt") == {"file_path": "robots.txt", "content": "User-agent: *"}


@pytest.mark.parametrize("path", ["../wp-config.php", "/etc/passwd", "wp-content/../../x"])
def test_file_paths_outside_the_site_are_rejected_before_tracking(path):
    executor, _, _ = make_executor()

    result = executor.execute({"type": "write_file", "params": {"file_path": path, "content": "x"}}, admin_context())

    assert result.code is ErrorCode.PARAMETER_ERROR
    assert executor.tracker.list() == []


def test_file_actions_require_manage_files():
    executor, _, _ = make_executor()
    editor = Caller(user_id="2", roles=("editor",))

    result = executor.execute(
        {"type": "write_file", "params": {"file_path": "a.txt", "content": "x"}}, ActionContext(caller=editor)
    )

    assert result.code is ErrorCode.PERMISSION_DENIED
    assert "manage_files" in result.error


def test_action_instances_and_uppercase_types_are_accepted():
    executor, _, _ = make_executor()

    result = executor.execute(Action(type="Create_Page", params={"title": "About"}), admin_context())

    assert result.success
    assert executor.tracker.get(result.operation_id).action_type == "create_page"


def test_successful_action_is_tracked_with_ordered_steps_and_audited():
    executor, _, sink = make_executor()

    result = create_post(executor, "Tracked")

    operation = executor.tracker.get(result.operation_id)
    assert operation.status is OperationStatus.COMPLETED
    assert operation.snapshot_id == result.snapshot_id
    names = [s.name for s in operation.steps]
    assert names[0] == "before_state_captured"
    assert names.index("post_created") < names.index("after_state_captured") < names.index("snapshot_created")
    assert names[-1] == "completed"
    assert "action_executed" in sink.events()


def test_operations_and_snapshots_persist_under_storage_dir(tmp_path):
    executor, store, _ = make_executor(storage_dir=tmp_path)
    result = create_post(executor, "Persisted")

    assert (tmp_path / "operations" / f"{result.operation_id}.json").exists()
    assert (tmp_path / "snapshots" / f"{result.snapshot_id}.json").exists()

    reopened = ActionExecutor(store, config=EngineConfig(storage_dir=tmp_path))
    assert reopened.tracker.get(result.operation_id).status is OperationStatus.COMPLETED
    assert reopened.restore(result.snapshot_id).success
    assert store.read(result.data["target"]) is None


# ------------------------------------------------------------------ #
# Rejections before any effect
# ------------------------------------------------------------------ #

PARAMS_BY_TYPE = {
    "create_post": {"title": "X"},
    "create_page": {"title": "X"},
    "update_post": {"post_id": 1, "title": "X"},
    "update_page": {"post_id": 1, "title": "X"},
    "delete_post": {"post_id": 1, "force": True},
    "update_meta": {"object_id": 1, "meta_key": "k", "meta_value": "changed"},
    "delete_meta": {"object_id": 1, "meta_key": "k"},
    "update_option": {"option_name": "blogname", "option_value": "changed"},
    "delete_option": {"option_name": "blogname"},
    "add_elementor_widget": {"post_id": 1},
    "update_elementor": {"post_id": 1, "elementor_data": []},
    "write_file": {"file_path": "wp-content/custom.css", "content": "body{}"},
    "delete_file": {"file_path": "wp-content/custom.css"},
}


CSS_FILE = "file/wp-content/custom.css"


def seeded_store():
    store = InMemoryContentStore()
    store.create("post", {"title": "Seed", "meta": {"k": "v"}})
    store.update("option/blogname", {"option_value": "Site"})
    store.update(CSS_FILE, {"content": "a{}"})
    return store


@pytest.mark.parametrize("action_type", sorted(PARAMS_BY_TYPE))
def test_caller_without_capability_is_denied_without_side_effects(action_type):
    store = seeded_store()
    executor, _, sink = make_executor(store=store)
    before = (store.read("post/1"), store.read("option/blogname"), store.read(CSS_FILE), store._next_id)

    result = executor.execute(
        {"type": action_type, "params": PARAMS_BY_TYPE[action_type]}, ActionContext(caller=SUBSCRIBER)
    )

    assert not result.success
    assert result.code is ErrorCode.PERMISSION_DENIED
    assert result.operation_id is None
    assert (store.read("post/1"), store.read("option/blogname"), store.read(CSS_FILE), store._next_id) == before
    assert executor.snapshots.list() == []
    assert executor.tracker.list() == []
    assert sink.records[-1]["event"] == "permission_denied"
    assert sink.records[-1]["data"]["action"]["type"] == action_type


def test_every_registered_action_type_has_params_in_denial_table():
    executor, _, _ = make_executor()
    assert {r.action_type.value for r in executor.registry} == set(PARAMS_BY_TYPE)


def test_editor_cannot_touch_options():
    executor, store, _ = make_executor()
    editor = Caller(user_id="2", roles=("editor",))

    result = executor.execute(
        {"type": "update_option", "params": {"option_name": "blogname", "option_value": "x"}},
        ActionContext(caller=editor),
    )

    assert result.code is ErrorCode.PERMISSION_DENIED
    assert "manage_options" in result.error
    assert store.read("option/blogname") is None


def test_allowed_action_types_config_disables_other_types():
    config = EngineConfig(storage_dir=None, allowed_action_types=frozenset({"create_post"}))
    executor, _, _ = make_executor(config=config)

    assert executor.execute({"type": "create_post", "params": {}}, admin_context()).success
    denied = executor.execute({"type": "create_page", "params": {}}, admin_context())

    assert denied.code is ErrorCode.PERMISSION_DENIED
    assert "disabled by configuration" in denied.error


@pytest.mark.parametrize("action_type", ["publish_everything", "", "create-post", "drop_table"])
def test_unknown_action_type_is_rejected_before_permission_check(action_type):
    executor, _, sink = make_executor()

    result = executor.execute({"type": action_type, "params": {"title": "X"}}, ActionContext(caller=SUBSCRIBER))

    assert not result.success
    assert result.code is ErrorCode.UNKNOWN_ACTION_TYPE
    assert executor.tracker.list() == []
    assert sink.records[-1]["event"] == "unknown_action_type"


def test_missing_required_params_fail_before_tracking():
    executor, _, _ = make_executor()

    result = executor.execute({"type": "update_meta", "params": {"object_id": 1}}, admin_context())

    assert result.code is ErrorCode.PARAMETER_ERROR
    assert result.error == "Missing required parameter(s) for update_meta: meta_key"
    assert executor.tracker.list() == []


def test_non_numeric_post_id_is_a_parameter_error():
    executor, _, _ = make_executor()

    result = executor.execute({"type": "update_post", "params": {"post_id": "abc", "title": "x"}}, admin_context())

    assert result.code is ErrorCode.PARAMETER_ERROR
    assert executor.tracker.list() == []


def test_update_without_fields_fails_and_records_failed_operation():
    executor, _, _ = make_executor()
    created = create_post(executor)

    result = executor.execute({"type": "update_post", "params": {"post_id": created.data["post_id"]}}, admin_context())

    assert result.code is ErrorCode.PARAMETER_ERROR
    assert result.error == "No fields to update"
    assert executor.tracker.get(result.operation_id).status is OperationStatus.FAILED
    assert len(executor.snapshots.list()) == 1


# ------------------------------------------------------------------ #
# Failures during execution
# ------------------------------------------------------------------ #

def test_deleting_missing_post_fails_with_no_snapshot():
    executor, _, sink = make_executor()

    result = executor.execute({"type": "delete_post", "params": {"post_id": 999}}, admin_context())

    assert not result.success
    assert result.code is ErrorCode.EXECUTION_ERROR
    assert result.error == "Failed to delete post 999: post not found"
    assert executor.snapshots.list() == []
    operation = executor.tracker.get(result.operation_id)
    assert operation.status is OperationStatus.FAILED
    assert operation.snapshot_id is None
    assert sink.records[-1]["severity"] == "failure"


def test_handler_exception_becomes_execution_error_and_fails_operation():
    def explode(params, ctx):
        raise RuntimeError("driver exploded")

    registry = ActionRegistry()
    registry.register(
        ActionType.UPDATE_OPTION, explode, RecordCapturer(), EffectKind.UPDATE,
        ("option_name",), lambda p: option_target(p["option_name"]),
    )
    executor, _, sink = make_executor(registry=registry)

    result = executor.execute({"type": "update_option", "params": {"option_name": "x"}}, admin_context())

    assert not result.success
    assert result.code is ErrorCode.EXECUTION_ERROR
    assert result.error == "driver exploded"
    assert executor.snapshots.list() == []
    assert executor.tracker.get(result.operation_id).status is OperationStatus.FAILED
    assert sink.records[-1]["data"]["exception"] == "RuntimeError"
    assert sink.records[-1]["data"]["action"]["params"] == {"option_name": "x"}


class NoStartTracker(OperationTracker):
    def start(self, action_type, target, context=None):
        return None


def test_tracking_failure_aborts_before_any_effect():
    executor, store, _ = make_executor(tracker=NoStartTracker())

    result = executor.execute({"type": "create_post", "params": {"title": "X"}}, admin_context())

    assert result.code is ErrorCode.OPERATION_ERROR
    assert store.read("post/1") is None
    assert executor.snapshots.list() == []


def test_unwritable_storage_dir_reports_operation_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    executor, store, _ = make_executor(storage_dir=blocker)

    result = executor.execute({"type": "create_post", "params": {"title": "X"}}, admin_context())

    assert result.code is ErrorCode.OPERATION_ERROR
    assert store.read("post/1") is None


def test_locked_target_times_out_with_operation_error():
    config = EngineConfig(storage_dir=None, lock_timeout_seconds=0)
    executor, store, _ = make_executor(config=config)
    created = create_post(executor, "Busy")
    target = created.data["target"]

    held = threading.Event()
    done = threading.Event()

    def hold_lock():
        with executor.locks.hold([target]):
            held.set()
            done.wait(5)

    worker = threading.Thread(target=hold_lock)
    worker.start()
    try:
        assert held.wait(5)
        result = executor.execute(
            {"type": "update_post", "params": {"post_id": created.data["post_id"], "title": "Blocked"}},
            admin_context(),
        )
    finally:
        done.set()
        worker.join(5)

    assert result.code is ErrorCode.OPERATION_ERROR
    assert "locked" in result.error
    assert store.read(target)["title"] == "Busy"
    assert len(executor.tracker.list()) == 1


def test_execute_code_action_requires_code_param():
    executor, _, _ = make_executor()

    result = executor.execute({"type": "execute_code", "params": {}}, admin_context())

    assert result.code is ErrorCode.PARAMETER_ERROR


def test_execute_code_action_runs_in_sandbox():
    executor, _, _ = make_executor()

    result = executor.execute({"type": "execute_code", "params": {"code": "print('hi')\n6 * 7"}}, admin_context())

    assert result.success
    assert result.data["output"] == "hi\n"
    assert result.data["return_value"] == 42
