import json
from datetime import datetime, timedelta, timezone

from creatorengine.core.audit import AuditLogger
from creatorengine.core.delta_backup import Delta, deleted_marker
from creatorengine.core.snapshots import SnapshotKind, SnapshotManager, build_rollback_instructions, invert_delta

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def post_delta(title_before, title_after, post_id=1):
    target = f"post/{post_id}"
    before = {"id": post_id, "type": "post", "title": title_before, "meta": {}} if title_before else None
    after = {"id": post_id, "type": "post", "title": title_after, "meta": {}}
    return Delta(type="update_post", target=target, before=before, after=after)


# ------------------------------------------------------------------ #
# Inversion
# ------------------------------------------------------------------ #

def test_created_record_inverts_to_delete():
    instruction = invert_delta(post_delta(None, "New"))

    assert instruction == {"op": "delete", "target": "post/1", "kind": "post", "fields": None}


def test_updated_record_inverts_to_update_with_before_state():
    delta = post_delta("Old", "New")

    instruction = invert_delta(delta)

    assert instruction["op"] == "update"
    assert instruction["fields"] == delta.before


def test_deleted_record_inverts_to_create_with_record_kind():
    before = {"id": 4, "type": "page", "title": "About", "meta": {}}
    delta = Delta(type="delete_post", target="post/4", before=before, after=deleted_marker("post/4"))

    assert invert_delta(delta) == {"op": "create", "target": "post/4", "kind": "page", "fields": before}


def test_meta_and_option_targets_invert_with_their_own_kind():
    meta = Delta("update_meta", "post/1/meta/_color", None, {"object_id": 1, "meta_key": "_color", "meta_value": "red"})
    option = Delta("delete_option", "option/blogname",
                   {"option_name": "blogname", "option_value": "Site"}, deleted_marker("option/blogname"))

    assert invert_delta(meta)["kind"] == "meta"
    assert invert_delta(option) == {
        "op": "create",
        "target": "option/blogname",
        "kind": "option",
        "fields": {"option_name": "blogname", "option_value": "Site"},
    }


def test_nothing_to_undo_when_record_never_existed():
    delta = Delta("delete_meta", "post/1/meta/x", None, deleted_marker("post/1/meta/x"))

    assert invert_delta(delta) is None


def test_instructions_run_in_reverse_recording_order():
    deltas = [post_delta("A", "B", 1), post_delta("C", "D", 2), post_delta(None, "E", 3)]

    instructions = build_rollback_instructions(deltas)

    assert [i["target"] for i in instructions] == ["post/3", "post/2", "post/1"]
    assert [i["op"] for i in instructions] == ["delete", "update", "update"]


# ------------------------------------------------------------------ #
# Persistence
# ------------------------------------------------------------------ #

def test_snapshot_document_is_written_with_deltas_and_instructions(tmp_path):
    manager = SnapshotManager(tmp_path, clock=FakeClock())

    snapshot_id = manager.create_snapshot("chat-1", "msg-1", "op-1", [post_delta("Old", "New")])

    path = tmp_path / "snapshots" / f"{snapshot_id}.json"
    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["context_id"] == "chat-1"
    assert document["message_id"] == "msg-1"
    assert document["operation_id"] == "op-1"
    assert document["kind"] == "DELTA"
    assert document["operations"][0]["before"]["title"] == "Old"
    assert document["rollback_instructions"][0]["op"] == "update"
    assert document["storage_ref"] == str(path)
    assert document["size_bytes"] > 0
    assert document["created_at"] == T0.isoformat()

    reloaded = SnapshotManager(tmp_path).get(snapshot_id)
    assert reloaded.operations[0].after["title"] == "New"
    assert reloaded.kind is SnapshotKind.DELTA


def test_in_memory_manager_uses_memory_storage_ref():
    manager = SnapshotManager()

    snapshot_id = manager.create_snapshot(None, None, "op-1", [post_delta("A", "B")], kind=SnapshotKind.FULL)

    snapshot = manager.get(snapshot_id)
    assert snapshot.storage_ref == f"memory:{snapshot_id}"
    assert snapshot.kind is SnapshotKind.FULL


def test_list_filters_by_context_newest_first():
    clock = FakeClock()
    manager = SnapshotManager(clock=clock)
    first = manager.create_snapshot("chat-1", None, "op-1", [post_delta("A", "B")])
    clock.advance(minutes=1)
    manager.create_snapshot("chat-2", None, "op-2", [post_delta("A", "B")])
    clock.advance(minutes=1)
    third = manager.create_snapshot("chat-1", None, "op-3", [post_delta("A", "B")])

    assert [s.id for s in manager.list(context_id="chat-1")] == [third, first]
    assert len(manager.list()) == 3


# ------------------------------------------------------------------ #
# Retention
# ------------------------------------------------------------------ #

def test_expired_snapshots_are_soft_deleted_then_purged_after_grace(tmp_path):
    clock = FakeClock()
    records = []
    manager = SnapshotManager(tmp_path, retention_days=30, purge_grace_days=7,
                              audit=AuditLogger(records.append), clock=clock)
    old = manager.create_snapshot("chat-1", None, "op-1", [post_delta("A", "B")])

    clock.advance(days=31)
    manager.create_snapshot("chat-1", None, "op-2", [post_delta("B", "C")])

    assert manager.exists(old) is False
    assert manager.get(old).deleted is True
    assert manager.get(old).deleted_at == clock.now.isoformat()
    assert [s.id for s in manager.list(include_deleted=True)][-1] == old
    assert old not in [s.id for s in manager.list()]
    assert records[-1]["event"] == "snapshot_retention"
    assert records[-1]["data"]["expired"] == 1

    clock.advance(days=8)
    summary = manager.run_retention()

    assert summary["purged"] == 1
    assert manager.get(old) is None
    assert not (tmp_path / "snapshots" / f"{old}.json").exists()


def test_soft_deleted_snapshot_survives_within_grace_period():
    clock = FakeClock()
    manager = SnapshotManager(retention_days=1, purge_grace_days=7, clock=clock)
    snapshot_id = manager.create_snapshot(None, None, "op-1", [post_delta("A", "B")])

    clock.advance(days=2)
    assert manager.cleanup_old_snapshots() == 1
    clock.advance(days=3)
    assert manager.purge_deleted() == 0
    assert manager.get(snapshot_id).deleted is True


def test_size_limit_soft_deletes_oldest_and_keeps_newest():
    clock = FakeClock()
    manager = SnapshotManager(clock=clock)
    first = manager.create_snapshot(None, None, "op-1", [post_delta("A", "B")])
    size = manager.get(first).size_bytes
    manager.max_size_bytes = int(size * 1.5)

    clock.advance(minutes=1)
    second = manager.create_snapshot(None, None, "op-2", [post_delta("A", "B")])

    assert manager.exists(first) is False
    assert manager.exists(second) is True


def test_new_snapshot_is_kept_even_when_alone_over_budget():
    manager = SnapshotManager(max_size_bytes=10)

    snapshot_id = manager.create_snapshot(None, None, "op-1", [post_delta("A", "B")])

    assert manager.exists(snapshot_id)
