from creatorengine.core.audit import AuditLogger
from creatorengine.core.delta_backup import Delta
from creatorengine.core.exceptions import ContentStoreError, ErrorCode
from creatorengine.core.rollback import BACKUP_RECOMMENDATION, EXPIRED_MESSAGE, RollbackEngine
from creatorengine.core.snapshots import SnapshotKind, SnapshotManager
from creatorengine.core.tracker import OperationStatus, OperationTracker
from creatorengine.stores.memory_store import InMemoryContentStore


class FailingStore(InMemoryContentStore):
    """Rejects writes to the configured targets."""

    def __init__(self, failing=()):
        super().__init__()
        self.failing = set(failing)
        self.writes = []

    def update(self, target, fields):
        if target in self.failing:
            raise ContentStoreError(f"write to {target} rejected", status_code=500)
        self.writes.append(target)
        return super().update(target, fields)


def option_delta(name, before, after):
    target = f"option/{name}"
    return Delta(
        type="update_option",
        target=target,
        before={"option_name": name, "option_value": before},
        after={"option_name": name, "option_value": after},
    )


def make_engine(store, records=None):
    tracker = OperationTracker()
    audit = AuditLogger(records.append if records is not None else None)
    snapshots = SnapshotManager(audit=audit)
    return RollbackEngine(store, snapshots, tracker, audit), snapshots, tracker


def test_restore_replays_every_instruction_and_marks_operation_rolled_back():
    store = InMemoryContentStore()
    store.update("option/a", {"option_value": 2})
    store.update("option/b", {"option_value": 20})
    engine, snapshots, tracker = make_engine(store)
    op_id = tracker.start("execute_code", None)
    tracker.complete(None, operation_id=op_id)
    snapshot_id = snapshots.create_snapshot(
        None, None, op_id, [option_delta("a", 1, 2), option_delta("b", 10, 20)], kind=SnapshotKind.FULL
    )

    result = engine.restore(snapshot_id)

    assert result.success
    assert (result.applied, result.total) == (2, 2)
    assert store.read("option/a")["option_value"] == 1
    assert store.read("option/b")["option_value"] == 10
    assert tracker.get(op_id).status is OperationStatus.ROLLED_BACK
    assert result.to_dict()["previous_state"][0]["target"] == "option/a"


def test_failed_instruction_stops_replay_and_reports_partial_progress():
    store = FailingStore(failing={"option/a"})
    records = []
    engine, snapshots, tracker = make_engine(store, records)
    op_id = tracker.start("execute_code", None)
    tracker.complete(None, operation_id=op_id)
    # Instructions replay in reverse: b first, then a.
    snapshot_id = snapshots.create_snapshot(
        None, None, op_id, [option_delta("a", 1, 2), option_delta("b", 10, 20)]
    )

    result = engine.restore(snapshot_id)

    assert not result.success
    assert result.partial
    assert result.code is ErrorCode.ROLLBACK_FAILED
    assert (result.applied, result.total) == (1, 2)
    assert result.failed_instruction["target"] == "option/a"
    assert result.recommendation == BACKUP_RECOMMENDATION
    assert "write to option/a rejected" in result.error
    assert store.writes == ["option/b"]
    assert tracker.get(op_id).status is OperationStatus.COMPLETED
    assert records[-1]["event"] == "rollback_partial"
    assert records[-1]["data"]["applied"] == 1


def test_first_instruction_failure_is_not_partial():
    store = FailingStore(failing={"option/a"})
    engine, snapshots, _ = make_engine(store)
    snapshot_id = snapshots.create_snapshot(None, None, None, [option_delta("a", 1, 2)])

    result = engine.restore(snapshot_id)

    assert not result.success
    assert not result.partial
    assert result.applied == 0


def test_soft_deleted_snapshot_is_expired_and_store_untouched():
    store = FailingStore()
    engine, snapshots, _ = make_engine(store)
    snapshot_id = snapshots.create_snapshot(None, None, None, [option_delta("a", 1, 2)])
    snapshots.get(snapshot_id).deleted = True

    result = engine.restore(snapshot_id)

    assert not result.success
    assert result.code is ErrorCode.ROLLBACK_FAILED
    assert result.error == EXPIRED_MESSAGE
    assert store.writes == []


def test_unknown_snapshot_is_reported_as_expired():
    engine, _, _ = make_engine(InMemoryContentStore())

    result = engine.restore("does-not-exist")

    assert result.code is ErrorCode.ROLLBACK_FAILED
    assert result.error == EXPIRED_MESSAGE
    assert result.to_dict() == {
        "success": False,
        "snapshot_id": "does-not-exist",
        "error": EXPIRED_MESSAGE,
        "code": "rollback_failed",
        "recommendation": BACKUP_RECOMMENDATION,
    }


def test_undoing_a_create_whose_record_is_already_gone_still_succeeds():
    store = InMemoryContentStore()
    engine, snapshots, _ = make_engine(store)
    created = Delta("create_post", "post/7", None, {"id": 7, "type": "post", "title": "x", "meta": {}})
    snapshot_id = snapshots.create_snapshot(None, None, None, [created])

    result = engine.restore(snapshot_id)

    assert result.success
    assert result.applied == 1


def test_restoring_post_update_drops_meta_added_since_snapshot():
    store = InMemoryContentStore()
    target = store.create("post", {"title": "Old", "meta": {"keep": 1}})
    before = store.read(target)
    store.update(target, {"title": "New", "meta": {"added": 2}})
    engine, snapshots, _ = make_engine(store)
    snapshot_id = snapshots.create_snapshot(None, None, None, [Delta("update_post", target, before, store.read(target))])

    assert engine.restore(snapshot_id).success

    assert store.read(target)["title"] == "Old"
    assert store.read(target)["meta"] == {"keep": 1}


def test_updating_a_post_that_no_longer_exists_fails():
    store = InMemoryContentStore()
    engine, snapshots, _ = make_engine(store)
    before = {"id": 3, "type": "post", "title": "Old", "meta": {}}
    snapshot_id = snapshots.create_snapshot(
        None, None, None, [Delta("update_post", "post/3", before, dict(before, title="New"))]
    )

    result = engine.restore(snapshot_id)

    assert not result.success
    assert "no longer exists" in result.error
