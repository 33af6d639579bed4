# Core engine: action model, permission gate, tracker, capture,
# dispatcher, snapshots, rollback and the code sandbox.
