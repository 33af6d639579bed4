"""
CreatorEngine Operator CLI
Inspect snapshots and operations, restore snapshots and run generated code.
Every command prints JSON.
"""

import argparse
import dataclasses
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from creatorengine import __version__
from creatorengine.config.settings import EngineConfig
from creatorengine.core.actions import ActionContext, Caller
from creatorengine.core.exceptions import ConfigError, ContentStoreError
from creatorengine.core.executor import ActionExecutor
from creatorengine.services.config_service import ConfigService
from creatorengine.stores.base import ContentStore
from creatorengine.stores.memory_store import InMemoryContentStore
from creatorengine.stores.rest_store import WordPressRestStore

logger = logging.getLogger(__name__)

OPERATOR = Caller(user_id="cli", roles=("administrator",))


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


# =====================================================================
#  ENGINE WIRING
# =====================================================================

def _load(args) -> tuple:
    """Returns (EngineConfig, ConfigService or None)."""
    service = None
    if not args.config:
        config = EngineConfig()
    else:
        service = ConfigService(config_path=Path(args.config))
        config = service.load()

    if args.storage_dir:
        config = dataclasses.replace(config, storage_dir=Path(args.storage_dir).expanduser())
    return config, service


def _build_store(args, service: Optional[ConfigService]) -> ContentStore:
    wordpress = dict(service.get("wordpress", {}) if service else {})
    if args.site:
        wordpress["site_url"] = args.site
    if args.user:
        wordpress["username"] = args.user
    password = os.environ.get("CREATORENGINE_APP_PASSWORD")
    if password:
        wordpress["app_password"] = password

    if not wordpress.get("site_url"):
        logger.info("No WordPress site configured; using an in-memory content store")
        return InMemoryContentStore()

    return WordPressRestStore.from_dict(wordpress)


def _build_executor(args) -> ActionExecutor:
    config, service = _load(args)
    return ActionExecutor(_build_store(args, service), config=config)


# =====================================================================
#  COMMANDS
# =====================================================================

def cmd_snapshots(args, executor: ActionExecutor) -> int:
    manager = executor.snapshots

    if args.snapshots_command == "list":
        snapshots = manager.list(context_id=args.context, include_deleted=args.all)
        _print([
            {
                "id": s.id,
                "context_id": s.context_id,
                "operation_id": s.operation_id,
                "kind": s.kind.value,
                "deltas": len(s.operations),
                "size_bytes": s.size_bytes,
                "deleted": s.deleted,
                "created_at": s.created_at,
            }
            for s in snapshots
        ])
        return 0

    if args.snapshots_command == "show":
        snapshot = manager.get(args.snapshot_id)
        if snapshot is None:
            _print({"success": False, "error": f"Snapshot not found: {args.snapshot_id}"})
            return 1
        _print(snapshot.to_dict())
        return 0

    if args.snapshots_command == "cleanup":
        _print(manager.run_retention())
        return 0

    return 1


def cmd_operations(args, executor: ActionExecutor) -> int:
    if args.operations_command == "show":
        operation = executor.tracker.get(args.operation_id)
        if operation is None:
            _print({"success": False, "error": f"Operation not found: {args.operation_id}"})
            return 1
        _print(operation.to_dict())
        return 0

    if args.operations_command == "recover":
        _print({"recovered": executor.recover_interrupted(args.older_than)})
        return 0

    return 1


def cmd_restore(args, executor: ActionExecutor) -> int:
    result = executor.restore(args.snapshot_id)
    _print(result.to_dict())
    return 0 if result.success else 1


def cmd_run_code(args, executor: ActionExecutor) -> int:
    path = Path(args.file)
    try:
        source = path.read_text(encoding="utf-8")
    except OSError as e:
        _print({"success": False, "error": f"Cannot read {path}: {e}"})
        return 1

    context = ActionContext(context_id=args.context, caller=OPERATOR, targets=list(args.target or []))
    result = executor.run_code(source, context)
    _print(result.to_dict())
    return 0 if result.success else 1


def cmd_config(args, executor: ActionExecutor) -> int:
    _print(executor.config.to_dict())
    return 0


# =====================================================================
#  CLI ENTRY WITH SUBCOMMANDS
# =====================================================================

def _create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="creatorengine",
        description="CreatorEngine: inspect and restore snapshots of AI-driven content changes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  creatorengine snapshots list --context chat-42
  creatorengine snapshots show 3f2a...
  creatorengine restore 3f2a...
  creatorengine --site https://example.com --user admin run-code fix.py --target post/12
        """
    )

    # Global options
    parser.add_argument("--version", action="version", version=f"creatorengine {__version__}")
    parser.add_argument("--config", type=str, help="Engine config file (.json, .yml or .yaml)")
    parser.add_argument("--storage-dir", type=str, help="Override the snapshot/operation storage directory")
    parser.add_argument("--site", type=str, help="WordPress site URL (password from CREATORENGINE_APP_PASSWORD)")
    parser.add_argument("--user", type=str, help="WordPress username")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to stderr")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # snapshots
    parser_snapshots = subparsers.add_parser("snapshots", help="List, show or clean up snapshots")
    snapshots_sub = parser_snapshots.add_subparsers(dest="snapshots_command")
    parser_list = snapshots_sub.add_parser("list", help="List snapshots, newest first")
    parser_list.add_argument("--context", type=str, help="Only snapshots for this conversation context")
    parser_list.add_argument("--all", action="store_true", help="Include soft-deleted snapshots")
    parser_show = snapshots_sub.add_parser("show", help="Show one snapshot")
    parser_show.add_argument("snapshot_id")
    snapshots_sub.add_parser("cleanup", help="Apply retention now")

    # operations
    parser_operations = subparsers.add_parser("operations", help="Inspect tracked operations")
    operations_sub = parser_operations.add_subparsers(dest="operations_command")
    parser_op_show = operations_sub.add_parser("show", help="Show one operation and its step log")
    parser_op_show.add_argument("operation_id")
    parser_recover = operations_sub.add_parser("recover", help="Fail operations left running by a crash")
    parser_recover.add_argument("--older-than", type=float, default=300, help="Seconds (default: 300)")

    # restore
    parser_restore = subparsers.add_parser("restore", help="Roll back a snapshot")
    parser_restore.add_argument("snapshot_id")

    # run-code
    parser_run = subparsers.add_parser("run-code", help="Run a generated-code file in the sandbox")
    parser_run.add_argument("file")
    parser_run.add_argument("--target", action="append", help="Target id to snapshot around the run (repeatable)")
    parser_run.add_argument("--context", type=str, help="Conversation context id")

    # config
    subparsers.add_parser("config", help="Show the effective engine configuration")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with subcommand routing."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command is None:
        parser.print_help()
        return 1

    try:
        executor = _build_executor(args)
    except (ConfigError, ContentStoreError) as e:
        _print({"success": False, "error": str(e)})
        return 2

    # Route to subcommand handlers
    if args.command == "snapshots" and args.snapshots_command:
        return cmd_snapshots(args, executor)
    elif args.command == "operations" and args.operations_command:
        return cmd_operations(args, executor)
    elif args.command == "restore":
        return cmd_restore(args, executor)
    elif args.command == "run-code":
        return cmd_run_code(args, executor)
    elif args.command == "config":
        return cmd_config(args, executor)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
