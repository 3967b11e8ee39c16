"""Command line entry point for inspecting and syncing offline queues."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict

from idlesync import __version__
from idlesync.adapters.http_remote import HttpQueueService
from idlesync.adapters.json_store import JsonQueueStateStore
from idlesync.app.sync import OfflineQueueService, SyncConfigError, SyncConfiguration, load_sync_config
from idlesync.domain.sync import (
    ConflictUnresolvedError,
    OfflineQueueState,
    ResolutionStrategy,
    SyncError,
    project_indicator,
)
from idlesync.ports.remote import RemoteServiceError
from idlesync.ports.store import QueueStoreError
from idlesync.settings import SETTINGS
from idlesync.utils.telemetry import clear as telemetry_clear
from idlesync.utils.telemetry import iter_events as telemetry_iter
from idlesync.utils.telemetry import summarize as telemetry_summarize
from idlesync.utils.telemetry import tail as telemetry_tail


def _load_config(args: argparse.Namespace) -> SyncConfiguration:
    path = Path(args.config).expanduser() if getattr(args, "config", None) else SETTINGS.config_file
    return load_sync_config(path)


def _store(config: SyncConfiguration) -> JsonQueueStateStore:
    return JsonQueueStateStore(SETTINGS.state_dir, max_pending_operations=config.max_pending_operations)


def _load_state(args: argparse.Namespace) -> OfflineQueueState | None:
    config = _load_config(args)
    return _store(config).load(args.player)


def _emit(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _queue_cmd(args: argparse.Namespace) -> int:
    try:
        state = _load_state(args)
    except (SyncConfigError, QueueStoreError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    if state is None:
        print(f"No offline state for player {args.player}", file=sys.stderr)
        return 1
    queue = state.queue
    if args.json:
        _emit(queue.to_dict())
        return 0
    flags = []
    if queue.is_running:
        flags.append("running")
    if queue.is_paused:
        flags.append(f"paused ({queue.pause_reason})" if queue.pause_reason else "paused")
    print(f"Player {queue.player_id}, version {queue.version}, checksum {queue.checksum}")
    if flags:
        print("State: " + ", ".join(flags))
    if queue.current_task is not None:
        task = queue.current_task
        print(f"* {task.id} [{task.type}] {task.name} progress={task.progress:.0%}")
    if not queue.queued_tasks and queue.current_task is None:
        print("Queue is empty")
    for index, task in enumerate(queue.queued_tasks, start=1):
        print(f"{index}. {task.id} [{task.type}] {task.name} priority={task.priority} duration={task.duration}")
    return 0


def _status_cmd(args: argparse.Namespace) -> int:
    try:
        state = _load_state(args)
    except (SyncConfigError, QueueStoreError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    if state is None:
        print(f"No offline state for player {args.player}", file=sys.stderr)
        return 1
    state.refresh_pending_count()
    indicator = project_indicator(state.sync_status)
    payload = indicator.to_dict()
    payload["playerId"] = state.player_id
    payload["version"] = state.queue.version
    payload["pendingConflicts"] = len(state.pending_conflicts)
    payload["recentErrors"] = [record.error for record in state.sync_status.sync_errors]
    if args.json:
        _emit(payload)
        return 0
    print(f"{indicator.status.value}: {indicator.message}")
    print(f"Pending operations: {indicator.pending_count}")
    print(f"Last sync: {indicator.last_sync or 'never'}")
    for error in payload["recentErrors"]:
        print(f"  error: {error}")
    return 0


def _ops_cmd(args: argparse.Namespace) -> int:
    try:
        state = _load_state(args)
    except (SyncConfigError, QueueStoreError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    if state is None:
        print(f"No offline state for player {args.player}", file=sys.stderr)
        return 1
    operations = state.log.pending() if args.pending else list(state.log)
    if args.json:
        _emit({"playerId": state.player_id, "operations": [op.to_dict() for op in operations]})
        return 0
    if not operations:
        print("No operations recorded")
        return 0
    for op in operations:
        marker = "applied" if op.applied else "pending"
        suffix = f" task={op.task_id}" if op.task_id else ""
        print(f"{op.id} v{op.local_version} {op.type.value} {marker}{suffix}")
    return 0


def _sync_cmd(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        if args.strategy:
            config = SyncConfiguration(**{**config.to_dict(), "conflict_strategy": args.strategy})
        remote = HttpQueueService(
            args.url,
            token_env=args.token_env,
            batch_size=config.sync_batch_size,
            conflict_strategy=config.conflict_strategy.value,
            request_timeout=config.sync_timeout_seconds,
        )
    except (SyncConfigError, RemoteServiceError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    service = OfflineQueueService(_store(config), remote, SETTINGS, config=config)
    try:
        result = asyncio.run(service.trigger_manual_sync(args.player))
    except ConflictUnresolvedError as exc:
        if args.json:
            _emit({"success": False, "pendingConflicts": [conflict.to_dict() for conflict in exc.conflicts]})
        else:
            print(str(exc), file=sys.stderr)
        return 3
    except SyncError as exc:
        print(f"Sync failed: {exc}", file=sys.stderr)
        return 1
    finally:
        service.shutdown()
    if args.json:
        _emit(result.to_dict())
        return 0
    print(
        f"Synced player {args.player}: {len(result.applied_operations)} operations applied, "
        f"{len(result.conflicts)} conflicts, version {result.resolved_queue.version}"
    )
    return 0


def _config_cmd(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
    except SyncConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    _emit(config.to_dict())
    return 0


def _telemetry_cmd(args: argparse.Namespace) -> int:
    if args.telemetry_command == "report":
        if args.recent > 0:
            events = telemetry_tail(SETTINGS, args.recent, player_id=args.player)
        else:
            events = list(telemetry_iter(SETTINGS, player_id=args.player))
        _emit(telemetry_summarize(events))
        return 0
    if args.telemetry_command == "clear":
        telemetry_clear(SETTINGS)
        print("Telemetry log cleared")
        return 0
    if args.telemetry_command == "tail":
        for evt in telemetry_tail(SETTINGS, args.limit, player_id=args.player):
            print(json.dumps(evt, ensure_ascii=False))
        return 0
    print("Unsupported telemetry command", file=sys.stderr)
    return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="idlesync",
        description="Inspect and synchronise offline task queues",
    )
    parser.add_argument("--version", action="version", version=f"idlesync {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    queue_cmd = sub.add_parser("queue", help="Show the local queue for a player")
    queue_cmd.add_argument("player", help="Player id")
    queue_cmd.add_argument("--config", help="Sync config file (default: $IDLESYNC_HOME/sync.yaml)")
    queue_cmd.add_argument("--json", action="store_true", help="Emit machine-readable output")
    queue_cmd.set_defaults(func=_queue_cmd)

    status_cmd = sub.add_parser("status", help="Show the sync indicator for a player")
    status_cmd.add_argument("player", help="Player id")
    status_cmd.add_argument("--config", help="Sync config file (default: $IDLESYNC_HOME/sync.yaml)")
    status_cmd.add_argument("--json", action="store_true", help="Emit machine-readable output")
    status_cmd.set_defaults(func=_status_cmd)

    ops_cmd = sub.add_parser("ops", help="List recorded operations for a player")
    ops_cmd.add_argument("player", help="Player id")
    ops_cmd.add_argument("--pending", action="store_true", help="Only operations not yet confirmed")
    ops_cmd.add_argument("--config", help="Sync config file (default: $IDLESYNC_HOME/sync.yaml)")
    ops_cmd.add_argument("--json", action="store_true", help="Emit machine-readable output")
    ops_cmd.set_defaults(func=_ops_cmd)

    sync_cmd = sub.add_parser("sync", help="Run a manual sync against an HTTP endpoint")
    sync_cmd.add_argument("player", help="Player id")
    sync_cmd.add_argument("--url", required=True, help="Base URL of the queue service")
    sync_cmd.add_argument("--token-env", help="Environment variable holding a bearer token")
    sync_cmd.add_argument(
        "--strategy",
        choices=[strategy.value for strategy in ResolutionStrategy],
        help="Override the configured conflict strategy",
    )
    sync_cmd.add_argument("--config", help="Sync config file (default: $IDLESYNC_HOME/sync.yaml)")
    sync_cmd.add_argument("--json", action="store_true", help="Emit machine-readable output")
    sync_cmd.set_defaults(func=_sync_cmd)

    config_cmd = sub.add_parser("config", help="Print the effective sync configuration")
    config_cmd.add_argument("--config", help="Sync config file (default: $IDLESYNC_HOME/sync.yaml)")
    config_cmd.set_defaults(func=_config_cmd)

    telemetry_cmd = sub.add_parser("telemetry", help="Inspect local telemetry events")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    report_cmd = telemetry_sub.add_parser("report", help="Summarise recorded events")
    report_cmd.add_argument("--recent", type=int, default=0, help="Only the last N events")
    report_cmd.add_argument("--player", help="Only events about this player")
    tail_cmd = telemetry_sub.add_parser("tail", help="Print the last events")
    tail_cmd.add_argument("--limit", type=int, default=20)
    tail_cmd.add_argument("--player", help="Only events about this player")
    telemetry_sub.add_parser("clear", help="Delete the telemetry log")
    telemetry_cmd.set_defaults(func=_telemetry_cmd)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
