"""
splitsync CLI - run and inspect synchronization from a terminal.

Usage:
    splitsync sync [--force-live] [--json]
    splitsync status [--entity TYPE] [--id N] [--json]
    splitsync conflicts [--json]
"""

import argparse
import json
import logging
import sys

from splitsync.config import SyncConfig, load_config
from splitsync.remote.http import HttpRemoteService
from splitsync.storage.sqlite import SQLiteStore
from splitsync.sync.coordinator import SyncCoordinator
from splitsync.sync.results import RunStatus
from splitsync.sync.transactions import TransactionCache
from splitsync.types import EntityType

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def build_coordinator(config: SyncConfig) -> SyncCoordinator:
    store = SQLiteStore(config.resolved_db_path())
    # status and conflicts only read the local store, so they run without credentials
    remote = HttpRemoteService(
        config.backend_url or "http://localhost",
        config.auth_token or "",
        timeout=config.request_timeout,
    )
    cache = TransactionCache(
        store,
        cooldown_minutes=config.transaction_cooldown_minutes,
        max_calls_per_day=config.max_transaction_calls_per_day,
    )
    return SyncCoordinator(store, remote, config.user_id, transaction_cache=cache)


def cmd_sync(args, coordinator: SyncCoordinator):
    """Run a full sync and print the outcome."""
    result = coordinator.trigger_sync(force_live_refresh=args.force_live)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print(f"Sync {result.status.value}: {result.succeeded} synced, {result.failed} failed")
        if result.error:
            print(f"  {result.error}")
        for entity_type, entity in result.entities.items():
            if not (entity.succeeded or entity.failed or entity.conflicts):
                continue
            line = (
                f"  {entity_type.value:<22} pushed={entity.pushed} pulled={entity.pulled} "
                f"failed={entity.failed}"
            )
            if entity.conflicts:
                line += f" conflicts={len(entity.conflicts)}"
            print(line)
        if result.live_fetch is not None:
            live = result.live_fetch
            print(f"  live transactions: {live.status.value} ({live.message or live.fetched})")

    if result.status == RunStatus.ERROR:
        sys.exit(1)


def cmd_status(args, coordinator: SyncCoordinator):
    """Show pending counts, or one record's sync status."""
    if args.id is not None:
        if not args.entity:
            print("✗ --id requires --entity")
            sys.exit(2)
        status = coordinator.get_sync_status(args.entity, args.id)
        if args.json:
            print(json.dumps({"entity": args.entity, "id": args.id, "status": status}))
        elif status is None:
            print(f"No {args.entity} with local id {args.id}")
        else:
            print(f"{args.entity}:{args.id} {status.value}")
        return

    counts = coordinator.pending_counts()
    if args.entity:
        counts = {EntityType(args.entity): counts.get(EntityType(args.entity), 0)}

    states = {et: coordinator.get_entity_state(et) for et in counts}
    if args.json:
        print(
            json.dumps(
                {
                    et.value: {
                        "pending": n,
                        "last_sync_timestamp": states[et].last_sync_timestamp,
                        "last_result": states[et].last_sync_result,
                    }
                    for et, n in counts.items()
                },
                indent=2,
            )
        )
        return

    print("Sync Status")
    print("=" * 40)
    for et, n in counts.items():
        last = states[et].last_sync_result or "never pulled"
        print(f"  {et.value:<22} pending={n:<4} {last}")


def cmd_conflicts(args, coordinator: SyncCoordinator):
    """List records parked in CONFLICT."""
    conflicts = coordinator.conflicts()
    if args.json:
        print(
            json.dumps(
                {
                    et.value: [
                        {"local_id": r.local_id, "remote_id": r.remote_id, "updated_at": r.updated_at}
                        for r in records
                    ]
                    for et, records in conflicts.items()
                },
                indent=2,
                default=str,
            )
        )
        return

    if not conflicts:
        print("✓ No conflicts")
        return
    for et, records in conflicts.items():
        print(f"{et.value}:")
        for r in records:
            print(f"  local_id={r.local_id} remote_id={r.remote_id} updated_at={r.updated_at}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="splitsync",
        description="Offline-first sync for shared expenses",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_sync = subparsers.add_parser("sync", help="Run a full sync")
    p_sync.add_argument(
        "--force-live", action="store_true", help="Refresh bank transactions despite cooldown"
    )
    p_sync.add_argument("--json", "-j", action="store_true")

    entity_choices = [et.value for et in EntityType]
    p_status = subparsers.add_parser("status", help="Show sync status")
    p_status.add_argument("--entity", "-e", choices=entity_choices)
    p_status.add_argument("--id", type=int, help="Local id of one record")
    p_status.add_argument("--json", "-j", action="store_true")

    p_conflicts = subparsers.add_parser("conflicts", help="List records in conflict")
    p_conflicts.add_argument("--json", "-j", action="store_true")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config()
    if args.command == "sync" and not config.has_credentials:
        print("✗ Backend not configured")
        print("  Set SPLITSYNC_BACKEND_URL and SPLITSYNC_AUTH_TOKEN")
        sys.exit(1)

    try:
        coordinator = build_coordinator(config)
    except (ValueError, OSError) as e:
        logger.error(f"Failed to initialize splitsync: {e}")
        sys.exit(1)

    try:
        if args.command == "sync":
            cmd_sync(args, coordinator)
        elif args.command == "status":
            cmd_status(args, coordinator)
        elif args.command == "conflicts":
            cmd_conflicts(args, coordinator)
    except KeyboardInterrupt:
        coordinator.cancel()
        print("\nInterrupted")
        sys.exit(130)
    finally:
        if isinstance(coordinator.remote, HttpRemoteService):
            coordinator.remote.close()


if __name__ == "__main__":
    main()
