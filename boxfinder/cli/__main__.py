"""
BoxFinder CLI - inspect and drive the offline sync client.

Usage:
    boxfinder status [--json]
    boxfinder sync [--json]
    boxfinder queue list [--json]
    boxfinder queue clear
    boxfinder containers [--json]
    boxfinder search QUERY [--json]
"""

import argparse
import asyncio
import json
import logging
import sys

from boxfinder.app_state import AppContext
from boxfinder.config import ClientConfig, load_config
from boxfinder.errors import BoxFinderError
from boxfinder.logging_config import setup_boxfinder_logging
from boxfinder.types import is_temp_id

logger = logging.getLogger(__name__)


def build_context(config: ClientConfig) -> AppContext:
    return AppContext.create(config)


async def cmd_status(args, ctx: AppContext):
    """Show connectivity and pending sync state."""
    pending = await ctx.update_pending_sync_count()
    last_sync = await ctx.client.get_last_sync()
    status = {
        "online": not ctx.is_offline,
        "pending": pending,
        "last_sync": last_sync,
    }
    if args.json:
        print(json.dumps(status, indent=2))
        return
    print("BoxFinder Sync Status")
    print("=" * 40)
    print(f"Connection: {'online' if status['online'] else 'offline'}")
    print(f"Pending:    {pending}")
    print(f"Last sync:  {last_sync or 'never'}")


async def cmd_sync(args, ctx: AppContext):
    """Replay pending operations now."""
    if ctx.is_offline:
        print("Offline - pending changes stay queued.")
    outcome = await ctx.sync_pending_operations()
    pending = await ctx.update_pending_sync_count()
    if args.json:
        print(json.dumps({**outcome.to_dict(), "pending": pending}, indent=2))
        return
    print(f"Synced: {outcome.success}, failed: {outcome.failed}, still pending: {pending}")


async def cmd_queue(args, ctx: AppContext):
    """List or clear pending operations."""
    queue = ctx.client.queue
    if args.queue_action == "list":
        operations = await queue.get_operations()
        if args.json:
            print(json.dumps([op.to_dict() for op in operations], indent=2))
            return
        if not operations:
            print("No pending operations.")
            return
        print(f"Pending operations ({len(operations)}):")
        print("-" * 50)
        for op in operations:
            retries = f" (retries: {op.retries})" if op.retries else ""
            print(f"  {op.timestamp[:19]}  {op.kind.value:<6} {op.entity.value}:{op.entity_id}{retries}")

    elif args.queue_action == "clear":
        count = await queue.get_pending_count()
        await queue.clear()
        print(f"Discarded {count} pending operation(s).")


async def cmd_containers(args, ctx: AppContext):
    """List containers, from the cache when offline."""
    await ctx.load_containers()
    if args.json:
        print(json.dumps([c.to_dict() for c in ctx.containers], indent=2))
        return
    if not ctx.containers:
        print("No containers.")
        return
    for c in ctx.containers:
        marker = " (not synced)" if is_temp_id(c.id) else ""
        print(f"  {c.location:<6} {c.name}  [{c.item_count} items]{marker}")


async def cmd_search(args, ctx: AppContext):
    """Search items by name, description or tag."""
    await ctx.search_items(args.query)
    if args.json:
        print(json.dumps([i.to_dict() for i in ctx.search_results], indent=2))
        return
    if not ctx.search_results:
        print(f"No items matching '{args.query}'.")
        return
    for item in ctx.search_results:
        where = f" - {item.container_name}" if item.container_name else ""
        print(f"  {item.name}{where}")


COMMANDS = {
    "status": cmd_status,
    "sync": cmd_sync,
    "queue": cmd_queue,
    "containers": cmd_containers,
    "search": cmd_search,
}


async def run(args, config: ClientConfig):
    ctx = build_context(config)
    await ctx.start(auto_sync=False)
    try:
        await COMMANDS[args.command](args, ctx)
    finally:
        await ctx.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="boxfinder",
        description="Offline-first sync client for BoxFinder",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default from config)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_status = subparsers.add_parser("status", help="Show connectivity and pending changes")
    p_status.add_argument("--json", "-j", action="store_true")

    p_sync = subparsers.add_parser("sync", help="Replay pending changes now")
    p_sync.add_argument("--json", "-j", action="store_true")

    p_queue = subparsers.add_parser("queue", help="Inspect the pending-change queue")
    queue_sub = p_queue.add_subparsers(dest="queue_action", required=True)
    p_queue_list = queue_sub.add_parser("list", help="List pending operations")
    p_queue_list.add_argument("--json", "-j", action="store_true")
    queue_sub.add_parser("clear", help="Discard all pending operations")

    p_containers = subparsers.add_parser("containers", help="List containers")
    p_containers.add_argument("--json", "-j", action="store_true")

    p_search = subparsers.add_parser("search", help="Search items")
    p_search.add_argument("query")
    p_search.add_argument("--json", "-j", action="store_true")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config()
    setup_boxfinder_logging(args.log_level or config.log_level)

    try:
        asyncio.run(run(args, config))
    except BoxFinderError as e:
        logger.error(f"Command failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
