"""
Operator command line.

Usage:
    python -m scripts.cli migrate [--dry-run] [--batch-size N] [--no-backup]
    python -m scripts.cli backup [--kind full|incremental] [--description TEXT]
    python -m scripts.cli restore --id SNAPSHOT_ID
    python -m scripts.cli list-backups | verify --id ID | delete-backup --id ID | cleanup
    python -m scripts.cli sync [--push SLUG]
    python -m scripts.cli clear-queue [--include-failed]
    python -m scripts.cli status
    python -m scripts.cli report [--format json|csv|html|table]
    python -m scripts.cli init-db
    python -m scripts.cli serve

Exit code is 0 when the operation succeeded and 1 otherwise.
"""

from typing import List, Optional
import argparse
import asyncio
import json
import logging
import signal
import sys

from core.config import settings
from core.database import dispose_engine
from core.exceptions import ContentSyncException
from core.logging import setup_logging
from operations.runner import build_runner
from schemas.results import OperationResult
from scripts.init_db import init_database

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="content-sync", description="Hashnode content migration and sync")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    migrate = sub.add_parser("migrate", help="Import platform posts into the content store")
    migrate.add_argument("--dry-run", action="store_true", help="Plan without writing")
    migrate.add_argument("--batch-size", type=int, default=None)
    migrate.add_argument("--no-backup", action="store_true", help="Skip the pre-migration snapshot")

    backup = sub.add_parser("backup", help="Create a snapshot")
    backup.add_argument("--kind", choices=["full", "incremental"], default="full")
    backup.add_argument("--description", default="")

    restore = sub.add_parser("restore", help="Restore a snapshot")
    restore.add_argument("--id", dest="snapshot_id", required=True)

    sub.add_parser("list-backups", help="List snapshots, newest first")

    verify = sub.add_parser("verify", help="Check a snapshot checksum")
    verify.add_argument("--id", dest="snapshot_id", required=True)

    delete = sub.add_parser("delete-backup", help="Delete a snapshot")
    delete.add_argument("--id", dest="snapshot_id", required=True)

    sub.add_parser("cleanup", help="Apply snapshot retention")

    sync = sub.add_parser("sync", help="Run one sync pass")
    sync.add_argument("--push", metavar="SLUG", default=None, help="Push one local article first")

    clear = sub.add_parser("clear-queue", help="Drop queued sync items")
    clear.add_argument("--include-failed", action="store_true", help="Also drop permanently failed items")

    sub.add_parser("status", help="Show sync and content status")

    report = sub.add_parser("report", help="Render the latest run report")
    report.add_argument("--format", choices=["json", "csv", "html", "table"], default="table")

    sub.add_parser("init-db", help="Create database tables")
    sub.add_parser("serve", help="Run the HTTP API")

    return parser


def _install_cancel_handler(cancel_event: asyncio.Event):
    """First Ctrl-C requests cancellation; the operation stops at the next record"""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        loop.add_signal_handler(signal.SIGTERM, cancel_event.set)
    except NotImplementedError:
        logger.debug("Signal handlers unavailable on this platform")


async def run_command(args: argparse.Namespace) -> OperationResult:
    if args.command == "init-db":
        await init_database()
        return OperationResult(operation="init-db", success=True, status="success", message="Tables created")

    runner = build_runner()
    cancel_event = asyncio.Event()
    _install_cancel_handler(cancel_event)

    try:
        if args.command == "migrate":
            return await runner.migrate(
                dry_run=args.dry_run,
                batch_size=args.batch_size,
                backup=False if args.no_backup else None,
                cancel_event=cancel_event,
            )
        if args.command == "backup":
            return await runner.backup(args.kind, args.description)
        if args.command == "restore":
            return await runner.restore(args.snapshot_id, cancel_event=cancel_event)
        if args.command == "list-backups":
            return await runner.list_snapshots()
        if args.command == "verify":
            return await runner.verify(args.snapshot_id)
        if args.command == "delete-backup":
            return await runner.delete_snapshot(args.snapshot_id)
        if args.command == "cleanup":
            return await runner.cleanup()
        if args.command == "sync":
            return await runner.run_sync(push_slug=args.push)
        if args.command == "clear-queue":
            return await runner.clear_queue(include_failed=args.include_failed)
        if args.command == "status":
            return await runner.status()
        if args.command == "report":
            return await runner.report(args.format)
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await dispose_engine()


def print_result(result: OperationResult):
    # Rendered reports go out as-is so they can be redirected to a file
    if result.operation == "report" and result.success:
        print(result.data["content"])
        return
    print(json.dumps(result.model_dump(mode="json"), indent=2, default=str))


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "serve":
        import uvicorn
        uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
        return 0

    try:
        result = asyncio.run(run_command(args))
    except ContentSyncException as e:
        logger.error(f"{args.command} failed: {e.summary()}", extra={"error_context": e.to_dict()})
        return 1

    print_result(result)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
