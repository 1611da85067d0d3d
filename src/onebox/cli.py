"""Summary: Command-line interface for Onebox.

Importance: Runs the sync loops and inspects the local mirror without the API.
Alternatives: Use a CLI framework like Typer or Click.
"""

from __future__ import annotations

import argparse
import json
import logging
import threading

from onebox.app import build_context, build_sync_manager, services_for_context
from onebox.config import AppConfig
from onebox.models import CATEGORIES, ConnectionState, MessageRecord
from onebox.orchestrator import SyncManager
from onebox.storage.sqlite_store import SearchResult

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="Onebox CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Backfill and listen on every configured account")
    sync.add_argument("--status-interval", type=float, default=300.0)
    sync.add_argument(
        "--retry-failed",
        action="store_true",
        help="Reconnect accounts that gave up, once per status interval",
    )

    list_messages = subparsers.add_parser("list-messages", help="List recent messages")
    list_messages.add_argument("--limit", type=int, default=20)
    list_messages.add_argument("--page", type=int, default=1)
    list_messages.add_argument("--category", type=str, choices=CATEGORIES, default=None)
    list_messages.add_argument("--account", type=str, default=None)
    list_messages.add_argument("--folder", type=str, default=None)

    search = subparsers.add_parser("search", help="Search messages by text")
    search.add_argument("query", type=str)
    search.add_argument("--limit", type=int, default=20)
    search.add_argument("--account", type=str, default=None)

    show = subparsers.add_parser("show", help="Show one message as JSON")
    show.add_argument("email_id", type=str)

    delete = subparsers.add_parser("delete", help="Delete a message from the local mirror")
    delete.add_argument("email_id", type=str)

    recategorize = subparsers.add_parser("recategorize", help="Re-classify stored messages")
    recategorize.add_argument("email_ids", nargs="+", type=str)

    suggest = subparsers.add_parser("suggest-reply", help="Draft a reply to a stored message")
    suggest.add_argument("email_id", type=str)
    suggest.add_argument("--context", type=str, default=None)

    subparsers.add_parser("stats", help="Show message counts by category")
    subparsers.add_parser("accounts", help="List configured accounts")
    subparsers.add_parser("test-notifications", help="Send a test payload to every channel")
    return parser


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives sync and inspection without a UI.
    Alternatives: Invoke services via an HTTP API.
    """

    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
    )
    context = build_context(config)

    if args.command == "sync":
        _run_sync(context, args.status_interval, args.retry_failed)
        return

    services = services_for_context(context)

    if args.command == "list-messages":
        result = services.messages.list_messages(
            page=args.page,
            limit=args.limit,
            category=args.category,
            account_id=args.account,
            folder=args.folder,
        )
        _print_page(result)
        return

    if args.command == "search":
        _print_page(services.messages.search(args.query, limit=args.limit, account_id=args.account))
        return

    if args.command == "show":
        record = services.messages.get_message(args.email_id)
        if record is None:
            print(f"Email {args.email_id} not found.")
            return
        print(json.dumps(record.to_dict(), indent=2))
        return

    if args.command == "delete":
        if services.messages.delete_message(args.email_id):
            print(f"Deleted {args.email_id}.")
        else:
            print(f"Email {args.email_id} not found.")
        return

    if args.command == "recategorize":
        for result in services.categories.recategorize(args.email_ids):
            print(f"{result['id']}: {result.get('category') or result.get('error')}")
        return

    if args.command == "suggest-reply":
        reply = services.replies.suggest_reply(args.email_id, args.context)
        if reply is None:
            print(f"Email {args.email_id} not found.")
            return
        print(f"Tone: {reply.tone} ({reply.source})")
        print(reply.text)
        return

    if args.command == "stats":
        snapshot = services.stats.snapshot()
        print(f"Total emails: {snapshot['totalEmails']}")
        for entry in snapshot["categoryStats"]:
            print(f"  {entry['category']}: {entry['count']}")
        return

    if args.command == "accounts":
        if not config.accounts:
            print("No accounts configured. Set EMAIL_USER_1 and EMAIL_PASSWORD_1.")
            return
        for account in services.accounts.list_accounts():
            print(f"{account['accountId']} ({account['host']})")
        return

    if args.command == "test-notifications":
        results = services.notifications.test_channels()
        if not results:
            print("No notification channels configured.")
            return
        for name, delivered in results.items():
            print(f"{name}: {'ok' if delivered else 'failed'}")
        return


def _run_sync(context, status_interval: float, retry_failed: bool = False) -> None:
    if not context.config.accounts:
        print("No accounts configured. Set EMAIL_USER_1 and EMAIL_PASSWORD_1.")
        return
    manager = build_sync_manager(context)
    manager.start()
    stop = threading.Event()
    try:
        while not stop.wait(status_interval):
            _report_statuses(manager, retry_failed)
    except KeyboardInterrupt:
        print("Stopping sync...")
    finally:
        manager.stop()


def _report_statuses(manager: SyncManager, retry_failed: bool) -> list[str]:
    """Log each account's status and optionally restart failed accounts.

    Returns the ids of accounts that were restarted.
    """

    restarted: list[str] = []
    for status in manager.statuses():
        logger.info(
            "%s: %s, %s ingested, %s skipped, %s persistence failures, %s processing errors",
            status.account_id,
            status.state.value,
            status.ingested,
            status.skipped,
            status.persistence_failures,
            status.processing_errors,
        )
        if retry_failed and status.state == ConnectionState.FAILED:
            logger.warning("Reconnecting failed account %s", status.account_id)
            if manager.reconnect(status.account_id):
                restarted.append(status.account_id)
    return restarted


def _print_page(result: SearchResult) -> None:
    for record in result.records:
        print(_format_line(record))
    print(f"{len(result.records)} of {result.total_count} messages.")


def _format_line(record: MessageRecord) -> str:
    return f"{record.id} | {record.date:%Y-%m-%d %H:%M} | {record.category} | {record.sender} | {record.subject}"


if __name__ == "__main__":
    run_cli()
