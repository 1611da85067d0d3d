"""Summary: Core application services for Onebox.

Importance: Gives the API and CLI one place to query, manage, and re-classify mail.
Alternatives: Call the store and pipeline directly from each entrypoint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from onebox.config import AppConfig
from onebox.models import CATEGORIES, AccountStatus, MessageRecord
from onebox.notifier import Notifier
from onebox.orchestrator import SyncManager
from onebox.pipeline import IngestionPipeline
from onebox.replies import ReplySuggester, SuggestedReply
from onebox.storage.sqlite_store import SearchFilter, SearchResult, SqliteStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageService:
    """Summary: Read and delete access to mirrored messages.

    Importance: Backs listing, search, and detail views.
    Alternatives: Expose raw SQL queries to the API layer.
    """

    store: SqliteStore

    def list_messages(
        self,
        page: int = 1,
        limit: int = 20,
        category: str | None = None,
        query: str | None = None,
        account_id: str | None = None,
        folder: str | None = None,
    ) -> SearchResult:
        """Summary: List messages newest first with optional filters.

        Importance: Supports paging through every account's mail.
        Alternatives: Return everything and paginate client side.
        """

        return self.store.search(
            SearchFilter(
                query=query,
                account_id=account_id,
                folder=folder,
                category=category,
                page=page,
                limit=limit,
            )
        )

    def search(
        self,
        query: str,
        page: int = 1,
        limit: int = 20,
        account_id: str | None = None,
        folder: str | None = None,
    ) -> SearchResult:
        return self.list_messages(page=page, limit=limit, query=query, account_id=account_id, folder=folder)

    def get_message(self, record_id: str) -> MessageRecord | None:
        return self.store.get(record_id)

    def delete_message(self, record_id: str) -> bool:
        deleted = self.store.delete_by_id(record_id)
        if deleted:
            logger.info("Deleted message %s", record_id)
        return deleted


@dataclass(frozen=True)
class CategoryService:
    """Summary: Re-classification of stored messages.

    Importance: Lets operators apply a new classifier to existing mail.
    Alternatives: Re-sync the mailbox from scratch.
    """

    pipeline: IngestionPipeline

    def recategorize(self, record_ids: list[str]) -> list[dict[str, str]]:
        """Summary: Re-classify records and report each outcome.

        Importance: Unknown ids are reported per item instead of failing the batch.
        Alternatives: Reject the whole request when any id is unknown.
        """

        results = self.pipeline.reclassify(record_ids)
        return [
            {"id": record_id, "category": category}
            if category is not None
            else {"id": record_id, "error": "Email not found"}
            for record_id, category in results.items()
        ]


@dataclass(frozen=True)
class AccountService:
    """Summary: Configured accounts and their live sync state.

    Importance: Reports which mailboxes are connected or degraded.
    Alternatives: Read connection state from logs.
    """

    config: AppConfig
    manager: SyncManager | None = None

    def list_accounts(self) -> list[dict[str, Any]]:
        statuses = {status.account_id: status for status in self.statuses()}
        accounts = []
        for credentials in self.config.accounts:
            status = statuses.get(credentials.account_id)
            accounts.append(
                {
                    "accountId": credentials.account_id,
                    "host": credentials.host,
                    "isConnected": bool(status and status.is_connected),
                    "state": status.state.value if status else "disconnected",
                    "ingested": status.ingested if status else 0,
                    "skipped": status.skipped if status else 0,
                    "persistenceFailures": status.persistence_failures if status else 0,
                    "processingErrors": status.processing_errors if status else 0,
                    "lastError": status.last_error if status else None,
                }
            )
        return accounts

    def statuses(self) -> list[AccountStatus]:
        if self.manager is None:
            return []
        return self.manager.statuses()

    def reconnect(self, account_id: str) -> bool:
        if self.manager is None:
            return False
        return self.manager.reconnect(account_id)


@dataclass(frozen=True)
class StatsService:
    """Summary: Provides message counts by category and account health.

    Importance: Enables dashboards and quick health checks.
    Alternatives: Calculate counts directly in the API or UI.
    """

    store: SqliteStore
    accounts: AccountService

    def snapshot(self) -> dict[str, Any]:
        """Summary: Return totals, per-category counts, and connection counts.

        Importance: Provides the overview numbers in one call.
        Alternatives: Build a full analytics pipeline.
        """

        counts = self.store.count_by_category()
        statuses = self.accounts.statuses()
        return {
            "totalEmails": self.store.count(),
            "categoryStats": [
                {"category": category, "count": counts.get(category, 0)} for category in CATEGORIES
            ],
            "connectedAccounts": sum(1 for status in statuses if status.is_connected),
            "degradedAccounts": [status.account_id for status in statuses if status.is_degraded],
            "totalAccounts": len(self.accounts.config.accounts),
        }


@dataclass(frozen=True)
class NotificationService:
    """Summary: Connectivity checks for notification channels.

    Importance: Confirms Slack and webhook settings before leads arrive.
    Alternatives: Wait for a real Interested message.
    """

    notifier: Notifier

    def test_channels(self) -> dict[str, bool]:
        results = self.notifier.test_channels()
        logger.info("Notification test results: %s", results)
        return results


@dataclass(frozen=True)
class ReplyService:
    """Summary: Suggested replies for stored messages.

    Importance: Looks the message up once and hands it to the reply suggester.
    Alternatives: Let the API load the record and call the suggester itself.
    """

    store: SqliteStore
    suggester: ReplySuggester

    def suggest_reply(self, record_id: str, context: str | None = None) -> SuggestedReply | None:
        record = self.store.get(record_id)
        if record is None:
            return None
        return self.suggester.suggest(record, context)
