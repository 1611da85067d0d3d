"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass

from onebox.ai import AiProviderFactory
from onebox.classifier import AiClassifier
from onebox.config import AppConfig
from onebox.connection import AccountConnection, ClientFactory, default_client_factory
from onebox.notifier import Notifier, build_channels
from onebox.orchestrator import SyncManager, SyncOrchestrator
from onebox.pipeline import IngestionPipeline
from onebox.replies import ReplySuggester
from onebox.services import (
    AccountService,
    CategoryService,
    MessageService,
    NotificationService,
    ReplyService,
    StatsService,
)
from onebox.storage.sqlite_store import SqliteStore


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared application context for sync loops and services.

    Importance: Reuses one store, classifier, and notifier across accounts.
    Alternatives: Rebuild dependencies for every account thread.
    """

    store: SqliteStore
    classifier: AiClassifier
    notifier: Notifier
    pipeline: IngestionPipeline
    suggester: ReplySuggester
    model_name: str
    config: AppConfig


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services for Onebox.

    Importance: Simplifies passing dependencies to UI or API layers.
    Alternatives: Use a dependency injection container.
    """

    messages: MessageService
    categories: CategoryService
    accounts: AccountService
    stats: StatsService
    notifications: NotificationService
    replies: ReplyService
    store: SqliteStore


def build_context(config: AppConfig) -> AppContext:
    """Summary: Build the shared context from configuration.

    Importance: Initializes storage and selects the AI provider once.
    Alternatives: Construct dependencies separately per request.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    factory = AiProviderFactory(config)
    provider = factory.build()
    classifier = AiClassifier(ai_provider=provider)
    notifier = Notifier(
        build_channels(
            config.slack_webhook_url,
            config.webhook_url,
            config.notification_timeout_seconds,
        ),
        timeout=config.notification_timeout_seconds,
    )
    pipeline = IngestionPipeline(classifier, store, notifier)
    return AppContext(
        store=store,
        classifier=classifier,
        notifier=notifier,
        pipeline=pipeline,
        suggester=ReplySuggester(provider, config.reply_booking_url, config.reply_context),
        model_name=factory.model_name(),
        config=config,
    )


def build_sync_manager(
    context: AppContext, client_factory: ClientFactory = default_client_factory
) -> SyncManager:
    """Summary: Build one orchestrator per configured account.

    Importance: Gives every mailbox its own connection and sync thread.
    Alternatives: Share one IMAP connection across accounts.
    """

    config = context.config
    orchestrators = []
    for credentials in config.accounts:
        connection = AccountConnection(
            credentials,
            config.sync_folder,
            client_factory=client_factory,
            idle_refresh_seconds=config.idle_refresh_seconds,
            reconnect_delay_seconds=config.reconnect_delay_seconds,
            max_reconnect_attempts=config.max_reconnect_attempts,
            fetch_batch_size=config.fetch_batch_size,
        )
        orchestrators.append(SyncOrchestrator(connection, context.pipeline, config.sync_days))
    return SyncManager(orchestrators)


def build_services(config: AppConfig, manager: SyncManager | None = None) -> AppServices:
    """Summary: Build core services from configuration.

    Importance: Provides a single construction path for the application.
    Alternatives: Instantiate services directly within the CLI entrypoint.
    """

    return services_for_context(build_context(config), manager)


def services_for_context(context: AppContext, manager: SyncManager | None = None) -> AppServices:
    accounts = AccountService(config=context.config, manager=manager)
    return AppServices(
        messages=MessageService(store=context.store),
        categories=CategoryService(pipeline=context.pipeline),
        accounts=accounts,
        stats=StatsService(store=context.store, accounts=accounts),
        notifications=NotificationService(notifier=context.notifier),
        replies=ReplyService(store=context.store, suggester=context.suggester),
        store=context.store,
    )
