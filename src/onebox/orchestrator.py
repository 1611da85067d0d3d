"""Summary: Per-account sync loops and the manager that runs them.

Importance: Drives backfill then push-mode listening and feeds the pipeline in order.
Alternatives: Run a single polling loop across every account.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from onebox.connection import AccountConnection
from onebox.events import Connected, ConnectionFailed, Disconnected, NewMail, SyncEvent, TransportError
from onebox.exceptions import NormalizationError, PersistenceError, TransientConnectionError
from onebox.models import AccountStatus, ConnectionState, RawMessage
from onebox.normalizer import normalize_message
from onebox.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Summary: Sync loop for one account.

    Importance: Hands every record to the pipeline synchronously, in delivery order.
    Alternatives: Buffer records and ingest them from a worker pool.
    """

    def __init__(
        self,
        connection: AccountConnection,
        pipeline: IngestionPipeline,
        sync_days: int = 30,
        event_timeout: float = 1.0,
        on_failed: Callable[[ConnectionFailed], None] | None = None,
    ) -> None:
        self._connection = connection
        self._pipeline = pipeline
        self._sync_days = sync_days
        self._event_timeout = event_timeout
        self._on_failed = on_failed
        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._backfilled = False
        self._ingested = 0
        self._skipped = 0
        self._persistence_failures = 0
        self._processing_errors = 0
        self._last_error: str | None = None

    @property
    def account_id(self) -> str:
        return self._connection.account_id

    @property
    def connection(self) -> AccountConnection:
        return self._connection

    def run(self) -> None:
        """Summary: Connect and process events until stopped or failed.

        Importance: Is the body of the account's sync thread.
        Alternatives: Drive the connection from an asyncio event loop.
        """

        logger.info("Starting sync for %s", self.account_id)
        self._connection.connect()
        while not self._stopped.is_set():
            event = self._connection.next_event(timeout=self._event_timeout)
            if event is None:
                continue
            if not self.handle_event(event):
                break
        logger.info("Sync loop for %s finished", self.account_id)

    def handle_event(self, event: SyncEvent) -> bool:
        """Summary: React to one sync event.

        Importance: Returns False when the loop should end.
        Alternatives: Dispatch events through a handler registry.
        """

        try:
            if isinstance(event, Connected):
                self._on_connected(event)
            elif isinstance(event, NewMail):
                self._on_new_mail()
            elif isinstance(event, TransportError):
                self._record_error(event.error)
            elif isinstance(event, ConnectionFailed):
                self._record_error(event.error or "connection failed")
                logger.error(
                    "Account %s failed after %s attempts; waiting for an explicit reconnect",
                    event.account_id,
                    event.attempts,
                )
                if self._on_failed is not None:
                    self._on_failed(event)
                return False
            elif isinstance(event, Disconnected):
                logger.info("Account %s disconnected: %s", event.account_id, event.reason)
        except TransientConnectionError as exc:
            # The connection is already reconnecting; the next Connected resumes work.
            self._record_error(str(exc))
            logger.warning("Sync step for %s interrupted: %s", self.account_id, exc)
        return True

    def stop(self) -> None:
        self._stopped.set()
        self._connection.disconnect()

    def status(self) -> AccountStatus:
        with self._lock:
            return AccountStatus(
                account_id=self.account_id,
                host=self._connection.credentials.host,
                state=self._connection.state,
                ingested=self._ingested,
                skipped=self._skipped,
                persistence_failures=self._persistence_failures,
                processing_errors=self._processing_errors,
                reconnect_attempts=self._connection.reconnect_attempts,
                last_error=self._last_error or self._connection.last_error,
            )

    def _on_connected(self, event: Connected) -> None:
        if not self._backfilled:
            messages = self._connection.backfill(self._sync_days)
            logger.info("Backfilled %s messages for %s", len(messages), self.account_id)
            self._emit_all(messages)
            self._backfilled = True
        elif self._connection.state == ConnectionState.CONNECTED:
            # Sessions that resumed listening queue their own sweep.
            self._emit_all(self._connection.fetch_new_arrivals())
        if self._connection.state == ConnectionState.CONNECTED:
            self._connection.listen()

    def _on_new_mail(self) -> None:
        if self._connection.state not in (ConnectionState.CONNECTED, ConnectionState.LISTENING):
            return
        self._emit_all(self._connection.fetch_new_arrivals())
        if self._connection.state == ConnectionState.CONNECTED:
            self._connection.listen()

    def _emit_all(self, messages: list[RawMessage]) -> None:
        for raw in messages:
            if self._stopped.is_set():
                return
            self._emit(raw)

    def _emit(self, raw: RawMessage) -> None:
        try:
            self._ingest_raw(raw)
        except Exception as exc:
            logger.exception("Unexpected error ingesting UID %s on %s", raw.attributes.uid, self.account_id)
            with self._lock:
                self._processing_errors += 1
                self._last_error = repr(exc)

    def _ingest_raw(self, raw: RawMessage) -> None:
        try:
            record = normalize_message(raw, self.account_id, self._connection.folder)
        except NormalizationError as exc:
            logger.warning("Skipping unparseable message on %s: %s", self.account_id, exc)
            record = None
        if record is None:
            with self._lock:
                self._skipped += 1
            return
        try:
            self._pipeline.ingest(record)
        except PersistenceError as exc:
            with self._lock:
                self._persistence_failures += 1
                self._last_error = str(exc)
            return
        with self._lock:
            self._ingested += 1

    def _record_error(self, error: str) -> None:
        with self._lock:
            self._last_error = error


class SyncManager:
    """Summary: Runs one orchestrator thread per configured account.

    Importance: Accounts sync independently; one failing mailbox never blocks another.
    Alternatives: Use a process per account.
    """

    def __init__(self, orchestrators: list[SyncOrchestrator]) -> None:
        self._orchestrators = {orchestrator.account_id: orchestrator for orchestrator in orchestrators}
        self._threads: dict[str, threading.Thread] = {}

    @property
    def account_ids(self) -> list[str]:
        return list(self._orchestrators)

    def start(self) -> None:
        for orchestrator in self._orchestrators.values():
            self._start_thread(orchestrator)
        logger.info("Started sync for %s account(s)", len(self._orchestrators))

    def stop(self, timeout: float = 5.0) -> None:
        """Summary: Disconnect every account and wait for the sync threads.

        Importance: Leaves no timers or sockets behind on shutdown.
        Alternatives: Rely on daemon threads dying with the process.
        """

        for orchestrator in self._orchestrators.values():
            orchestrator.stop()
        for account_id, thread in self._threads.items():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Sync thread for %s did not stop within %ss", account_id, timeout)

    def statuses(self) -> list[AccountStatus]:
        return [orchestrator.status() for orchestrator in self._orchestrators.values()]

    def degraded(self) -> list[AccountStatus]:
        return [status for status in self.statuses() if status.is_degraded]

    def reconnect(self, account_id: str, timeout: float = 5.0) -> bool:
        """Summary: Restart sync for an account that has given up reconnecting.

        Importance: Is the explicit external connect that leaves the Failed state.
        Alternatives: Keep retrying forever with a growing delay.

        Raises KeyError for unknown accounts. Returns False when the account is not failed.
        """

        orchestrator = self._orchestrators[account_id]
        if orchestrator.status().state != ConnectionState.FAILED:
            return False
        thread = self._threads.get(account_id)
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                return False
        logger.info("Reconnecting failed account %s", account_id)
        self._start_thread(orchestrator)
        return True

    def _start_thread(self, orchestrator: SyncOrchestrator) -> None:
        thread = threading.Thread(
            target=orchestrator.run,
            name=f"sync:{orchestrator.account_id}",
            daemon=True,
        )
        self._threads[orchestrator.account_id] = thread
        thread.start()
