"""Summary: IMAP account connection with an explicit sync state machine.

Importance: Owns the long-lived session, push-mode listening, and bounded recovery.
Alternatives: Open a short-lived IMAP connection per poll and skip IDLE entirely.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError

from onebox.events import (
    Connected,
    ConnectionFailed,
    Disconnected,
    NewMail,
    ReconnectDue,
    RefreshDue,
    SyncEvent,
    TransportError,
)
from onebox.exceptions import TransientConnectionError
from onebox.models import AccountCredentials, ConnectionState, EnvelopeAttributes, RawMessage
from onebox.timers import ScheduledTimer

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (OSError, IMAPClientError)
FETCH_ITEMS = ["BODY.PEEK[]", "FLAGS", "INTERNALDATE", "RFC822.SIZE"]

ClientFactory = Callable[[AccountCredentials, float], Any]

_ACTIVE_STATES = (
    ConnectionState.CONNECTED,
    ConnectionState.BACKFILLING,
    ConnectionState.LISTENING,
    ConnectionState.REFRESHING_LISTEN,
)


def default_client_factory(credentials: AccountCredentials, timeout: float) -> IMAPClient:
    """Summary: Open a TCP/TLS connection to the account's IMAP server.

    Importance: Keeps socket construction swappable for tests.
    Alternatives: Instantiate IMAPClient inline inside the connection.
    """

    return IMAPClient(
        credentials.host,
        port=credentials.port,
        ssl=credentials.secure,
        timeout=timeout,
    )


class AccountConnection:
    """Summary: One IMAP session for one account, driven as a state machine.

    Importance: Centralizes connect, backfill, IDLE listening, and reconnection.
    Alternatives: Spread connection flags and timers across callbacks.

    All socket work happens on the thread that calls next_event and the sync
    operations. Timers only enqueue markers that next_event acts upon, and
    disconnect may be called from any thread.
    """

    def __init__(
        self,
        credentials: AccountCredentials,
        folder: str = "INBOX",
        *,
        client_factory: ClientFactory = default_client_factory,
        idle_refresh_seconds: float = 29 * 60,
        reconnect_delay_seconds: float = 30.0,
        max_reconnect_attempts: int = 5,
        fetch_batch_size: int = 50,
        socket_timeout: float = 30.0,
        idle_poll_seconds: float = 1.0,
    ) -> None:
        """Summary: Initialize a disconnected account connection.

        Importance: Captures timing limits so tests can shrink them.
        Alternatives: Read timing constants from module globals.
        """

        self._credentials = credentials
        self._folder = folder
        self._client_factory = client_factory
        self._idle_refresh_seconds = idle_refresh_seconds
        self._reconnect_delay_seconds = reconnect_delay_seconds
        self._max_reconnect_attempts = max_reconnect_attempts
        self._fetch_batch_size = max(1, fetch_batch_size)
        self._socket_timeout = socket_timeout
        self._idle_poll_seconds = idle_poll_seconds

        self._lock = threading.RLock()
        self._events: queue.Queue[Any] = queue.Queue()
        self._refresh_timer = ScheduledTimer(f"idle-refresh:{credentials.account_id}")
        self._reconnect_timer = ScheduledTimer(f"reconnect:{credentials.account_id}")
        self._client: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._session = 0
        self._attempts = 0
        self._listen_requested = False
        self._watermark = 0
        self._last_error: str | None = None

    @property
    def account_id(self) -> str:
        return self._credentials.account_id

    @property
    def credentials(self) -> AccountCredentials:
        return self._credentials

    @property
    def folder(self) -> str:
        return self._folder

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def reconnect_attempts(self) -> int:
        with self._lock:
            return self._attempts

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    @property
    def watermark(self) -> int:
        """Highest server UID delivered by this connection."""

        with self._lock:
            return self._watermark

    def connect(self) -> None:
        """Summary: Open the session and select the primary folder.

        Importance: Is the only way out of Disconnected and the terminal Failed state.
        Alternatives: Connect lazily on the first fetch.

        Failures do not raise; they move the connection to Reconnecting.
        """

        with self._lock:
            if self._state in _ACTIVE_STATES or self._state == ConnectionState.CONNECTING:
                return
            if self._state == ConnectionState.FAILED:
                self._attempts = 0
            self._reconnect_timer.cancel()
            self._session += 1
            session = self._session
            self._state = ConnectionState.CONNECTING
        logger.info("Connecting %s to %s:%s", self.account_id, self._credentials.host, self._credentials.port)
        self._open_session(session, reconnected=False)

    def disconnect(self) -> None:
        """Summary: Tear down the session from any state.

        Importance: Cancels timers atomically with the state change so nothing resurrects it.
        Alternatives: Let pending timers observe a closed flag later.
        """

        with self._lock:
            self._session += 1
            self._refresh_timer.cancel()
            self._reconnect_timer.cancel()
            client = self._client
            self._client = None
            previous = self._state
            self._state = ConnectionState.DISCONNECTED
            self._listen_requested = False
            if previous != ConnectionState.DISCONNECTED:
                self._events.put(Disconnected(self.account_id))
        if client is not None:
            _close_quietly(client, graceful=previous not in (
                ConnectionState.LISTENING,
                ConnectionState.REFRESHING_LISTEN,
            ))
        if previous != ConnectionState.DISCONNECTED:
            logger.info("Disconnected %s (was %s)", self.account_id, previous.value)

    def backfill(self, since_days: int) -> list[RawMessage]:
        """Summary: Fetch every message in the folder from the trailing window.

        Importance: Performs the bounded historical sync before listening starts.
        Alternatives: Fetch the latest N messages regardless of date.

        Returns messages in server UID order; an empty window returns [].
        """

        session, client = self._begin(ConnectionState.CONNECTED, ConnectionState.BACKFILLING)
        since = (datetime.now(timezone.utc) - timedelta(days=since_days)).date()
        try:
            uids = sorted(client.search(["SINCE", since]))
            logger.info("Backfill %s: %s messages since %s", self.account_id, len(uids), since)
            messages = self._fetch_raw(client, uids)
        except TRANSPORT_ERRORS as exc:
            self._handle_transport_error(exc, session)
            raise TransientConnectionError(self.account_id, f"backfill failed: {exc}") from exc
        self._finish(session, ConnectionState.BACKFILLING, ConnectionState.CONNECTED)
        return messages

    def listen(self) -> None:
        """Summary: Enter push mode (IMAP IDLE) and arm the soft refresh timer.

        Importance: Lets the server announce arrivals instead of polling.
        Alternatives: Poll with NOOP or SEARCH on a fixed interval.
        """

        session, client = self._begin(ConnectionState.CONNECTED, ConnectionState.CONNECTED)
        try:
            client.idle()
        except TRANSPORT_ERRORS as exc:
            self._handle_transport_error(exc, session)
            raise TransientConnectionError(self.account_id, f"IDLE failed: {exc}") from exc
        with self._lock:
            if session != self._session:
                return
            self._state = ConnectionState.LISTENING
            self._listen_requested = True
            self._arm_refresh_locked()
        logger.info("Listening for new mail on %s/%s", self.account_id, self._folder)

    def fetch_new_arrivals(self) -> list[RawMessage]:
        """Summary: Leave IDLE and fetch unseen messages above the UID watermark.

        Importance: Turns a push signal into concrete messages without duplicates.
        Alternatives: Re-run the full backfill on every push.

        The connection stays in Connected; the caller resumes listening.
        """

        with self._lock:
            session = self._session
            client = self._client
            state = self._state
            if client is None or state not in (ConnectionState.CONNECTED, ConnectionState.LISTENING):
                raise RuntimeError(f"Connection {self.account_id} is not ready ({state.value})")
            self._refresh_timer.cancel()
        try:
            if state == ConnectionState.LISTENING:
                client.idle_done()
                with self._lock:
                    if session == self._session:
                        self._state = ConnectionState.CONNECTED
            watermark = self.watermark
            uids = sorted(uid for uid in client.search(["UNSEEN"]) if uid > watermark)
            logger.info("%s new arrivals on %s", len(uids), self.account_id)
            return self._fetch_raw(client, uids)
        except TRANSPORT_ERRORS as exc:
            self._handle_transport_error(exc, session)
            raise TransientConnectionError(self.account_id, f"fetch failed: {exc}") from exc

    def next_event(self, timeout: float | None = None) -> SyncEvent | None:
        """Summary: Wait for the next sync event for this account.

        Importance: Is the single consumer channel that drives the orchestrator.
        Alternatives: Register callbacks for each IMAP notification.

        While listening this also polls the IDLE socket. Returns None on timeout.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            listening = self.state == ConnectionState.LISTENING
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                if listening:
                    item = self._events.get_nowait()
                else:
                    item = self._events.get(timeout=remaining)
            except queue.Empty:
                item = None

            if isinstance(item, RefreshDue):
                self._refresh_listen(item.session)
                continue
            if isinstance(item, ReconnectDue):
                self._attempt_reconnect(item.session)
                continue
            if item is not None:
                return item

            if listening:
                poll = self._idle_poll_seconds if remaining is None else min(self._idle_poll_seconds, remaining)
                event = self._check_idle(poll)
                if event is not None:
                    return event
            if deadline is not None and time.monotonic() >= deadline:
                return None

    def _begin(self, expected: ConnectionState, target: ConnectionState) -> tuple[int, Any]:
        with self._lock:
            if self._client is None or self._state != expected:
                raise RuntimeError(f"Connection {self.account_id} is not ready ({self._state.value})")
            self._state = target
            return self._session, self._client

    def _finish(self, session: int, expected: ConnectionState, target: ConnectionState) -> None:
        with self._lock:
            if session == self._session and self._state == expected:
                self._state = target

    def _open_session(self, session: int, reconnected: bool) -> bool:
        client = None
        try:
            client = self._client_factory(self._credentials, self._socket_timeout)
            client.login(self._credentials.username, self._credentials.password)
            folder_info = client.select_folder(self._folder, readonly=True)
        except TRANSPORT_ERRORS as exc:
            if client is not None:
                _close_quietly(client, graceful=False)
            self._connection_attempt_failed(exc, session)
            return False

        stale = False
        resume = False
        with self._lock:
            if session != self._session or self._state not in (
                ConnectionState.CONNECTING,
                ConnectionState.RECONNECTING,
            ):
                stale = True
            else:
                self._client = client
                self._state = ConnectionState.CONNECTED
                self._attempts = 0
                self._last_error = None
                uid_next = (folder_info or {}).get(b"UIDNEXT")
                if self._watermark == 0 and isinstance(uid_next, int):
                    # Everything already in the folder belongs to backfill, not push.
                    self._watermark = uid_next - 1
                self._events.put(Connected(self.account_id, reconnected=reconnected))
                resume = reconnected and self._listen_requested
        if stale:
            _close_quietly(client, graceful=True)
            return False

        logger.info("Connected %s%s", self.account_id, " (reconnected)" if reconnected else "")
        if resume:
            try:
                self.listen()
            except TransientConnectionError:
                return False
            # Sweep anything that arrived while the session was down.
            self._events.put(NewMail(self.account_id, ()))
        return True

    def _connection_attempt_failed(self, exc: BaseException, session: int) -> None:
        with self._lock:
            if session != self._session or self._state not in (
                ConnectionState.CONNECTING,
                ConnectionState.RECONNECTING,
            ):
                return
            self._attempts += 1
            self._last_error = str(exc)
            attempts = self._attempts
            if attempts >= self._max_reconnect_attempts:
                self._enter_failed_locked()
                logger.error(
                    "Giving up on %s after %s failed connection attempts: %s",
                    self.account_id,
                    attempts,
                    exc,
                )
                return
            self._enter_reconnecting_locked()
            self._events.put(TransportError(self.account_id, str(exc), attempts))
        logger.warning(
            "Connection attempt %s/%s for %s failed: %s; retrying in %ss",
            attempts,
            self._max_reconnect_attempts,
            self.account_id,
            exc,
            self._reconnect_delay_seconds,
        )

    def _handle_transport_error(self, exc: BaseException, session: int) -> None:
        with self._lock:
            if session != self._session or self._state in (
                ConnectionState.DISCONNECTED,
                ConnectionState.FAILED,
                ConnectionState.RECONNECTING,
            ):
                return
            client = self._client
            self._client = None
            self._last_error = str(exc)
            self._session += 1
            self._enter_reconnecting_locked()
            self._events.put(TransportError(self.account_id, str(exc), self._attempts))
        if client is not None:
            _close_quietly(client, graceful=False)
        logger.warning(
            "Session for %s dropped: %s; reconnecting in %ss",
            self.account_id,
            exc,
            self._reconnect_delay_seconds,
        )

    def _enter_reconnecting_locked(self) -> None:
        self._refresh_timer.cancel()
        self._state = ConnectionState.RECONNECTING
        session = self._session
        self._reconnect_timer.schedule(
            self._reconnect_delay_seconds,
            lambda: self._events.put(ReconnectDue(session)),
        )

    def _enter_failed_locked(self) -> None:
        self._refresh_timer.cancel()
        self._reconnect_timer.cancel()
        self._state = ConnectionState.FAILED
        self._events.put(ConnectionFailed(self.account_id, self._attempts, self._last_error))

    def _attempt_reconnect(self, session: int) -> None:
        with self._lock:
            if session != self._session or self._state != ConnectionState.RECONNECTING:
                return
            attempt = self._attempts + 1
        logger.info("Reconnect attempt %s for %s", attempt, self.account_id)
        self._open_session(session, reconnected=True)

    def _arm_refresh_locked(self) -> None:
        session = self._session
        self._refresh_timer.schedule(
            self._idle_refresh_seconds,
            lambda: self._events.put(RefreshDue(session)),
        )

    def _refresh_listen(self, session: int) -> None:
        with self._lock:
            if session != self._session or self._state != ConnectionState.LISTENING:
                return
            self._state = ConnectionState.REFRESHING_LISTEN
            client = self._client
        try:
            _, responses = client.idle_done()
            client.idle()
        except TRANSPORT_ERRORS as exc:
            self._handle_transport_error(exc, session)
            return
        with self._lock:
            if session != self._session:
                return
            self._state = ConnectionState.LISTENING
            self._arm_refresh_locked()
        logger.debug("Refreshed IDLE for %s", self.account_id)
        arrivals = _exists_ids(responses)
        if arrivals:
            self._events.put(NewMail(self.account_id, arrivals))

    def _check_idle(self, timeout: float) -> SyncEvent | None:
        with self._lock:
            session = self._session
            client = self._client
        if client is None:
            return None
        try:
            responses = client.idle_check(timeout=timeout)
        except TRANSPORT_ERRORS as exc:
            self._handle_transport_error(exc, session)
            return None
        if any(_is_bye(response) for response in responses):
            self._handle_transport_error(OSError("server closed the session"), session)
            return None
        arrivals = _exists_ids(responses)
        if arrivals:
            logger.info("New mail signalled for %s", self.account_id)
            return NewMail(self.account_id, arrivals)
        return None

    def _fetch_raw(self, client: Any, uids: list[int]) -> list[RawMessage]:
        messages: list[RawMessage] = []
        for start in range(0, len(uids), self._fetch_batch_size):
            batch = uids[start : start + self._fetch_batch_size]
            response = client.fetch(batch, FETCH_ITEMS)
            for uid in batch:
                data = response.get(uid)
                content = data.get(b"BODY[]") if data else None
                if content is None:
                    logger.warning("No body returned for UID %s on %s; skipping", uid, self.account_id)
                    continue
                messages.append(
                    RawMessage(
                        content=content,
                        attributes=EnvelopeAttributes(
                            uid=uid,
                            flags=tuple(_decode_flag(flag) for flag in data.get(b"FLAGS", ())),
                            internal_date=data.get(b"INTERNALDATE"),
                            size=data.get(b"RFC822.SIZE"),
                        ),
                    )
                )
        if messages:
            with self._lock:
                self._watermark = max(self._watermark, messages[-1].attributes.uid)
        return messages


def _exists_ids(responses: list[Any]) -> tuple[int, ...]:
    ids: list[int] = []
    for response in responses:
        if len(response) >= 2 and response[1] == b"EXISTS" and isinstance(response[0], int):
            ids.append(response[0])
    return tuple(ids)


def _is_bye(response: Any) -> bool:
    return bool(response) and response[0] == b"BYE"


def _decode_flag(flag: Any) -> str:
    if isinstance(flag, bytes):
        return flag.decode("utf-8", errors="replace")
    return str(flag)


def _close_quietly(client: Any, graceful: bool) -> None:
    try:
        if graceful:
            client.logout()
        else:
            client.shutdown()
    except TRANSPORT_ERRORS as exc:
        logger.debug("Ignoring error while closing IMAP session: %s", exc)
