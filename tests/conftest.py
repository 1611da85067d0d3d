"""Summary: Shared fixtures for Onebox tests.

Importance: Replaces the IMAP server with an in-memory fake client.
Alternatives: Run tests against a real IMAP server in a container.
"""

from __future__ import annotations

import time
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Callable

import pytest

from onebox.config import AppConfig
from onebox.models import AccountCredentials


class FakeImapClient:
    """Summary: Minimal stand-in for imapclient.IMAPClient.

    Importance: Lets connection tests script arrivals, drops, and IDLE responses.
    Alternatives: Mock each method with unittest.mock.
    """

    def __init__(self, mailbox: dict[int, bytes]) -> None:
        self.mailbox = mailbox
        self.unseen: set[int] = set(mailbox)
        self.idle_responses: list[list[Any]] = []
        self.idle_done_responses: list[Any] = []
        self.calls: list[str] = []
        self.drop = False
        self.closed = False

    def login(self, username: str, password: str) -> None:
        self.calls.append("login")

    def select_folder(self, folder: str, readonly: bool = False) -> dict[bytes, Any]:
        self.calls.append("select_folder")
        return {b"UIDNEXT": max(self.mailbox, default=0) + 1, b"EXISTS": len(self.mailbox)}

    def search(self, criteria: list[Any]) -> list[int]:
        self.calls.append("search")
        self._check_drop()
        if criteria and criteria[0] == "UNSEEN":
            return sorted(self.unseen)
        return sorted(self.mailbox)

    def fetch(self, uids: list[int], items: list[str]) -> dict[int, dict[bytes, Any]]:
        self.calls.append("fetch")
        self._check_drop()
        return {
            uid: {
                b"BODY[]": self.mailbox[uid],
                b"FLAGS": (b"\\Recent",),
                b"INTERNALDATE": datetime(2026, 1, 15, 10, 0),
                b"RFC822.SIZE": len(self.mailbox[uid]),
            }
            for uid in uids
            if uid in self.mailbox
        }

    def idle(self) -> None:
        self.calls.append("idle")
        self._check_drop()

    def idle_check(self, timeout: float | None = None) -> list[Any]:
        self._check_drop()
        if self.idle_responses:
            return self.idle_responses.pop(0)
        time.sleep(min(timeout or 0.01, 0.01))
        return []

    def idle_done(self) -> tuple[bytes, list[Any]]:
        self.calls.append("idle_done")
        self._check_drop()
        responses, self.idle_done_responses = self.idle_done_responses, []
        return b"IDLE terminated", responses

    def logout(self) -> None:
        self.calls.append("logout")
        self.closed = True

    def shutdown(self) -> None:
        self.calls.append("shutdown")
        self.closed = True

    def deliver(self, uid: int, content: bytes) -> None:
        """Add a message and announce it on the IDLE channel."""

        self.mailbox[uid] = content
        self.unseen.add(uid)
        self.idle_responses.append([(uid, b"EXISTS")])

    def _check_drop(self) -> None:
        if self.drop:
            raise ConnectionResetError("connection reset by peer")


class FakeClientFactory:
    """Summary: Client factory that hands out fake clients sharing one mailbox.

    Importance: Counts connection attempts and can fail on demand.
    Alternatives: Patch default_client_factory with monkeypatch.
    """

    def __init__(self) -> None:
        self.mailbox: dict[int, bytes] = {}
        self.clients: list[FakeImapClient] = []
        self.calls = 0
        self.fail_next = 0
        self.always_fail = False

    @property
    def client(self) -> FakeImapClient:
        return self.clients[-1]

    def __call__(self, credentials: AccountCredentials, timeout: float) -> FakeImapClient:
        self.calls += 1
        if self.always_fail or self.fail_next > 0:
            self.fail_next = max(0, self.fail_next - 1)
            raise ConnectionRefusedError("connection refused")
        client = FakeImapClient(self.mailbox)
        self.clients.append(client)
        return client


def build_raw_email(
    subject: str = "Hello",
    body: str = "Hello there",
    sender: str = "Lead <lead@example.com>",
    to: str = "sales@acme.test",
    date: str = "Thu, 15 Jan 2026 10:00:00 +0000",
    html: str | None = None,
) -> bytes:
    """Summary: Build raw RFC 822 bytes for a test message.

    Importance: Keeps message fixtures readable in tests.
    Alternatives: Store .eml fixture files on disk.
    """

    message = EmailMessage()
    message["Subject"] = subject
    if sender:
        message["From"] = sender
    if to:
        message["To"] = to
    if date:
        message["Date"] = date
    if body:
        message.set_content(body)
    if html is not None:
        if body:
            message.add_alternative(html, subtype="html")
        else:
            message.set_content(html, subtype="html")
    return message.as_bytes()


@pytest.fixture
def credentials() -> AccountCredentials:
    return AccountCredentials(
        account_id="sales@acme.test",
        host="imap.acme.test",
        port=993,
        username="sales@acme.test",
        password="secret",
    )


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def raw_email() -> Callable[..., bytes]:
    return build_raw_email


def build_config(db_path: str = "onebox.db", **overrides: Any) -> AppConfig:
    """Summary: Build an AppConfig for tests.

    Importance: Ensures tests use isolated storage and no live services.
    Alternatives: Load AppConfig from environment variables.
    """

    values: dict[str, Any] = {
        "db_path": db_path,
        "ai_provider": "rules",
        "openai_api_key": None,
        "openai_model": "gpt-4o-mini",
        "ollama_url": "http://localhost:11434",
        "ollama_model": "llama3",
        "gemini_api_key": None,
        "gemini_model": "gemini-1.5-flash",
        "sync_days": 30,
        "sync_folder": "INBOX",
        "fetch_batch_size": 50,
        "idle_refresh_seconds": 1740.0,
        "reconnect_delay_seconds": 30.0,
        "max_reconnect_attempts": 5,
        "notification_timeout_seconds": 1.0,
        "slack_webhook_url": None,
        "webhook_url": None,
        "api_host": "127.0.0.1",
        "api_port": 8000,
        "api_key": "",
        "log_level": "INFO",
        "accounts": (),
    }
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def make_config() -> Callable[..., AppConfig]:
    return build_config
