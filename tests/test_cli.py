"""Summary: Tests for the command-line interface.

Importance: Ensures inspection commands read the local mirror correctly.
Alternatives: Exercise the CLI manually in a shell.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest

from onebox.cli import _report_statuses, build_parser, run_cli
from onebox.config import AppConfig
from onebox.models import INTERESTED, AccountStatus, ConnectionState, MessageRecord
from onebox.storage.sqlite_store import SqliteStore


def _use_config(monkeypatch: pytest.MonkeyPatch, config: AppConfig) -> None:
    monkeypatch.setattr(AppConfig, "from_env", staticmethod(lambda: config))


def _seed(db_path: str) -> None:
    store = SqliteStore(db_path)
    store.initialize()
    store.upsert(
        MessageRecord(
            id="sales@acme.test-7",
            account_id="sales@acme.test",
            folder="INBOX",
            subject="Interested in your platform",
            body="Pricing please",
            sender="lead@example.com",
            recipients=("sales@acme.test",),
            date=datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc),
            server_uid=7,
        )
    )


def test_parser_rejects_unknown_category() -> None:
    """Summary: Verify category filters are limited to known categories.

    Importance: Catches typos before a query silently returns nothing.
    Alternatives: Accept any string and return an empty page.
    """

    parser = build_parser()
    args = parser.parse_args(["list-messages", "--category", INTERESTED])
    assert args.category == INTERESTED
    with pytest.raises(SystemExit):
        parser.parse_args(["list-messages", "--category", "Hot"])


def test_list_and_recategorize(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    make_config: Callable[..., AppConfig],
) -> None:
    """Summary: Verify listing prints stored messages and recategorize updates them.

    Importance: Confirms the CLI shares storage with the sync loop.
    Alternatives: Require the API to inspect messages.
    """

    db_path = str(tmp_path / "test.db")
    _seed(db_path)
    _use_config(monkeypatch, make_config(db_path))

    run_cli(["list-messages"])
    output = capsys.readouterr().out
    assert "sales@acme.test-7 | 2026-01-15 09:30 | Uncategorized" in output
    assert "1 of 1 messages." in output

    run_cli(["recategorize", "sales@acme.test-7", "missing"])
    output = capsys.readouterr().out
    assert f"sales@acme.test-7: {INTERESTED}" in output
    assert "missing: Email not found" in output


def test_accounts_and_sync_without_accounts(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    make_config: Callable[..., AppConfig],
) -> None:
    """Summary: Verify commands explain how to configure accounts when none exist.

    Importance: Gives first-time users a clear next step.
    Alternatives: Start a sync loop with nothing to do.
    """

    _use_config(monkeypatch, make_config(str(tmp_path / "test.db")))
    run_cli(["accounts"])
    run_cli(["sync"])
    run_cli(["test-notifications"])
    output = capsys.readouterr().out
    assert output.count("No accounts configured.") == 2
    assert "No notification channels configured." in output


class _Manager:
    def __init__(self, statuses: list[AccountStatus]) -> None:
        self._statuses = statuses
        self.reconnected: list[str] = []

    def statuses(self) -> list[AccountStatus]:
        return self._statuses

    def reconnect(self, account_id: str) -> bool:
        self.reconnected.append(account_id)
        return True


def test_status_loop_reconnects_failed_accounts_only_when_asked() -> None:
    """Summary: Verify --retry-failed restarts failed accounts and nothing else.

    Importance: Gives unattended sync runs a way out of the Failed state.
    Alternatives: Require an API call to reconnect each account.
    """

    manager = _Manager(
        [
            AccountStatus("sales@acme.test", "imap.acme.test", ConnectionState.FAILED),
            AccountStatus("ops@acme.test", "imap.acme.test", ConnectionState.LISTENING),
        ]
    )
    assert build_parser().parse_args(["sync", "--retry-failed"]).retry_failed
    assert _report_statuses(manager, retry_failed=False) == []
    assert manager.reconnected == []
    assert _report_statuses(manager, retry_failed=True) == ["sales@acme.test"]
    assert manager.reconnected == ["sales@acme.test"]


def test_suggest_reply_command(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    make_config: Callable[..., AppConfig],
) -> None:
    """Summary: Verify the CLI prints a drafted reply or a not-found message.

    Importance: Lets operators draft replies without running the API.
    Alternatives: Only expose reply drafts over HTTP.
    """

    db_path = str(tmp_path / "test.db")
    _seed(db_path)
    _use_config(monkeypatch, make_config(db_path))

    run_cli(["suggest-reply", "sales@acme.test-7", "--context", "Offer a trial"])
    run_cli(["suggest-reply", "missing"])
    output = capsys.readouterr().out
    assert "Tone: neutral (template)" in output
    assert "Hi Lead," in output
    assert "Email missing not found." in output
