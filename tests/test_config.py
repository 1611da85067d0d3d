"""Summary: Tests for configuration loading.

Importance: Ensures defaults, .env, and environment overrides behave correctly.
Alternatives: Validate configuration manually during runtime.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from onebox.config import AppConfig, load_accounts, load_defaults, load_dotenv
from onebox.exceptions import ConfigError

DEFAULTS = {
    "db_path": "test.db",
    "ai_provider": "rules",
    "openai_api_key": "",
    "openai_model": "gpt-4o-mini",
    "ollama_url": "http://localhost:11434",
    "ollama_model": "llama3",
    "gemini_api_key": "",
    "gemini_model": "gemini-1.5-flash",
    "sync_days": "30",
    "sync_folder": "INBOX",
    "fetch_batch_size": "50",
    "idle_refresh_seconds": "1740",
    "reconnect_delay_seconds": "30",
    "max_reconnect_attempts": "5",
    "notification_timeout_seconds": "10",
    "slack_webhook_url": "",
    "webhook_url": "",
    "api_host": "127.0.0.1",
    "api_port": "8000",
    "api_key": "",
    "log_level": "INFO",
    "reply_booking_url": "",
    "reply_context": "",
}


def _write_defaults(root: Path, **overrides: str) -> None:
    config_dir = root / "config"
    config_dir.mkdir()
    (config_dir / "defaults.json").write_text(json.dumps({**DEFAULTS, **overrides}), encoding="utf-8")


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith(("ONEBOX_", "EMAIL_")) or key in {
            "SYNC_DAYS",
            "EMAIL_BATCH_SIZE",
            "SLACK_WEBHOOK_URL",
            "WEBHOOK_SITE_URL",
            "OPENAI_API_KEY",
            "GEMINI_API_KEY",
        }:
            monkeypatch.delenv(key, raising=False)


def test_load_defaults_reads_json(tmp_path: Path) -> None:
    """Summary: Verify defaults are parsed from JSON.

    Importance: Confirms config file is the source of truth for variables.
    Alternatives: Hardcode defaults in the test.
    """

    defaults_path = tmp_path / "defaults.json"
    defaults_path.write_text("{\"db_path\": \"test.db\"}", encoding="utf-8")
    assert load_defaults(defaults_path)["db_path"] == "test.db"
    with pytest.raises(ConfigError):
        load_defaults(tmp_path / "missing.json")


def test_load_dotenv_sets_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Ensure .env values populate environment variables.

    Importance: Validates local secret loading without external tools.
    Alternatives: Assume OS environment is always set.
    """

    env_path = tmp_path / ".env"
    env_path.write_text("# comment\nONEBOX_AI_PROVIDER=ollama\n", encoding="utf-8")
    monkeypatch.delenv("ONEBOX_AI_PROVIDER", raising=False)
    load_dotenv(env_path)
    assert os.getenv("ONEBOX_AI_PROVIDER") == "ollama"
    monkeypatch.delenv("ONEBOX_AI_PROVIDER", raising=False)


def test_app_config_uses_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify AppConfig honors defaults when env is absent.

    Importance: Confirms config file remains the baseline for variables.
    Alternatives: Inline defaults directly in the AppConfig class.
    """

    _clear_env(monkeypatch)
    _write_defaults(tmp_path)
    monkeypatch.chdir(tmp_path)
    config = AppConfig.from_env()
    assert config.db_path == "test.db"
    assert config.ai_provider == "rules"
    assert config.sync_days == 30
    assert config.idle_refresh_seconds == 1740.0
    assert config.max_reconnect_attempts == 5
    assert config.slack_webhook_url is None
    assert config.reply_booking_url is None
    assert config.accounts == ()


def test_app_config_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify environment variables override defaults.

    Importance: Allows deployments to change settings without editing files.
    Alternatives: Require editing defaults.json per environment.
    """

    _clear_env(monkeypatch)
    _write_defaults(tmp_path)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SYNC_DAYS", "7")
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://slack.test/hook")
    monkeypatch.setenv("ONEBOX_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("ONEBOX_REPLY_BOOKING_URL", "https://cal.test/acme")
    monkeypatch.setenv("EMAIL_USER_1", "sales@acme.test")
    monkeypatch.setenv("EMAIL_PASSWORD_1", "secret")
    config = AppConfig.from_env()
    assert config.sync_days == 7
    assert config.slack_webhook_url == "https://slack.test/hook"
    assert config.log_level == "DEBUG"
    assert config.reply_booking_url == "https://cal.test/acme"
    assert [account.account_id for account in config.accounts] == ["sales@acme.test"]


def test_app_config_rejects_bad_numbers(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify malformed numeric settings raise ConfigError.

    Importance: Surfaces typos at startup with a clear message.
    Alternatives: Fall back to defaults silently.
    """

    _clear_env(monkeypatch)
    _write_defaults(tmp_path)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SYNC_DAYS", "thirty")
    with pytest.raises(ConfigError):
        AppConfig.from_env()


def test_load_accounts_reads_numbered_variables() -> None:
    """Summary: Verify numbered account variables build credentials.

    Importance: Supports several mailboxes from environment variables.
    Alternatives: Describe accounts in a separate file.
    """

    accounts = load_accounts(
        {
            "EMAIL_USER_1": "sales@acme.test",
            "EMAIL_PASSWORD_1": "secret",
            "EMAIL_USER_2": "ops@acme.test",
            "EMAIL_PASSWORD_2": "hunter2",
            "EMAIL_HOST_2": "imap.acme.test",
            "EMAIL_PORT_2": "143",
            "EMAIL_SECURE_2": "false",
            "EMAIL_ACCOUNT_ID_2": "ops",
            "EMAIL_USER_3": "incomplete@acme.test",
        }
    )
    assert [account.account_id for account in accounts] == ["sales@acme.test", "ops"]
    assert accounts[0].host == "imap.gmail.com"
    assert accounts[0].port == 993
    assert accounts[0].secure
    assert (accounts[1].host, accounts[1].port, accounts[1].secure) == ("imap.acme.test", 143, False)
    assert "hunter2" not in repr(accounts[1])


def test_load_accounts_rejects_duplicates() -> None:
    """Summary: Verify duplicate account ids are a configuration error.

    Importance: Record ids must be unique per account.
    Alternatives: Silently keep the first account.
    """

    with pytest.raises(ConfigError):
        load_accounts(
            {
                "EMAIL_USER_1": "sales@acme.test",
                "EMAIL_PASSWORD_1": "a",
                "EMAIL_USER_2": "sales@acme.test",
                "EMAIL_PASSWORD_2": "b",
            }
        )
