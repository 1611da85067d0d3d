"""Summary: Runtime settings for Onebox.

Importance: Merges shipped defaults, a local .env file, and process environment.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, TypeVar

from onebox.exceptions import ConfigError
from onebox.models import AccountCredentials

MAX_ACCOUNTS = 10
DEFAULTS_PATH = Path("config") / "defaults.json"

T = TypeVar("T")


@dataclass(frozen=True)
class AppConfig:
    """Summary: Settings for mailbox sync, classification, notifications, and the API.

    Importance: Every component is built from one immutable settings object.
    Alternatives: Read environment variables where each value is used.
    """

    db_path: str
    ai_provider: str
    openai_api_key: str | None
    openai_model: str
    ollama_url: str
    ollama_model: str
    gemini_api_key: str | None
    gemini_model: str
    sync_days: int
    sync_folder: str
    fetch_batch_size: int
    idle_refresh_seconds: float
    reconnect_delay_seconds: float
    max_reconnect_attempts: int
    notification_timeout_seconds: float
    slack_webhook_url: str | None
    webhook_url: str | None
    api_host: str
    api_port: int
    api_key: str
    log_level: str
    accounts: tuple[AccountCredentials, ...] = field(default=())
    reply_booking_url: str | None = None
    reply_context: str | None = None

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Resolve every setting from the environment over shipped defaults.

        Importance: Deployments override only what differs from config/defaults.json.
        Alternatives: Require every variable to be exported.
        """

        defaults = load_defaults(DEFAULTS_PATH)
        load_dotenv(Path(".env"))

        def setting(variable: str, key: str, cast: Callable[[str], T] = str) -> T:
            return cast(os.getenv(variable, defaults[key]))

        def optional(variable: str, key: str) -> str | None:
            return os.getenv(variable) or defaults[key] or None

        try:
            return AppConfig(
                db_path=setting("ONEBOX_DB_PATH", "db_path"),
                ai_provider=setting("ONEBOX_AI_PROVIDER", "ai_provider").strip().lower(),
                openai_api_key=optional("OPENAI_API_KEY", "openai_api_key"),
                openai_model=setting("OPENAI_MODEL", "openai_model"),
                ollama_url=setting("OLLAMA_URL", "ollama_url"),
                ollama_model=setting("OLLAMA_MODEL", "ollama_model"),
                gemini_api_key=optional("GEMINI_API_KEY", "gemini_api_key"),
                gemini_model=setting("GEMINI_MODEL", "gemini_model"),
                sync_days=setting("SYNC_DAYS", "sync_days", int),
                sync_folder=setting("ONEBOX_SYNC_FOLDER", "sync_folder"),
                fetch_batch_size=setting("EMAIL_BATCH_SIZE", "fetch_batch_size", int),
                idle_refresh_seconds=setting("ONEBOX_IDLE_REFRESH_SECONDS", "idle_refresh_seconds", float),
                reconnect_delay_seconds=setting(
                    "ONEBOX_RECONNECT_DELAY_SECONDS", "reconnect_delay_seconds", float
                ),
                max_reconnect_attempts=setting("ONEBOX_MAX_RECONNECT_ATTEMPTS", "max_reconnect_attempts", int),
                notification_timeout_seconds=setting(
                    "ONEBOX_NOTIFICATION_TIMEOUT_SECONDS", "notification_timeout_seconds", float
                ),
                slack_webhook_url=optional("SLACK_WEBHOOK_URL", "slack_webhook_url"),
                webhook_url=optional("WEBHOOK_SITE_URL", "webhook_url"),
                api_host=setting("ONEBOX_API_HOST", "api_host"),
                api_port=setting("ONEBOX_API_PORT", "api_port", int),
                api_key=setting("ONEBOX_API_KEY", "api_key"),
                log_level=setting("ONEBOX_LOG_LEVEL", "log_level"),
                accounts=load_accounts(os.environ),
                reply_booking_url=optional("ONEBOX_REPLY_BOOKING_URL", "reply_booking_url"),
                reply_context=optional("ONEBOX_REPLY_CONTEXT", "reply_context"),
            )
        except KeyError as exc:
            raise ConfigError(f"Missing configuration default: {exc.args[0]}") from exc
        except ValueError as exc:
            raise ConfigError(f"Invalid configuration value: {exc}") from exc


def load_accounts(environ: Mapping[str, str]) -> tuple[AccountCredentials, ...]:
    """Summary: Read mailbox accounts from numbered environment variables.

    Importance: Supports several mirrored mailboxes without a config schema change.
    Alternatives: Describe accounts in a JSON or YAML file.

    Reads EMAIL_USER_n, EMAIL_PASSWORD_n, EMAIL_HOST_n, EMAIL_PORT_n, EMAIL_SECURE_n,
    and EMAIL_ACCOUNT_ID_n; entries without a user and password are skipped.
    """

    accounts: list[AccountCredentials] = []
    seen: set[str] = set()
    for index in range(1, MAX_ACCOUNTS + 1):
        user = environ.get(f"EMAIL_USER_{index}")
        password = environ.get(f"EMAIL_PASSWORD_{index}")
        if not user or not password:
            continue
        account_id = environ.get(f"EMAIL_ACCOUNT_ID_{index}") or user
        if account_id in seen:
            raise ConfigError(f"Duplicate account id: {account_id}")
        seen.add(account_id)
        port_raw = environ.get(f"EMAIL_PORT_{index}", "993")
        try:
            port = int(port_raw)
        except ValueError as exc:
            raise ConfigError(f"EMAIL_PORT_{index} must be an integer, got {port_raw!r}") from exc
        accounts.append(
            AccountCredentials(
                account_id=account_id,
                host=environ.get(f"EMAIL_HOST_{index}", "imap.gmail.com"),
                port=port,
                username=user,
                password=password,
                secure=_parse_bool(environ.get(f"EMAIL_SECURE_{index}", "true")),
            )
        )
    return tuple(accounts)


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Read the shipped settings file.

    Importance: Lists every recognised setting with its default value.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise ConfigError(f"Defaults file not found: {path}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Defaults file is not valid JSON: {path}") from exc


def load_dotenv(path: Path) -> None:
    """Summary: Export KEY=value lines from a local .env file.

    Importance: Keeps mailbox passwords and webhook URLs out of the repository.
    Alternatives: Use python-dotenv or OS-specific secret stores.

    Variables already present in the environment win over the file.
    """

    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line.startswith("#") or "=" not in line:
            continue
        name, value = line.split("=", 1)
        os.environ.setdefault(name.strip(), value.strip().strip("\"'"))


def _parse_bool(value: str) -> bool:
    return value.strip().lower() not in {"0", "false", "no", "off"}
