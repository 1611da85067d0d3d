"""Summary: Exception hierarchy for Onebox.

Importance: Separates transient, per-message, and surfaced failures by type.
Alternatives: Raise RuntimeError everywhere and inspect messages.
"""

from __future__ import annotations


class OneboxError(Exception):
    """Base exception for Onebox."""


class ConfigError(OneboxError):
    """Configuration is missing or malformed."""


class TransientConnectionError(OneboxError):
    """Handshake or transport failure on an account session."""

    def __init__(self, account_id: str, message: str) -> None:
        self.account_id = account_id
        super().__init__(f"{account_id}: {message}")


class NormalizationError(OneboxError):
    """A raw message could not be turned into a record."""


class ClassificationError(OneboxError):
    """The AI classifier failed or produced an unusable answer."""


class PersistenceError(OneboxError):
    """The store rejected an upsert or update."""

    def __init__(self, record_id: str, message: str) -> None:
        self.record_id = record_id
        super().__init__(f"Failed to persist {record_id}: {message}")


class NotificationError(OneboxError):
    """A notification channel failed to deliver."""

    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        super().__init__(f"{channel}: {message}")


class AiProviderError(OneboxError):
    """A language model backend could not be reached or answered badly."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")
