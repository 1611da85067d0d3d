"""Summary: Domain model dataclasses for Onebox.

Importance: Defines the canonical records shared by sync, pipeline, and storage.
Alternatives: Pass raw provider payloads and dictionaries between layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

INTERESTED = "Interested"
MEETING_BOOKED = "Meeting Booked"
NOT_INTERESTED = "Not Interested"
SPAM = "Spam"
OUT_OF_OFFICE = "Out of Office"
UNCATEGORIZED = "Uncategorized"

CATEGORIES: tuple[str, ...] = (
    INTERESTED,
    MEETING_BOOKED,
    NOT_INTERESTED,
    SPAM,
    OUT_OF_OFFICE,
)


@dataclass(frozen=True)
class AccountCredentials:
    """Summary: Connection details for one mirrored mailbox.

    Importance: Identifies an account and carries everything needed to log in.
    Alternatives: Read connection settings from the environment at connect time.
    """

    account_id: str
    host: str
    port: int
    username: str
    password: str = field(repr=False)
    secure: bool = True

    @property
    def domain(self) -> str:
        """Return the mail domain of the account username, if any."""

        _, _, domain = self.username.partition("@")
        return domain or "unknown"


class ConnectionState(str, Enum):
    """Summary: Lifecycle states of an account connection.

    Importance: Makes every transition of the sync state machine explicit.
    Alternatives: Track several booleans such as connected and idle.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKFILLING = "backfilling"
    LISTENING = "listening"
    REFRESHING_LISTEN = "refreshing_listen"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(frozen=True)
class EnvelopeAttributes:
    """Summary: Server-side attributes returned alongside a fetched message.

    Importance: Supplies the UID watermark, flags, and size the raw bytes lack.
    Alternatives: Derive size and dates from the raw message only.
    """

    uid: int
    flags: tuple[str, ...] = ()
    internal_date: datetime | None = None
    size: int | None = None


@dataclass(frozen=True)
class RawMessage:
    """Summary: Raw RFC 822 bytes paired with their envelope attributes.

    Importance: Is the unit handed from the connection to the normalizer.
    Alternatives: Parse messages inside the connection layer.
    """

    content: bytes
    attributes: EnvelopeAttributes


@dataclass(frozen=True)
class MessageRecord:
    """Summary: Canonical message record flowing through the ingestion pipeline.

    Importance: One shape for persistence, search, classification, and notifications.
    Alternatives: Keep provider-specific message objects per source.
    """

    id: str
    account_id: str
    folder: str
    subject: str
    body: str
    sender: str
    recipients: tuple[str, ...]
    date: datetime
    server_uid: int
    flags: tuple[str, ...] = ()
    size: int = 0
    category: str = UNCATEGORIZED
    indexed_at: datetime | None = None
    confidence: float | None = None

    @staticmethod
    def make_id(account_id: str, server_uid: int) -> str:
        """Summary: Build the composite record identifier.

        Importance: Guarantees one record per account and server UID pair.
        Alternatives: Use the Message-Id header, which is not always present.
        """

        return f"{account_id}-{server_uid}"

    def to_dict(self) -> dict[str, Any]:
        """Summary: Render the record as a JSON-friendly document.

        Importance: Keeps API responses and webhook payloads consistent.
        Alternatives: Let each caller serialize fields on its own.
        """

        return {
            "id": self.id,
            "accountId": self.account_id,
            "folder": self.folder,
            "subject": self.subject,
            "body": self.body,
            "from": self.sender,
            "to": list(self.recipients),
            "date": self.date.isoformat(),
            "aiCategory": self.category,
            "confidence": self.confidence,
            "indexedAt": self.indexed_at.isoformat() if self.indexed_at else None,
            "uid": self.server_uid,
            "flags": list(self.flags),
            "size": self.size,
        }


@dataclass(frozen=True)
class ClassificationResult:
    """Summary: Category decision for a single message.

    Importance: Carries confidence and reasoning as optional metadata.
    Alternatives: Return only the category string.
    """

    category: str
    confidence: float
    reasoning: str | None = None
    source: str = "rules"


@dataclass(frozen=True)
class LeadEvent:
    """Summary: Payload describing a message classified as Interested.

    Importance: Is the single input every notification channel receives.
    Alternatives: Hand the raw record to each channel.
    """

    record: MessageRecord
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        """Summary: Build the generic webhook body for the lead.

        Importance: Gives external automation a stable event format.
        Alternatives: Post the bare record document.
        """

        document = self.record.to_dict()
        return {
            "event": "InterestedLead",
            "timestamp": self.detected_at.isoformat(),
            "email": {
                key: document[key]
                for key in (
                    "id",
                    "accountId",
                    "folder",
                    "subject",
                    "from",
                    "to",
                    "date",
                    "aiCategory",
                    "body",
                    "size",
                )
            },
            "metadata": {"source": "Onebox", "action": "lead_detected"},
        }


@dataclass(frozen=True)
class IngestOutcome:
    """Summary: Result of ingesting one record.

    Importance: Lets callers see the category, persistence, and channel results.
    Alternatives: Return only the category string.
    """

    record: MessageRecord
    persisted: bool
    notifications: dict[str, bool] = field(default_factory=dict)

    @property
    def category(self) -> str:
        return self.record.category


@dataclass(frozen=True)
class AccountStatus:
    """Summary: Observable health of one account's sync loop.

    Importance: Lets the controller layer report degraded accounts.
    Alternatives: Inspect connection objects directly from the API.
    """

    account_id: str
    host: str
    state: ConnectionState
    ingested: int = 0
    skipped: int = 0
    persistence_failures: int = 0
    processing_errors: int = 0
    reconnect_attempts: int = 0
    last_error: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.state in (
            ConnectionState.CONNECTED,
            ConnectionState.BACKFILLING,
            ConnectionState.LISTENING,
            ConnectionState.REFRESHING_LISTEN,
        )

    @property
    def is_degraded(self) -> bool:
        return (
            self.state == ConnectionState.FAILED
            or self.persistence_failures > 0
            or self.processing_errors > 0
        )
