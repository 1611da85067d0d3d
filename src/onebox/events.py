"""Summary: Sync events delivered from an account connection to its consumer.

Importance: Replaces scattered push callbacks with one typed event stream per account.
Alternatives: Register listener callbacks on the IMAP client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Connected:
    """Session is logged in and the primary folder is selected."""

    account_id: str
    reconnected: bool = False


@dataclass(frozen=True)
class NewMail:
    """Server signalled new arrivals while listening."""

    account_id: str
    ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class Disconnected:
    """Session was closed on request."""

    account_id: str
    reason: str = "disconnect requested"


@dataclass(frozen=True)
class TransportError:
    """Session dropped or a connection attempt failed; a retry is scheduled."""

    account_id: str
    error: str
    attempt: int


@dataclass(frozen=True)
class ConnectionFailed:
    """Reconnect attempts are exhausted; the connection is terminal."""

    account_id: str
    attempts: int
    error: str | None = None


SyncEvent = Union[Connected, NewMail, Disconnected, TransportError, ConnectionFailed]


@dataclass(frozen=True)
class RefreshDue:
    """Internal marker: the listen soft limit elapsed."""

    session: int


@dataclass(frozen=True)
class ReconnectDue:
    """Internal marker: the reconnect delay elapsed."""

    session: int
