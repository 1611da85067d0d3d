"""Summary: SQLite storage implementation for Onebox.

Importance: Provides a local-first searchable store for mirrored messages.
Alternatives: Use Elasticsearch or Postgres full-text search.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from onebox.models import MessageRecord

_COLUMNS = (
    "id, account_id, folder, subject, body, sender, recipients, date, server_uid, "
    "flags, size, category, indexed_at, confidence"
)


@dataclass(frozen=True)
class SearchFilter:
    """Summary: Query parameters for message search.

    Importance: One filter shape for the API, CLI, and services.
    Alternatives: Pass loose keyword arguments to each query method.
    """

    query: str | None = None
    account_id: str | None = None
    folder: str | None = None
    category: str | None = None
    page: int = 1
    limit: int = 50

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * max(self.limit, 0)


@dataclass(frozen=True)
class SearchResult:
    """Summary: One page of matching records with the total match count.

    Importance: Lets callers paginate without a second count query.
    Alternatives: Return only the page of records.
    """

    records: list[MessageRecord]
    total_count: int


class SqliteStore:
    """Summary: SQLite-backed message store keyed by the composite record id.

    Importance: Idempotent upserts make repeated backfills safe.
    Alternatives: Append-only storage with deduplication at read time.
    """

    def __init__(self, db_path: str, timeout: float = 30.0) -> None:
        self._db_path = Path(db_path)
        self._timeout = timeout

    def initialize(self) -> None:
        """Summary: Create tables and indexes if they do not exist.

        Importance: Ensures the database is ready before sync starts.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    folder TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    body TEXT NOT NULL,
                    sender TEXT NOT NULL,
                    recipients TEXT NOT NULL,
                    date TEXT NOT NULL,
                    server_uid INTEGER NOT NULL,
                    flags TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    category TEXT NOT NULL,
                    indexed_at TEXT,
                    confidence REAL
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_account_date ON messages(account_id, date)"
            )
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_messages_category ON messages(category)")
            connection.commit()

    def upsert(self, record: MessageRecord) -> None:
        """Summary: Insert or replace a record by its composite id.

        Importance: Re-ingesting a message updates it instead of duplicating it.
        Alternatives: INSERT OR IGNORE and keep the first version.
        """

        with self._connection() as connection:
            connection.execute(
                f"""
                INSERT INTO messages ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    account_id = excluded.account_id,
                    folder = excluded.folder,
                    subject = excluded.subject,
                    body = excluded.body,
                    sender = excluded.sender,
                    recipients = excluded.recipients,
                    date = excluded.date,
                    server_uid = excluded.server_uid,
                    flags = excluded.flags,
                    size = excluded.size,
                    category = excluded.category,
                    indexed_at = excluded.indexed_at,
                    confidence = excluded.confidence
                """,
                (
                    record.id,
                    record.account_id,
                    record.folder,
                    record.subject,
                    record.body,
                    record.sender,
                    json.dumps(list(record.recipients)),
                    _to_utc_text(record.date),
                    record.server_uid,
                    json.dumps(list(record.flags)),
                    record.size,
                    record.category,
                    _to_utc_text(record.indexed_at) if record.indexed_at else None,
                    record.confidence,
                ),
            )
            connection.commit()

    def get(self, record_id: str) -> MessageRecord | None:
        with self._connection() as connection:
            row = connection.execute(
                f"SELECT {_COLUMNS} FROM messages WHERE id = ?", (record_id,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def search(self, search_filter: SearchFilter) -> SearchResult:
        """Summary: Search records by free text and field equality, newest first.

        Importance: Backs listing, search, and account filtering.
        Alternatives: Implement full-text search using SQLite FTS.
        """

        clauses: list[str] = []
        params: list[Any] = []
        if search_filter.query:
            pattern = f"%{_escape_like(search_filter.query)}%"
            clauses.append(
                "(subject LIKE ? ESCAPE '\\' OR body LIKE ? ESCAPE '\\'"
                " OR sender LIKE ? ESCAPE '\\' OR recipients LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern] * 4)
        for column in ("account_id", "folder", "category"):
            value = getattr(search_filter, column)
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connection() as connection:
            total = connection.execute(f"SELECT COUNT(*) FROM messages {where}", params).fetchone()[0]
            rows = connection.execute(
                f"""
                SELECT {_COLUMNS} FROM messages {where}
                ORDER BY date DESC, server_uid DESC
                LIMIT ? OFFSET ?
                """,
                [*params, max(search_filter.limit, 0), search_filter.offset],
            ).fetchall()
        return SearchResult(records=[_row_to_record(row) for row in rows], total_count=int(total))

    def delete_by_id(self, record_id: str) -> bool:
        with self._connection() as connection:
            cursor = connection.execute("DELETE FROM messages WHERE id = ?", (record_id,))
            connection.commit()
            return cursor.rowcount > 0

    def patch_category(
        self,
        record_id: str,
        category: str,
        confidence: float | None = None,
        indexed_at: datetime | None = None,
    ) -> bool:
        """Summary: Update the category of a stored record and stamp it as re-indexed.

        Importance: Supports re-classification without rewriting the record.
        Alternatives: Load, modify, and upsert the whole record.
        """

        indexed_at = indexed_at or datetime.now(timezone.utc)
        with self._connection() as connection:
            cursor = connection.execute(
                "UPDATE messages SET category = ?, confidence = ?, indexed_at = ? WHERE id = ?",
                (category, confidence, _to_utc_text(indexed_at), record_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    def count_by_category(self, account_id: str | None = None) -> dict[str, int]:
        with self._connection() as connection:
            if account_id is None:
                rows = connection.execute(
                    "SELECT category, COUNT(*) FROM messages GROUP BY category"
                ).fetchall()
            else:
                rows = connection.execute(
                    "SELECT category, COUNT(*) FROM messages WHERE account_id = ? GROUP BY category",
                    (account_id,),
                ).fetchall()
        return {str(category): int(count) for category, count in rows}

    def count(self) -> int:
        with self._connection() as connection:
            return int(connection.execute("SELECT COUNT(*) FROM messages").fetchone()[0])

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: One short-lived connection per call lets account threads write concurrently.
        Alternatives: Keep a single long-lived connection behind a lock.
        """

        connection = sqlite3.connect(self._db_path, timeout=self._timeout)
        try:
            yield connection
        finally:
            connection.close()


def _to_utc_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _row_to_record(row: tuple[Any, ...]) -> MessageRecord:
    (
        record_id,
        account_id,
        folder,
        subject,
        body,
        sender,
        recipients,
        date,
        server_uid,
        flags,
        size,
        category,
        indexed_at,
        confidence,
    ) = row
    return MessageRecord(
        id=record_id,
        account_id=account_id,
        folder=folder,
        subject=subject,
        body=body,
        sender=sender,
        recipients=tuple(json.loads(recipients)),
        date=datetime.fromisoformat(date),
        server_uid=int(server_uid),
        flags=tuple(json.loads(flags)),
        size=int(size),
        category=category,
        indexed_at=datetime.fromisoformat(indexed_at) if indexed_at else None,
        confidence=confidence,
    )


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
