"""Persistent ledger of forwarded messages, keyed by (account, message id)."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from gmail_slack_forwarder.exceptions import StorageError

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS processed_mails (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    gmail_account TEXT NOT NULL,
    gmail_message_id TEXT NOT NULL,
    slack_ts TEXT,
    processed_at TEXT NOT NULL,
    UNIQUE(gmail_account, gmail_message_id)
)
"""

_CREATE_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_processed_mails_account_message
ON processed_mails(gmail_account, gmail_message_id)
"""


@dataclass
class ProcessedMail:
    id: int
    account: str
    message_id: str
    slack_ts: str | None
    processed_at: datetime


@dataclass
class StoreStats:
    total: int
    by_account: dict[str, int] = field(default_factory=dict)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DedupStore:
    """SQLite-backed idempotency store.

    ``processed_at`` is stored as a UTC ISO 8601 string so that string
    comparison matches chronological order.

    Args:
        db_path: SQLite file; its parent directory is created if missing.
        clock: Returns the current aware datetime (injectable for tests).
    """

    def __init__(
        self,
        db_path: Path | str,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db_path = Path(db_path)
        self._clock = clock
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn: sqlite3.Connection | None = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            with self._conn:
                self._conn.execute(_CREATE_TABLE_SQL)
                self._conn.execute(_CREATE_INDEX_SQL)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to open dedup store at {self.db_path}: {e}") from e

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Dedup store is closed")
        return self._conn

    def is_processed(self, account: str, message_id: str) -> bool:
        try:
            row = self.conn.execute(
                """
                SELECT 1 FROM processed_mails
                WHERE gmail_account = ? AND gmail_message_id = ?
                LIMIT 1
                """,
                (account, message_id),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to query dedup store: {e}") from e
        return row is not None

    def mark_processed(self, account: str, message_id: str, slack_ts: str | None) -> None:
        """Record a message as forwarded. A second call for the same key is a no-op."""
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT OR IGNORE INTO processed_mails
                        (gmail_account, gmail_message_id, slack_ts, processed_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (account, message_id, slack_ts, self._clock().isoformat()),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write dedup record: {e}") from e

    def get_processed_mail(self, account: str, message_id: str) -> ProcessedMail | None:
        try:
            row = self.conn.execute(
                """
                SELECT id, gmail_account, gmail_message_id, slack_ts, processed_at
                FROM processed_mails
                WHERE gmail_account = ? AND gmail_message_id = ?
                """,
                (account, message_id),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to query dedup store: {e}") from e

        if row is None:
            return None
        return ProcessedMail(
            id=row["id"],
            account=row["gmail_account"],
            message_id=row["gmail_message_id"],
            slack_ts=row["slack_ts"],
            processed_at=datetime.fromisoformat(row["processed_at"]),
        )

    def get_stats(self) -> StoreStats:
        try:
            total = self.conn.execute(
                "SELECT COUNT(*) FROM processed_mails"
            ).fetchone()[0]
            rows = self.conn.execute(
                """
                SELECT gmail_account, COUNT(*) AS count
                FROM processed_mails
                GROUP BY gmail_account
                """
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read dedup stats: {e}") from e

        return StoreStats(
            total=total,
            by_account={row["gmail_account"]: row["count"] for row in rows},
        )

    def delete_old_records(self, retention_days: int) -> int:
        """Delete records processed more than ``retention_days`` ago.

        Returns:
            Number of deleted records.
        """
        cutoff = (self._clock() - timedelta(days=retention_days)).isoformat()
        try:
            with self.conn:
                cursor = self.conn.execute(
                    "DELETE FROM processed_mails WHERE processed_at < ?",
                    (cutoff,),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete old dedup records: {e}") from e
        return cursor.rowcount

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> DedupStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
