# src/jobflow/jobs/mailbox_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from collections.abc import Iterator
from pathlib import Path

from .job_models import MailboxItem

logger = logging.getLogger(__name__)

WILDCARD_APP = "*"


def mailbox_key(app_name: str, topic: str) -> str:
    """Name of the event mailbox another process writes to for (app, job topic)."""
    return f"eq:app:{app_name}:topic:{topic}"


class SqliteMailboxStore:
    """
    Ordered lists of serialized payloads keyed by name (FIFO per name).

    Payloads are opaque strings; callers serialize. Items are ordered by an
    autoincrement id, so concurrent appends from several processes keep arrival order.
    """

    def __init__(self, db_path: str | Path = "mailboxes.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("SqliteMailboxStore ready db=%s", self._db_path)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextlib.contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._tx() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS mailbox_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_mailbox_items_name ON mailbox_items(name, id)")

    # ---- public API ----

    def push(self, name: str, payload: str) -> int:
        """Append to the tail. Returns the new length."""
        if not name:
            raise ValueError("mailbox name is required")
        with self._tx() as conn:
            conn.execute(
                "INSERT INTO mailbox_items(name, payload, created_at) VALUES (?, ?, ?)",
                (name, str(payload), time.time()),
            )
            (n,) = conn.execute("SELECT COUNT(*) FROM mailbox_items WHERE name = ?", (name,)).fetchone()
            return int(n)

    def peek(self, name: str) -> MailboxItem | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT id, name, payload FROM mailbox_items WHERE name = ? ORDER BY id ASC LIMIT 1",
                (name,),
            ).fetchone()
            if row is None:
                return None
            return MailboxItem(id=int(row["id"]), name=str(row["name"]), payload=str(row["payload"]))
        finally:
            conn.close()

    def ack(self, name: str, item_id: int) -> bool:
        """Remove a previously peeked item."""
        with self._tx() as conn:
            cur = conn.execute(
                "DELETE FROM mailbox_items WHERE name = ? AND id = ?",
                (name, int(item_id)),
            )
            return cur.rowcount == 1

    def pop(self, name: str) -> str | None:
        """Remove and return the head, or None when empty (never blocks)."""
        with self._tx() as conn:
            row = conn.execute(
                "SELECT id, payload FROM mailbox_items WHERE name = ? ORDER BY id ASC LIMIT 1",
                (name,),
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM mailbox_items WHERE id = ?", (int(row["id"]),))
            return str(row["payload"])

    def length(self, name: str) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM mailbox_items WHERE name = ?", (name,)).fetchone()
            return int(n)
        finally:
            conn.close()

    def items(self, name: str, limit: int = 20) -> list[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT payload FROM mailbox_items WHERE name = ? ORDER BY id ASC LIMIT ?",
                (name, int(limit)),
            ).fetchall()
            return [str(r["payload"]) for r in rows]
        finally:
            conn.close()

    def clear(self, name: str) -> int:
        with self._tx() as conn:
            cur = conn.execute("DELETE FROM mailbox_items WHERE name = ?", (name,))
            return int(cur.rowcount)
