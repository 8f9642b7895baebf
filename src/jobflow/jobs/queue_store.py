# src/jobflow/jobs/queue_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from .job_models import (
    DelayedEntrySnapshot,
    EntryState,
    QueueEntry,
    Retention,
)

logger = logging.getLogger(__name__)


class SqliteQueueStore:
    """
    SQLite delay queue with leases.

    One table holds every queue, keyed by (queue, id). The id is the entry identity:
    - adding an id that is waiting/delayed is a no-op (replace=True overwrites payload and
      schedule but keeps the retention policies),
    - adding an id that is active records a re-arm, applied when the lease is released,
    - adding an id that is finished (completed/failed) starts it over.

    Thread/process-safety:
    - each method opens its own SQLite connection
    - read-modify-write paths run inside BEGIN IMMEDIATE
    """

    def __init__(
        self,
        db_path: str | Path = "queues.sqlite3",
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._ensure_schema()
        logger.info("SqliteQueueStore ready db=%s", self._db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def now(self) -> float:
        return float(self._clock())

    # ---- low-level helpers ----

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
                CREATE TABLE IF NOT EXISTS queue_entries (
                    queue TEXT NOT NULL,
                    id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    data TEXT NOT NULL DEFAULT 'null',
                    state TEXT NOT NULL DEFAULT 'waiting',
                    delay_ms INTEGER NOT NULL DEFAULT 0,
                    timestamp REAL NOT NULL,
                    available_at REAL NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    lease_token TEXT,
                    lease_until REAL,
                    finished_at REAL,
                    failed_reason TEXT,
                    remove_on_complete TEXT,
                    remove_on_fail TEXT,
                    rearm TEXT,
                    PRIMARY KEY (queue, id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_queue_entries_ready "
                "ON queue_entries(queue, state, available_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_queue_entries_finished "
                "ON queue_entries(queue, state, finished_at)"
            )

    @staticmethod
    def _dump(value: Any) -> str:
        return json.dumps(value, ensure_ascii=False)

    @staticmethod
    def _load(raw: str | None) -> Any:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Undecodable queue payload; treating it as null.")
            return None

    def _row_to_entry(self, row: sqlite3.Row) -> QueueEntry:
        state = EntryState.from_db(row["state"])
        if state == EntryState.WAITING and float(row["available_at"]) > self.now():
            state = EntryState.DELAYED
        return QueueEntry(
            queue=str(row["queue"]),
            id=str(row["id"]),
            name=str(row["name"]),
            data=self._load(row["data"]),
            state=state,
            delay_ms=int(row["delay_ms"] or 0),
            timestamp=float(row["timestamp"]),
            available_at=float(row["available_at"]),
            attempts=int(row["attempts"] or 0),
            finished_at=float(row["finished_at"]) if row["finished_at"] is not None else None,
            failed_reason=row["failed_reason"],
            lease_token=row["lease_token"],
        )

    # ---- public API ----

    def add(
        self,
        queue: str,
        entry_id: str,
        name: str,
        data: Any = None,
        *,
        delay_ms: int = 0,
        remove_on_complete: Retention | None = None,
        remove_on_fail: Retention | None = None,
        replace: bool = False,
    ) -> bool:
        """
        Add an entry. Returns False when the id was deduplicated against a
        waiting/delayed entry.

        Serialization errors (TypeError) and sqlite errors propagate.
        """
        if not entry_id:
            raise ValueError("entry_id is required")
        delay_ms = max(0, int(delay_ms))
        data_str = self._dump(data)
        on_complete = self._dump((remove_on_complete or Retention.drop()).to_dict())
        on_fail = self._dump((remove_on_fail or Retention.drop()).to_dict())

        with self._tx() as conn:
            now = self.now()
            row = conn.execute(
                "SELECT state FROM queue_entries WHERE queue = ? AND id = ?",
                (queue, entry_id),
            ).fetchone()
            state = EntryState.from_db(row["state"]) if row else None

            if state == EntryState.ACTIVE:
                rearm = {
                    "name": name,
                    "data": data_str,
                    "delay_ms": delay_ms,
                    "remove_on_complete": on_complete,
                    "remove_on_fail": on_fail,
                }
                conn.execute(
                    "UPDATE queue_entries SET rearm = ? WHERE queue = ? AND id = ?",
                    (self._dump(rearm), queue, entry_id),
                )
                logger.debug("Re-arm recorded queue=%s id=%s delay_ms=%s", queue, entry_id, delay_ms)
                return True

            if state == EntryState.WAITING:
                if not replace:
                    logger.debug("Duplicate entry ignored queue=%s id=%s", queue, entry_id)
                    return False
                # Overwrite payload and schedule; the retention policies stay.
                conn.execute(
                    """
                    UPDATE queue_entries
                    SET name = ?, data = ?, delay_ms = ?, timestamp = ?, available_at = ?
                    WHERE queue = ? AND id = ?
                    """,
                    (name, data_str, delay_ms, now, now + delay_ms / 1000.0, queue, entry_id),
                )
                logger.debug("Entry replaced queue=%s id=%s delay_ms=%s", queue, entry_id, delay_ms)
                return True

            conn.execute(
                """
                INSERT OR REPLACE INTO queue_entries(
                    queue, id, name, data, state, delay_ms, timestamp, available_at,
                    attempts, lease_token, lease_until, finished_at, failed_reason,
                    remove_on_complete, remove_on_fail, rearm
                )
                VALUES (?, ?, ?, ?, 'waiting', ?, ?, ?, 0, NULL, NULL, NULL, NULL, ?, ?, NULL)
                """,
                (
                    queue,
                    entry_id,
                    name,
                    data_str,
                    delay_ms,
                    now,
                    now + delay_ms / 1000.0,
                    on_complete,
                    on_fail,
                ),
            )
            logger.debug(
                "Entry added queue=%s id=%s name=%s delay_ms=%s", queue, entry_id, name, delay_ms
            )
            return True

    def claim_next(self, queue: str, *, lease_seconds: float = 30.0) -> QueueEntry | None:
        """
        Lease the oldest available entry.

        An active entry whose lease ran out (its consumer died) is claimable again.
        """
        with self._tx() as conn:
            now = self.now()
            row = conn.execute(
                """
                SELECT *
                FROM queue_entries
                WHERE queue = ?
                  AND (
                    (state = 'waiting' AND available_at <= ?)
                        OR (state = 'active' AND lease_until < ?)
                    )
                ORDER BY available_at ASC, timestamp ASC
                    LIMIT 1
                """,
                (queue, now, now),
            ).fetchone()
            if row is None:
                return None

            if row["state"] == EntryState.ACTIVE.value:
                logger.warning("Reclaiming stalled entry queue=%s id=%s", queue, row["id"])

            token = uuid.uuid4().hex
            conn.execute(
                """
                UPDATE queue_entries
                SET state = 'active', lease_token = ?, lease_until = ?, attempts = attempts + 1
                WHERE queue = ? AND id = ?
                """,
                (token, now + float(lease_seconds), queue, row["id"]),
            )
            entry = self._row_to_entry(row)
            entry.state = EntryState.ACTIVE
            entry.lease_token = token
            entry.attempts += 1
            return entry

    def extend_lease(self, queue: str, entry_id: str, token: str, lease_seconds: float) -> bool:
        with self._tx() as conn:
            cur = conn.execute(
                """
                UPDATE queue_entries
                SET lease_until = ?
                WHERE queue = ? AND id = ? AND state = 'active' AND lease_token = ?
                """,
                (self.now() + float(lease_seconds), queue, entry_id, token),
            )
            return cur.rowcount == 1

    def complete(self, queue: str, entry_id: str, token: str) -> bool:
        return self._finish(queue, entry_id, token, EntryState.COMPLETED, None)

    def fail(self, queue: str, entry_id: str, token: str, reason: str | None = None) -> bool:
        return self._finish(queue, entry_id, token, EntryState.FAILED, reason)

    def _finish(
        self,
        queue: str,
        entry_id: str,
        token: str,
        final_state: EntryState,
        reason: str | None,
    ) -> bool:
        with self._tx() as conn:
            now = self.now()
            row = conn.execute(
                "SELECT * FROM queue_entries WHERE queue = ? AND id = ?",
                (queue, entry_id),
            ).fetchone()
            if row is None or row["state"] != EntryState.ACTIVE.value or row["lease_token"] != token:
                logger.warning(
                    "Lease lost before finishing queue=%s id=%s state=%s",
                    queue,
                    entry_id,
                    final_state.value,
                )
                return False

            if row["rearm"]:
                rearm = self._load(row["rearm"]) or {}
                delay_ms = int(rearm.get("delay_ms") or 0)
                conn.execute(
                    """
                    UPDATE queue_entries
                    SET name = ?, data = ?, state = 'waiting', delay_ms = ?, timestamp = ?,
                        available_at = ?, attempts = 0, lease_token = NULL, lease_until = NULL,
                        finished_at = NULL, failed_reason = NULL,
                        remove_on_complete = ?, remove_on_fail = ?, rearm = NULL
                    WHERE queue = ? AND id = ?
                    """,
                    (
                        rearm.get("name") or row["name"],
                        rearm.get("data") or "null",
                        delay_ms,
                        now,
                        now + delay_ms / 1000.0,
                        rearm.get("remove_on_complete"),
                        rearm.get("remove_on_fail"),
                        queue,
                        entry_id,
                    ),
                )
                logger.debug("Entry re-armed queue=%s id=%s delay_ms=%s", queue, entry_id, delay_ms)
                return True

            policy_col = "remove_on_complete" if final_state == EntryState.COMPLETED else "remove_on_fail"
            retention = Retention.from_dict(self._load(row[policy_col]))
            if retention.remove:
                conn.execute(
                    "DELETE FROM queue_entries WHERE queue = ? AND id = ?",
                    (queue, entry_id),
                )
                return True

            conn.execute(
                """
                UPDATE queue_entries
                SET state = ?, finished_at = ?, failed_reason = ?,
                    lease_token = NULL, lease_until = NULL
                WHERE queue = ? AND id = ?
                """,
                (final_state.value, now, reason, queue, entry_id),
            )
            self._prune(conn, queue, final_state, retention, now)
            return True

    @staticmethod
    def _prune(
        conn: sqlite3.Connection,
        queue: str,
        state: EntryState,
        retention: Retention,
        now: float,
    ) -> None:
        if retention.age_seconds is not None:
            conn.execute(
                "DELETE FROM queue_entries WHERE queue = ? AND state = ? AND finished_at < ?",
                (queue, state.value, now - float(retention.age_seconds)),
            )
        if retention.count is not None:
            conn.execute(
                """
                DELETE FROM queue_entries
                WHERE queue = ? AND state = ? AND id NOT IN (
                    SELECT id FROM queue_entries
                    WHERE queue = ? AND state = ?
                    ORDER BY finished_at DESC
                        LIMIT ?
                )
                """,
                (queue, state.value, queue, state.value, max(0, int(retention.count))),
            )

    def remove(self, queue: str, entry_id: str) -> bool:
        """Delete an entry unless a consumer holds it."""
        with self._tx() as conn:
            cur = conn.execute(
                "DELETE FROM queue_entries WHERE queue = ? AND id = ? AND state != 'active'",
                (queue, entry_id),
            )
            return cur.rowcount == 1

    def count(self, queue: str) -> int:
        """Pending backlog: waiting + delayed entries."""
        conn = self._get_conn()
        try:
            (n,) = conn.execute(
                "SELECT COUNT(*) FROM queue_entries WHERE queue = ? AND state = 'waiting'",
                (queue,),
            ).fetchone()
            return int(n)
        finally:
            conn.close()

    def counts(self, queue: str) -> dict[str, int]:
        out = {state.value: 0 for state in EntryState}
        conn = self._get_conn()
        try:
            now = self.now()
            rows = conn.execute(
                """
                SELECT
                    CASE WHEN state = 'waiting' AND available_at > ? THEN 'delayed' ELSE state END AS s,
                    COUNT(*) AS n
                FROM queue_entries
                WHERE queue = ?
                GROUP BY s
                """,
                (now, queue),
            ).fetchall()
            for row in rows:
                out[EntryState.from_db(row["s"]).value] = int(row["n"])
            return out
        finally:
            conn.close()

    def get_entry(self, queue: str, entry_id: str) -> QueueEntry | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM queue_entries WHERE queue = ? AND id = ?",
                (queue, entry_id),
            ).fetchone()
            return self._row_to_entry(row) if row else None
        finally:
            conn.close()

    def get_state(self, queue: str, entry_id: str) -> EntryState | None:
        entry = self.get_entry(queue, entry_id)
        return entry.state if entry else None

    def get_delayed(self, queue: str) -> list[DelayedEntrySnapshot]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT id, name, data, timestamp, delay_ms
                FROM queue_entries
                WHERE queue = ? AND state = 'waiting' AND available_at > ?
                ORDER BY available_at ASC
                """,
                (queue, self.now()),
            ).fetchall()
            return [
                DelayedEntrySnapshot(
                    id=str(r["id"]),
                    name=str(r["name"]),
                    data=self._load(r["data"]),
                    timestamp=float(r["timestamp"]),
                    delay_ms=int(r["delay_ms"] or 0),
                )
                for r in rows
            ]
        finally:
            conn.close()
