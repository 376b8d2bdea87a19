"""SQLite checkpoint store.

Two tables:
    checkpoints        one row per (thread_id, checkpoint_ns, checkpoint_id)
    checkpoint_writes  pending channel writes attached to a checkpoint

The store degrades instead of failing: if the database cannot be opened the
store reports ``is_ready() == False`` and every operation becomes a no-op
returning an empty value. Errors during an operation are logged the same way.
Conversations keep working without persistence.
"""

from __future__ import annotations

import functools
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

from loguru import logger

from turngraph.memory.models import (
    Checkpoint,
    CheckpointMetadata,
    CheckpointStats,
    CheckpointTuple,
    PendingWrite,
    ThreadState,
)

T = TypeVar("T")


def _degrades(default: Callable[[], Any]):
    """Return ``default()`` when the store is down or the operation fails."""

    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(fn)
        def wrapper(self: CheckpointStore, *args, **kwargs):
            if not self._ready:
                return default()
            try:
                return fn(self, *args, **kwargs)
            except (sqlite3.Error, OSError, ValueError) as e:
                logger.error(f"Checkpoint {fn.__name__} failed: {e}")
                return default()

        return wrapper

    return decorator


class CheckpointStore:
    """Per-thread checkpoints keyed by conversation id."""

    def __init__(
        self,
        db_path: str | Path = "data/checkpoints.db",
        namespace: str = "",
        timeout: float = 10.0,
    ):
        self.db_path = str(db_path)
        self.namespace = namespace
        self.timeout = timeout
        self._ready = False
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._init_db()
        except (OSError, sqlite3.Error) as e:
            logger.error(f"CheckpointStore unavailable ({self.db_path}): {e}")
            return
        self._ready = True
        logger.info(f"CheckpointStore initialized: {self.db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    def is_ready(self) -> bool:
        return self._ready

    def shutdown(self) -> None:
        """Stop accepting operations. Connections are per-call, nothing to close."""
        if self._ready:
            logger.info("CheckpointStore shut down")
        self._ready = False

    def _ns(self, checkpoint_ns: str | None) -> str:
        return self.namespace if checkpoint_ns is None else checkpoint_ns

    # ════════════════════════════════════════════════════════════
    # CHECKPOINTS
    # ════════════════════════════════════════════════════════════

    @_degrades(lambda: False)
    def put(
        self,
        thread_id: str,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata | None = None,
        checkpoint_ns: str | None = None,
    ) -> bool:
        """Insert or overwrite a checkpoint. Overwriting refreshes ``created_at``."""
        metadata = metadata or CheckpointMetadata()
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO checkpoints
                   (thread_id, checkpoint_ns, checkpoint_id, parent_checkpoint_id,
                    type, checkpoint, metadata, created_at)
                   VALUES (?, ?, ?, ?, 'json', ?, ?, ?)
                   ON CONFLICT (thread_id, checkpoint_ns, checkpoint_id) DO UPDATE SET
                     parent_checkpoint_id = excluded.parent_checkpoint_id,
                     checkpoint = excluded.checkpoint,
                     metadata = excluded.metadata,
                     created_at = excluded.created_at""",
                (
                    thread_id,
                    self._ns(checkpoint_ns),
                    checkpoint.id,
                    checkpoint.parent_checkpoint_id,
                    checkpoint.model_dump_json(),
                    metadata.model_dump_json(),
                    _now(),
                ),
            )
            conn.commit()
        logger.debug(f"Checkpoint saved: {thread_id}/{checkpoint.id} ({metadata.source})")
        return True

    @_degrades(lambda: None)
    def get_latest(self, thread_id: str, checkpoint_ns: str | None = None) -> CheckpointTuple | None:
        with self._get_conn() as conn:
            row = conn.execute(
                """SELECT * FROM checkpoints
                   WHERE thread_id = ? AND checkpoint_ns = ?
                   ORDER BY created_at DESC, rowid DESC LIMIT 1""",
                (thread_id, self._ns(checkpoint_ns)),
            ).fetchone()
        return _row_to_tuple(row) if row else None

    @_degrades(lambda: None)
    def get(
        self,
        thread_id: str,
        checkpoint_id: str,
        checkpoint_ns: str | None = None,
    ) -> CheckpointTuple | None:
        with self._get_conn() as conn:
            row = conn.execute(
                """SELECT * FROM checkpoints
                   WHERE thread_id = ? AND checkpoint_ns = ? AND checkpoint_id = ?""",
                (thread_id, self._ns(checkpoint_ns), checkpoint_id),
            ).fetchone()
        return _row_to_tuple(row) if row else None

    @_degrades(lambda: [])
    def list(
        self,
        thread_id: str,
        limit: int = 10,
        checkpoint_ns: str | None = None,
    ) -> list[CheckpointTuple]:
        """Checkpoints of a thread, newest first."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM checkpoints
                   WHERE thread_id = ? AND checkpoint_ns = ?
                   ORDER BY created_at DESC, rowid DESC LIMIT ?""",
                (thread_id, self._ns(checkpoint_ns), limit),
            ).fetchall()
        return [_row_to_tuple(r) for r in rows]

    # ════════════════════════════════════════════════════════════
    # PENDING WRITES
    # ════════════════════════════════════════════════════════════

    @_degrades(lambda: False)
    def put_writes(
        self,
        thread_id: str,
        checkpoint_id: str,
        writes: list[PendingWrite],
        task_id: str,
        checkpoint_ns: str | None = None,
    ) -> bool:
        with self._get_conn() as conn:
            conn.executemany(
                """INSERT INTO checkpoint_writes
                   (thread_id, checkpoint_ns, checkpoint_id, task_id, idx, channel, type, value)
                   VALUES (?, ?, ?, ?, ?, ?, 'json', ?)
                   ON CONFLICT (thread_id, checkpoint_ns, checkpoint_id, task_id, idx)
                   DO UPDATE SET channel = excluded.channel, value = excluded.value""",
                [
                    (
                        thread_id,
                        self._ns(checkpoint_ns),
                        checkpoint_id,
                        task_id,
                        idx,
                        w.channel,
                        json.dumps(w.value, default=str),
                    )
                    for idx, w in enumerate(writes)
                ],
            )
            conn.commit()
        return True

    @_degrades(lambda: [])
    def list_writes(
        self,
        thread_id: str,
        checkpoint_id: str,
        checkpoint_ns: str | None = None,
    ) -> list[PendingWrite]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT channel, value FROM checkpoint_writes
                   WHERE thread_id = ? AND checkpoint_ns = ? AND checkpoint_id = ?
                   ORDER BY task_id, idx""",
                (thread_id, self._ns(checkpoint_ns), checkpoint_id),
            ).fetchall()
        return [PendingWrite(channel=r["channel"], value=json.loads(r["value"])) for r in rows]

    # ════════════════════════════════════════════════════════════
    # MAINTENANCE
    # ════════════════════════════════════════════════════════════

    @_degrades(lambda: 0)
    def delete_thread(self, thread_id: str) -> int:
        """Delete every checkpoint and write of a thread. Returns checkpoints removed."""
        with self._get_conn() as conn:
            conn.execute("DELETE FROM checkpoint_writes WHERE thread_id = ?", (thread_id,))
            cursor = conn.execute("DELETE FROM checkpoints WHERE thread_id = ?", (thread_id,))
            conn.commit()
        logger.info(f"Checkpoints deleted for thread {thread_id}: {cursor.rowcount}")
        return cursor.rowcount

    @_degrades(lambda: [])
    def get_active_threads(
        self,
        limit: int = 50,
        within: timedelta = timedelta(hours=24),
    ) -> list[ThreadState]:
        """Threads with a checkpoint newer than ``within``, most recent first."""
        cutoff = (datetime.now(timezone.utc) - within).isoformat()
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT c.thread_id, c.checkpoint_id, c.created_at, c.metadata
                   FROM checkpoints c
                   JOIN (SELECT thread_id, MAX(created_at) AS latest
                         FROM checkpoints WHERE checkpoint_ns = ? GROUP BY thread_id) m
                     ON c.thread_id = m.thread_id AND c.created_at = m.latest
                   WHERE c.checkpoint_ns = ? AND c.created_at >= ?
                   ORDER BY c.created_at DESC LIMIT ?""",
                (self.namespace, self.namespace, cutoff, limit),
            ).fetchall()
        threads: dict[str, ThreadState] = {}
        for r in rows:
            threads.setdefault(
                r["thread_id"],
                ThreadState(
                    thread_id=r["thread_id"],
                    last_checkpoint_id=r["checkpoint_id"],
                    last_updated=datetime.fromisoformat(r["created_at"]),
                    metadata=json.loads(r["metadata"] or "{}"),
                ),
            )
        return list(threads.values())

    @_degrades(lambda: 0)
    def cleanup_older_than(self, max_age: timedelta) -> int:
        """Delete checkpoints older than ``max_age``. Returns rows removed."""
        cutoff = (datetime.now(timezone.utc) - max_age).isoformat()
        with self._get_conn() as conn:
            cursor = conn.execute("DELETE FROM checkpoints WHERE created_at < ?", (cutoff,))
            conn.execute(
                """DELETE FROM checkpoint_writes WHERE NOT EXISTS (
                     SELECT 1 FROM checkpoints c
                     WHERE c.thread_id = checkpoint_writes.thread_id
                       AND c.checkpoint_ns = checkpoint_writes.checkpoint_ns
                       AND c.checkpoint_id = checkpoint_writes.checkpoint_id)"""
            )
            conn.commit()
        if cursor.rowcount:
            logger.info(f"Cleaned up {cursor.rowcount} checkpoints older than {max_age}")
        return cursor.rowcount

    @_degrades(CheckpointStats)
    def get_stats(self) -> CheckpointStats:
        with self._get_conn() as conn:
            row = conn.execute(
                """SELECT COUNT(*) AS total, COUNT(DISTINCT thread_id) AS threads,
                          MIN(created_at) AS oldest, MAX(created_at) AS newest
                   FROM checkpoints"""
            ).fetchone()
        path = Path(self.db_path)
        return CheckpointStats(
            total_checkpoints=row["total"],
            total_threads=row["threads"],
            oldest_checkpoint=datetime.fromisoformat(row["oldest"]) if row["oldest"] else None,
            newest_checkpoint=datetime.fromisoformat(row["newest"]) if row["newest"] else None,
            storage_bytes=path.stat().st_size if path.exists() else 0,
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_tuple(row: sqlite3.Row) -> CheckpointTuple:
    return CheckpointTuple(
        thread_id=row["thread_id"],
        checkpoint_ns=row["checkpoint_ns"],
        checkpoint=Checkpoint.model_validate_json(row["checkpoint"]),
        metadata=CheckpointMetadata.model_validate_json(row["metadata"] or "{}"),
        parent_checkpoint_id=row["parent_checkpoint_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


_SCHEMA = """
CREATE TABLE IF NOT EXISTS checkpoints (
    thread_id TEXT NOT NULL,
    checkpoint_ns TEXT NOT NULL DEFAULT '',
    checkpoint_id TEXT NOT NULL,
    parent_checkpoint_id TEXT,
    type TEXT DEFAULT 'json',
    checkpoint TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    PRIMARY KEY (thread_id, checkpoint_ns, checkpoint_id)
);
CREATE INDEX IF NOT EXISTS idx_checkpoints_thread_created
    ON checkpoints(thread_id, checkpoint_ns, created_at DESC);

CREATE TABLE IF NOT EXISTS checkpoint_writes (
    thread_id TEXT NOT NULL,
    checkpoint_ns TEXT NOT NULL DEFAULT '',
    checkpoint_id TEXT NOT NULL,
    task_id TEXT NOT NULL,
    idx INTEGER NOT NULL,
    channel TEXT NOT NULL,
    type TEXT DEFAULT 'json',
    value TEXT,
    PRIMARY KEY (thread_id, checkpoint_ns, checkpoint_id, task_id, idx)
);
"""
