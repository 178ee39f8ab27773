"""
Enrichment work queue using SQLite.

Every new recipe version gets one queue item. The processor claims items
one at a time, oldest first, and records the outcome on the item:

    pending -> processing -> completed
                          -> failed -> pending   (explicit retry only)

Dequeue is atomic: the pending -> processing transition is a conditional
UPDATE inside a single IMMEDIATE transaction, so two consumers can never
claim the same item. Claims left behind by a crashed processor are
recovered by `recover_stale_claims`.

Failed items are kept with their error for diagnosis. Completed and failed
items are soft-deleted by `cleanup` after the retention window.
"""

import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from .errors import NotFoundError, ValidationError
from .types import QueueItem, new_id, utc_now

logger = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)

# A processing claim this old is assumed abandoned
STALE_CLAIM_SECONDS = 600  # 10 minutes

DEFAULT_RETENTION_DAYS = 7

_COLUMNS = """
    id, title, shortid, version_id, status, error,
    created_at, updated_at, completed_at, deleted_at
"""


def _cutoff(delta: timedelta) -> str:
    """Timestamp `delta` ago, in the stored timestamp format."""
    return (datetime.now(timezone.utc) - delta).strftime("%Y-%m-%dT%H:%M:%S.%f")


def _row_to_item(row: sqlite3.Row) -> QueueItem:
    return QueueItem(
        id=row["id"],
        title=row["title"],
        shortid=row["shortid"],
        version_id=row["version_id"],
        status=row["status"],
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
        deleted_at=row["deleted_at"],
    )


class EnrichmentQueue:
    """
    SQLite-backed queue of versions awaiting summary and embedding.

    At most one live item per version is pending or processing at a time;
    `add` returns the existing item instead of inserting a second one.
    """

    def __init__(self, queue_path: Path):
        self._queue_path = queue_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        self._queue_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit; pop_next opens its own BEGIN IMMEDIATE
        self._conn = sqlite3.connect(
            str(self._queue_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row

        # Several processors may share the file
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS queue_items (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                shortid TEXT NOT NULL,
                version_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT,
                deleted_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_queue_status_created
            ON queue_items(status, created_at);

            CREATE UNIQUE INDEX IF NOT EXISTS idx_queue_one_active_per_version
            ON queue_items(version_id)
            WHERE deleted_at IS NULL AND status IN ('pending', 'processing');
        """)

    def _active_for_version(self, version_id: str) -> Optional[QueueItem]:
        row = self._conn.execute(f"""
            SELECT {_COLUMNS} FROM queue_items
            WHERE version_id = ? AND deleted_at IS NULL
              AND status IN ('pending', 'processing')
        """, (version_id,)).fetchone()
        return _row_to_item(row) if row else None

    def _require(self, item_id: str) -> QueueItem:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM queue_items WHERE id = ? AND deleted_at IS NULL",
            (item_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Queue item not found: {item_id}")
        return _row_to_item(row)

    # -------------------------------------------------------------------------
    # Producer
    # -------------------------------------------------------------------------

    def add(self, title: str, shortid: str, version_id: str) -> QueueItem:
        """
        Enqueue a version for enrichment.

        Idempotent while work is outstanding: if the version already has a
        pending or processing item, that item is returned unchanged.
        """
        now = utc_now()
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                existing = self._active_for_version(version_id)
                if existing is None:
                    item_id = new_id()
                    self._conn.execute(f"""
                        INSERT INTO queue_items ({_COLUMNS})
                        VALUES (?, ?, ?, ?, 'pending', NULL, ?, ?, NULL, NULL)
                    """, (item_id, title, shortid, version_id, now, now))
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

            if existing is not None:
                logger.debug("Version %s already queued as %s", version_id, existing.id)
                return existing
            return self._require(item_id)

    # -------------------------------------------------------------------------
    # Consumer
    # -------------------------------------------------------------------------

    def pop_next(self) -> Optional[QueueItem]:
        """
        Atomically claim the oldest pending item.

        Returns the claimed item (status 'processing') or None if nothing
        is pending.
        """
        now = utc_now()
        with self._lock:
            # Take the write lock before reading so no other process can claim the same row
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute("""
                    SELECT id FROM queue_items
                    WHERE status = 'pending' AND deleted_at IS NULL
                    ORDER BY created_at ASC, rowid ASC
                    LIMIT 1
                """).fetchone()
                claimed = 0
                if row is not None:
                    cursor = self._conn.execute("""
                        UPDATE queue_items SET status = 'processing', updated_at = ?
                        WHERE id = ? AND status = 'pending'
                    """, (now, row["id"]))
                    claimed = cursor.rowcount
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

            if not claimed:
                return None
            return self._require(row["id"])

    def mark_completed(self, item_id: str) -> None:
        """Record successful enrichment."""
        now = utc_now()
        with self._lock:
            self._require(item_id)
            self._conn.execute("""
                UPDATE queue_items
                SET status = 'completed', error = NULL, completed_at = ?, updated_at = ?
                WHERE id = ?
            """, (now, now, item_id))
            self._conn.commit()

    def mark_failed(self, item_id: str, error: str) -> None:
        """Record failed enrichment, keeping the error for diagnosis."""
        now = utc_now()
        with self._lock:
            self._require(item_id)
            self._conn.execute("""
                UPDATE queue_items
                SET status = 'failed', error = ?, completed_at = ?, updated_at = ?
                WHERE id = ?
            """, (error, now, now, item_id))
            self._conn.commit()
        logger.info("Queue item %s failed: %s", item_id, error)

    def recover_stale_claims(self, stale_seconds: int = STALE_CLAIM_SECONDS) -> int:
        """
        Put items held in 'processing' for over `stale_seconds` back to pending.

        Such a claim belongs to a processor that exited mid-item. Returns the
        number of items released.
        """
        cutoff = _cutoff(timedelta(seconds=stale_seconds))
        with self._lock:
            cursor = self._conn.execute("""
                UPDATE queue_items SET status = 'pending', updated_at = ?
                WHERE status = 'processing' AND deleted_at IS NULL
                  AND updated_at < ?
            """, (utc_now(), cutoff))
            self._conn.commit()
        recovered = cursor.rowcount
        if recovered:
            logger.info("Recovered %d stale claims from crashed processors", recovered)
        return recovered

    # -------------------------------------------------------------------------
    # Retry
    # -------------------------------------------------------------------------

    def _retry_locked(self, item: QueueItem, now: str) -> QueueItem:
        """Move one failed item back to pending (caller holds the lock)."""
        active = self._active_for_version(item.version_id)
        if active is not None:
            # Version was re-queued meanwhile; the failed item is redundant
            self._conn.execute(
                "UPDATE queue_items SET deleted_at = ?, updated_at = ? WHERE id = ?",
                (now, now, item.id),
            )
            return active
        self._conn.execute("""
            UPDATE queue_items
            SET status = 'pending', error = NULL, completed_at = NULL, updated_at = ?
            WHERE id = ?
        """, (now, item.id))
        return self._require(item.id)

    def retry(self, item_id: str) -> QueueItem:
        """
        Send a failed item back to pending.

        Raises:
            NotFoundError: Unknown item
            ValidationError: Item is not in 'failed' status
        """
        now = utc_now()
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                item = self._require(item_id)
                if item.status != FAILED:
                    raise ValidationError(
                        f"Only failed items can be retried: {item_id} is {item.status}"
                    )
                result = self._retry_locked(item, now)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        logger.info("Retrying queue item %s", item_id)
        return result

    def retry_all_errors(self) -> int:
        """Send every failed item back to pending. Returns count."""
        now = utc_now()
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                rows = self._conn.execute(f"""
                    SELECT {_COLUMNS} FROM queue_items
                    WHERE status = 'failed' AND deleted_at IS NULL
                    ORDER BY created_at ASC
                """).fetchall()
                for row in rows:
                    self._retry_locked(_row_to_item(row), now)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        count = len(rows)
        if count:
            logger.info("Reset %d failed items back to pending", count)
        return count

    # -------------------------------------------------------------------------
    # Projections
    # -------------------------------------------------------------------------

    def _select(self, where: str, order: str, limit: int) -> list[QueueItem]:
        with self._lock:
            rows = self._conn.execute(f"""
                SELECT {_COLUMNS} FROM queue_items
                WHERE deleted_at IS NULL AND {where}
                ORDER BY {order}
                LIMIT ?
            """, (limit,)).fetchall()
        return [_row_to_item(row) for row in rows]

    def get(self, item_id: str) -> Optional[QueueItem]:
        with self._lock:
            try:
                return self._require(item_id)
            except NotFoundError:
                return None

    def get_pending(self, limit: int = 50) -> list[QueueItem]:
        """Pending and in-flight items, oldest first."""
        return self._select(
            "status IN ('pending', 'processing')", "created_at ASC, rowid ASC", limit,
        )

    def get_recent_errors(self, limit: int = 10) -> list[QueueItem]:
        """Failed items, most recent failure first."""
        return self._select("status = 'failed'", "updated_at DESC", limit)

    def get_recent_completed(self, limit: int = 10) -> list[QueueItem]:
        """Completed items, most recently completed first."""
        return self._select("status = 'completed'", "completed_at DESC", limit)

    def stats(self) -> dict:
        """Counts per status plus `total`; soft-deleted items are excluded."""
        with self._lock:
            cursor = self._conn.execute("""
                SELECT status, COUNT(*) FROM queue_items
                WHERE deleted_at IS NULL
                GROUP BY status
            """)
            by_status = {row[0]: row[1] for row in cursor.fetchall()}
            oldest = self._conn.execute("""
                SELECT MIN(created_at) FROM queue_items
                WHERE deleted_at IS NULL AND status = 'pending'
            """).fetchone()[0]
        result = {status: by_status.get(status, 0) for status in STATUSES}
        result["total"] = sum(by_status.values())
        result["oldest_pending"] = oldest
        result["queue_path"] = str(self._queue_path)
        return result

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    def remove(self, item_id: str) -> None:
        """Soft-delete one item."""
        now = utc_now()
        with self._lock:
            self._require(item_id)
            self._conn.execute(
                "UPDATE queue_items SET deleted_at = ?, updated_at = ? WHERE id = ?",
                (now, now, item_id),
            )
            self._conn.commit()

    def cleanup(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """
        Soft-delete finished items older than the retention window.

        Pending and processing items are never touched.

        Returns count of items removed.
        """
        cutoff = _cutoff(timedelta(days=retention_days))
        now = utc_now()
        with self._lock:
            cursor = self._conn.execute("""
                UPDATE queue_items SET deleted_at = ?, updated_at = ?
                WHERE deleted_at IS NULL
                  AND status IN ('completed', 'failed')
                  AND completed_at < ?
            """, (now, now, cutoff))
            self._conn.commit()
        count = cursor.rowcount
        if count:
            logger.info("Cleaned up %d finished queue items", count)
        return count

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
