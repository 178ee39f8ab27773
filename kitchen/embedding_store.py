"""
Vector store for version embeddings using SQLite.

Vectors are stored as JSON arrays, one row per version. Each recipe has at
most one current embedding: writing a current vector retires the previous
one (flagged not-current, never deleted), so history stays inspectable and
similarity search only ever ranks the latest content of each recipe.

Similarity is cosine, computed in Python over the current rows. That is
adequate for a personal recipe collection; the interface (`upsert`,
`similarity_search`) is what callers depend on.
"""

import json
import logging
import math
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from .errors import ValidationError
from .types import EmbeddingRecord, SimilarityHit, new_id, utc_now

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.3


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class EmbeddingStore:
    """SQLite-backed embedding rows with cosine similarity search."""

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file
        """
        self._db_path = store_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS embeddings (
                id TEXT PRIMARY KEY,
                version_id TEXT NOT NULL UNIQUE,
                recipe_id TEXT NOT NULL,
                title TEXT NOT NULL,
                short_id TEXT NOT NULL,
                vector TEXT NOT NULL,
                dimension INTEGER NOT NULL,
                is_current INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_embeddings_recipe
            ON embeddings(recipe_id);

            CREATE UNIQUE INDEX IF NOT EXISTS idx_embeddings_one_current
            ON embeddings(recipe_id) WHERE is_current = 1;
        """)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> EmbeddingRecord:
        return EmbeddingRecord(
            id=row["id"],
            version_id=row["version_id"],
            recipe_id=row["recipe_id"],
            title=row["title"],
            short_id=row["short_id"],
            vector=json.loads(row["vector"]),
            is_current=bool(row["is_current"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def upsert(
        self,
        version_id: str,
        recipe_id: str,
        title: str,
        short_id: str,
        vector: list[float],
        is_current: bool = True,
    ) -> EmbeddingRecord:
        """
        Store the embedding of a version.

        Re-embedding a version replaces its vector in place. With
        `is_current`, every other embedding of the recipe is retired.
        A superseded version is written with `is_current=False` and leaves
        the recipe's current embedding alone.
        """
        if not vector:
            raise ValidationError("Embedding vector is empty")
        now = utc_now()
        payload = json.dumps([float(x) for x in vector])

        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                if is_current:
                    self._conn.execute("""
                        UPDATE embeddings SET is_current = 0, updated_at = ?
                        WHERE recipe_id = ? AND version_id != ? AND is_current = 1
                    """, (now, recipe_id, version_id))
                self._conn.execute("""
                    INSERT INTO embeddings
                    (id, version_id, recipe_id, title, short_id, vector, dimension,
                     is_current, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(version_id) DO UPDATE SET
                        title = excluded.title,
                        short_id = excluded.short_id,
                        vector = excluded.vector,
                        dimension = excluded.dimension,
                        is_current = excluded.is_current,
                        updated_at = excluded.updated_at
                """, (new_id(), version_id, recipe_id, title, short_id, payload,
                      len(vector), int(is_current), now, now))
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

            row = self._conn.execute(
                "SELECT * FROM embeddings WHERE version_id = ?", (version_id,)
            ).fetchone()
        logger.debug("Stored %d-dim embedding for %s", len(vector), short_id)
        return self._row_to_record(row)

    def get(self, version_id: str) -> Optional[EmbeddingRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM embeddings WHERE version_id = ?", (version_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_current(self, recipe_id: str) -> Optional[EmbeddingRecord]:
        """The current embedding of a recipe, if any."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM embeddings WHERE recipe_id = ? AND is_current = 1",
                (recipe_id,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def similarity_search(
        self,
        vector: list[float],
        limit: int = 10,
        threshold: float = DEFAULT_THRESHOLD,
        version_ids: Optional[set[str]] = None,
    ) -> list[SimilarityHit]:
        """
        Rank current embeddings by cosine similarity to `vector`.

        Args:
            vector: Query embedding
            limit: Maximum hits
            threshold: Minimum similarity to keep a hit
            version_ids: Optional allow-list of version ids

        Returns:
            Hits with similarity >= threshold, most similar first
        """
        with self._lock:
            rows = self._conn.execute("""
                SELECT version_id, recipe_id, title, short_id, vector, dimension
                FROM embeddings WHERE is_current = 1
            """).fetchall()

        hits = []
        skipped = 0
        for row in rows:
            if version_ids is not None and row["version_id"] not in version_ids:
                continue
            if row["dimension"] != len(vector):
                skipped += 1
                continue
            similarity = cosine_similarity(vector, json.loads(row["vector"]))
            if similarity >= threshold:
                hits.append(SimilarityHit(
                    version_id=row["version_id"],
                    recipe_id=row["recipe_id"],
                    title=row["title"],
                    short_id=row["short_id"],
                    similarity=similarity,
                ))
        if skipped:
            logger.warning(
                "Skipped %d embeddings with dimension != %d (provider changed?)",
                skipped, len(vector),
            )

        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits[:limit]

    def count(self, current_only: bool = True) -> int:
        sql = "SELECT COUNT(*) FROM embeddings"
        if current_only:
            sql += " WHERE is_current = 1"
        with self._lock:
            return self._conn.execute(sql).fetchone()[0]

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
