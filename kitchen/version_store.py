"""
Recipe and version store using SQLite.

The version store is the source of truth for:
- Recipe identity (id + user-facing short id)
- The append-only chain of versions per recipe
- Which version is current
- AI summaries written back by the enrichment processor
- Tag / project associations

Every edit appends a new version; nothing is rewritten in place except the
`is_current` flag, the summary, and soft-delete timestamps. Version numbers
come from MAX(version_number) over all rows of a recipe, deleted rows
included, so a number is never handed out twice.

Writes run inside BEGIN IMMEDIATE transactions. Two partial unique indexes
back the invariants: one live recipe per short id (case-insensitive) and
one current version per recipe.
"""

import hashlib
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import (
    ConcurrencyConflict,
    DuplicateError,
    NoChangeError,
    NotFoundError,
    ValidationError,
)
from .types import (
    MAX_PROJECT_DESCRIPTION_LENGTH,
    MAX_PROJECT_TITLE_LENGTH,
    MAX_TAG_NAME_LENGTH,
    Project,
    Recipe,
    RecipeInput,
    RecipeVersion,
    Tag,
    VersionInput,
    _require_length,
    new_id,
    utc_now,
    validate_content,
    validate_short_id,
    validate_title,
    version_label,
)

logger = logging.getLogger(__name__)

# Attempts for a save that loses a version-number race
SAVE_MAX_ATTEMPTS = 3

_VERSION_COLUMNS = """
    id, recipe_id, version_number, version_id, short_id, title, content,
    content_hash, is_current, ai_summary, created_at, updated_at, deleted_at
"""


def content_hash(title: str, content: str) -> str:
    """SHA-256 over ``title + ":" + content``, hex encoded.

    Gates the no-change check on save; must stay bit-reproducible.
    """
    return hashlib.sha256(f"{title}:{content}".encode("utf-8")).hexdigest()


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


class VersionStore:
    """
    SQLite-backed store for recipes and their version history.

    One connection is shared across threads; every statement runs under
    an internal lock.
    """

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file
        """
        self._db_path = store_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        # Saves to one recipe queue up here before touching the connection
        self._recipe_locks: dict[str, threading.Lock] = {}
        self._recipe_locks_guard = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit; writes run in explicit BEGIN IMMEDIATE blocks
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.create_function("casefold", 1, _casefold, deterministic=True)

        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS recipes (
                id TEXT PRIMARY KEY,
                short_id TEXT NOT NULL,
                title TEXT NOT NULL,
                current_version_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                deleted_at TEXT
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_recipes_live_short_id
            ON recipes(short_id COLLATE NOCASE) WHERE deleted_at IS NULL;

            CREATE TABLE IF NOT EXISTS recipe_versions (
                id TEXT PRIMARY KEY,
                recipe_id TEXT NOT NULL REFERENCES recipes(id),
                version_number INTEGER NOT NULL,
                version_id TEXT NOT NULL,
                short_id TEXT NOT NULL,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                content_hash TEXT NOT NULL,
                is_current INTEGER NOT NULL DEFAULT 0,
                ai_summary TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                deleted_at TEXT,
                UNIQUE (recipe_id, version_number)
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_versions_one_current
            ON recipe_versions(recipe_id) WHERE is_current = 1;

            CREATE INDEX IF NOT EXISTS idx_versions_updated
            ON recipe_versions(updated_at);

            CREATE TABLE IF NOT EXISTS tags (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE COLLATE NOCASE,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                short_id TEXT NOT NULL UNIQUE COLLATE NOCASE,
                title TEXT NOT NULL,
                description TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS version_tags (
                version_id TEXT NOT NULL REFERENCES recipe_versions(id),
                tag_id TEXT NOT NULL REFERENCES tags(id),
                PRIMARY KEY (version_id, tag_id)
            );

            CREATE TABLE IF NOT EXISTS version_projects (
                version_id TEXT NOT NULL REFERENCES recipe_versions(id),
                project_id TEXT NOT NULL REFERENCES projects(id),
                PRIMARY KEY (version_id, project_id)
            );
        """)

    @contextmanager
    def _write_transaction(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE ... COMMIT, rolling back on any exception."""
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _links_for(self, version_ids: list[str]) -> tuple[dict, dict]:
        """Load tags and projects for a batch of versions."""
        tags: dict[str, list[Tag]] = {vid: [] for vid in version_ids}
        projects: dict[str, list[Project]] = {vid: [] for vid in version_ids}
        if not version_ids:
            return tags, projects

        placeholders = ",".join("?" * len(version_ids))
        for row in self._conn.execute(f"""
            SELECT vt.version_id, t.id, t.name
            FROM version_tags vt JOIN tags t ON t.id = vt.tag_id
            WHERE vt.version_id IN ({placeholders})
            ORDER BY t.name COLLATE NOCASE
        """, version_ids):
            tags[row[0]].append(Tag(id=row[1], name=row[2]))

        for row in self._conn.execute(f"""
            SELECT vp.version_id, p.id, p.short_id, p.title, p.description
            FROM version_projects vp JOIN projects p ON p.id = vp.project_id
            WHERE vp.version_id IN ({placeholders})
            ORDER BY p.title COLLATE NOCASE
        """, version_ids):
            projects[row[0]].append(Project(
                id=row[1], short_id=row[2], title=row[3], description=row[4],
            ))

        return tags, projects

    def _rows_to_versions(self, rows: list[sqlite3.Row]) -> list[RecipeVersion]:
        tags, projects = self._links_for([row["id"] for row in rows])
        return [
            RecipeVersion(
                id=row["id"],
                recipe_id=row["recipe_id"],
                version_number=row["version_number"],
                version_id=row["version_id"],
                short_id=row["short_id"],
                title=row["title"],
                content=row["content"],
                content_hash=row["content_hash"],
                is_current=bool(row["is_current"]),
                ai_summary=row["ai_summary"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                deleted_at=row["deleted_at"],
                tags=tags[row["id"]],
                projects=projects[row["id"]],
            )
            for row in rows
        ]

    def _row_to_recipe(self, row: sqlite3.Row, with_current: bool = True) -> Recipe:
        recipe = Recipe(
            id=row["id"],
            short_id=row["short_id"],
            title=row["title"],
            current_version_id=row["current_version_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )
        if with_current and recipe.current_version_id:
            recipe.current_version = self.get_version(recipe.current_version_id)
        return recipe

    def _check_links(
        self,
        conn: sqlite3.Connection,
        tag_ids: list[str],
        project_ids: list[str],
    ) -> None:
        for table, ids, what in (("tags", tag_ids, "Tag"), ("projects", project_ids, "Project")):
            for link_id in ids:
                found = conn.execute(
                    f"SELECT 1 FROM {table} WHERE id = ?", (link_id,)
                ).fetchone()
                if found is None:
                    raise NotFoundError(f"{what} not found: {link_id}")

    def _insert_version(
        self,
        conn: sqlite3.Connection,
        recipe_id: str,
        recipe_short_id: str,
        version_number: int,
        title: str,
        version: VersionInput,
        digest: str,
        now: str,
    ) -> str:
        """Insert a current version row and its links. Returns the row id."""
        version_row_id = new_id()
        conn.execute(f"""
            INSERT INTO recipe_versions ({_VERSION_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, NULL, ?, ?, NULL)
        """, (
            version_row_id, recipe_id, version_number,
            version_label(version_number),
            f"{recipe_short_id}-{version_label(version_number)}",
            title, version.content, digest, now, now,
        ))
        conn.executemany(
            "INSERT OR IGNORE INTO version_tags (version_id, tag_id) VALUES (?, ?)",
            [(version_row_id, tag_id) for tag_id in version.tag_ids],
        )
        conn.executemany(
            "INSERT OR IGNORE INTO version_projects (version_id, project_id) VALUES (?, ?)",
            [(version_row_id, project_id) for project_id in version.project_ids],
        )
        return version_row_id

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def create(self, recipe: RecipeInput, version: VersionInput) -> tuple[Recipe, RecipeVersion]:
        """
        Create a recipe together with its first version.

        Args:
            recipe: Title and short id of the recipe
            version: Title, content and links of version 1

        Returns:
            (Recipe, RecipeVersion) as stored

        Raises:
            ValidationError: Malformed title, short id or content
            DuplicateError: Short id already used by a live recipe
        """
        recipe_title = validate_title(recipe.title)
        short_id = validate_short_id(recipe.short_id)
        version_title = validate_title(version.title)
        validate_content(version.content)

        digest = content_hash(version_title, version.content)
        recipe_id = new_id()
        now = utc_now()

        try:
            with self._write_transaction() as conn:
                existing = conn.execute("""
                    SELECT 1 FROM recipes
                    WHERE short_id = ? COLLATE NOCASE AND deleted_at IS NULL
                """, (short_id,)).fetchone()
                if existing:
                    raise DuplicateError(f"Recipe ID already exists: {short_id}")
                self._check_links(conn, version.tag_ids, version.project_ids)

                conn.execute("""
                    INSERT INTO recipes
                    (id, short_id, title, current_version_id, created_at, updated_at, deleted_at)
                    VALUES (?, ?, ?, NULL, ?, ?, NULL)
                """, (recipe_id, short_id, recipe_title, now, now))
                version_row_id = self._insert_version(
                    conn, recipe_id, short_id, 1, version_title, version, digest, now,
                )
                conn.execute(
                    "UPDATE recipes SET current_version_id = ? WHERE id = ?",
                    (version_row_id, recipe_id),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateError(f"Recipe ID already exists: {short_id}") from e

        logger.info("Created recipe %s (%s)", short_id, recipe_id)
        created = self.read(recipe_id)
        return created, created.current_version

    def _recipe_lock(self, recipe_id: str) -> threading.Lock:
        with self._recipe_locks_guard:
            return self._recipe_locks.setdefault(recipe_id, threading.Lock())

    def _save_once(self, recipe_id: str, version: VersionInput, title: str) -> RecipeVersion:
        digest = content_hash(title, version.content)
        now = utc_now()

        try:
            with self._write_transaction() as conn:
                recipe = conn.execute("""
                    SELECT id, short_id, current_version_id FROM recipes
                    WHERE id = ? AND deleted_at IS NULL
                """, (recipe_id,)).fetchone()
                if recipe is None:
                    raise NotFoundError(f"Recipe not found: {recipe_id}")

                current_hash = None
                if recipe["current_version_id"]:
                    row = conn.execute(
                        "SELECT content_hash FROM recipe_versions WHERE id = ?",
                        (recipe["current_version_id"],),
                    ).fetchone()
                    current_hash = row["content_hash"] if row else None
                if current_hash == digest:
                    raise NoChangeError(
                        "No changes detected - content is identical to current version"
                    )

                self._check_links(conn, version.tag_ids, version.project_ids)

                # Deleted rows included: numbers are never reused
                last = conn.execute(
                    "SELECT MAX(version_number) FROM recipe_versions WHERE recipe_id = ?",
                    (recipe_id,),
                ).fetchone()[0]
                next_number = (last or 0) + 1

                conn.execute("""
                    UPDATE recipe_versions SET is_current = 0, updated_at = ?
                    WHERE recipe_id = ? AND is_current = 1
                """, (now, recipe_id))
                version_row_id = self._insert_version(
                    conn, recipe_id, recipe["short_id"], next_number,
                    title, version, digest, now,
                )
                conn.execute("""
                    UPDATE recipes SET title = ?, current_version_id = ?, updated_at = ?
                    WHERE id = ?
                """, (title, version_row_id, now, recipe_id))
        except sqlite3.IntegrityError as e:
            raise ConcurrencyConflict(
                f"Version number race on recipe {recipe_id}: {e}"
            ) from e

        logger.info("Saved %s %s", recipe["short_id"], version_label(next_number))
        return self.get_version(version_row_id)

    def save(self, recipe_id: str, version: VersionInput) -> RecipeVersion:
        """
        Append a new current version to a recipe.

        The previous current version is flagged not-current and the recipe's
        title and current pointer move to the new version, all in one
        transaction. Saves to the same recipe are serialized by a per-recipe
        lock; one whose version-number insert still collides with another
        process is retried.

        Raises:
            NotFoundError: Recipe missing or deleted, or unknown tag/project
            NoChangeError: Title and content hash equal the current version
            ValidationError: Malformed title or content
            ConcurrencyConflict: Still colliding after SAVE_MAX_ATTEMPTS
        """
        title = validate_title(version.title)
        validate_content(version.content)

        with self._recipe_lock(recipe_id):
            for attempt in range(1, SAVE_MAX_ATTEMPTS + 1):
                try:
                    return self._save_once(recipe_id, version, title)
                except ConcurrencyConflict:
                    if attempt == SAVE_MAX_ATTEMPTS:
                        raise
                    logger.warning(
                        "Save of %s conflicted (attempt %d), retrying", recipe_id, attempt,
                    )
        raise AssertionError("unreachable")

    def revert(self, recipe_id: str, target_version_number: int) -> RecipeVersion:
        """
        Restore an earlier version's content as a new version.

        History stays append-only: version `target_version_number` itself is
        untouched and a new version is created with its title, content,
        tags and projects. Soft-deleted versions can be reverted to.

        Raises:
            NotFoundError: Target version does not exist
            NoChangeError: Target content equals the current version
        """
        target = self.get_version_by_number(
            recipe_id, target_version_number, include_deleted=True,
        )
        if target is None:
            raise NotFoundError(
                f"Target version not found: {recipe_id} {version_label(target_version_number)}"
            )
        return self.save(recipe_id, VersionInput(
            title=target.title,
            content=target.content,
            tag_ids=[t.id for t in target.tags],
            project_ids=[p.id for p in target.projects],
        ))

    def update_metadata(self, recipe_id: str, data: RecipeInput) -> Recipe:
        """
        Rename a recipe (title, short id) without creating a version.

        Raises:
            NotFoundError: Recipe missing or deleted
            DuplicateError: Short id used by another live recipe
        """
        title = validate_title(data.title)
        short_id = validate_short_id(data.short_id)
        now = utc_now()

        try:
            with self._write_transaction() as conn:
                existing = conn.execute(
                    "SELECT 1 FROM recipes WHERE id = ? AND deleted_at IS NULL",
                    (recipe_id,),
                ).fetchone()
                if existing is None:
                    raise NotFoundError(f"Recipe not found: {recipe_id}")
                duplicate = conn.execute("""
                    SELECT 1 FROM recipes
                    WHERE short_id = ? COLLATE NOCASE AND deleted_at IS NULL AND id != ?
                """, (short_id, recipe_id)).fetchone()
                if duplicate:
                    raise DuplicateError(f"Recipe ID already exists: {short_id}")
                conn.execute("""
                    UPDATE recipes SET title = ?, short_id = ?, updated_at = ?
                    WHERE id = ?
                """, (title, short_id, now, recipe_id))
        except sqlite3.IntegrityError as e:
            raise DuplicateError(f"Recipe ID already exists: {short_id}") from e

        return self.read(recipe_id)

    def update_summary(self, version_id: str, summary: str) -> bool:
        """
        Store the AI summary of a version.

        Returns:
            True if the version was found and updated, False otherwise
        """
        with self._write_transaction() as conn:
            cursor = conn.execute("""
                UPDATE recipe_versions SET ai_summary = ?, updated_at = ?
                WHERE id = ?
            """, (summary, utc_now(), version_id))
        return cursor.rowcount > 0

    def delete_recipe(self, recipe_id: str) -> None:
        """Soft-delete a recipe and all of its versions."""
        now = utc_now()
        with self._write_transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM recipes WHERE id = ? AND deleted_at IS NULL",
                (recipe_id,),
            ).fetchone()
            if existing is None:
                raise NotFoundError(f"Recipe not found: {recipe_id}")
            conn.execute("""
                UPDATE recipe_versions SET deleted_at = ?, updated_at = ?
                WHERE recipe_id = ? AND deleted_at IS NULL
            """, (now, now, recipe_id))
            conn.execute("""
                UPDATE recipes
                SET deleted_at = ?, current_version_id = NULL, updated_at = ?
                WHERE id = ?
            """, (now, now, recipe_id))
        logger.info("Deleted recipe %s", recipe_id)

    def restore(self, recipe_id: str) -> Recipe:
        """
        Restore a soft-deleted recipe and all of its versions.

        The current pointer goes back to the version still flagged current,
        or to the highest-numbered version if none is.

        Raises:
            NotFoundError: No such recipe
            DuplicateError: Its short id was taken while it was deleted
        """
        now = utc_now()
        try:
            with self._write_transaction() as conn:
                row = conn.execute(
                    "SELECT short_id FROM recipes WHERE id = ?", (recipe_id,)
                ).fetchone()
                if row is None:
                    raise NotFoundError(f"Recipe not found: {recipe_id}")

                conn.execute("""
                    UPDATE recipe_versions SET deleted_at = NULL, updated_at = ?
                    WHERE recipe_id = ?
                """, (now, recipe_id))

                current = conn.execute("""
                    SELECT id FROM recipe_versions
                    WHERE recipe_id = ? AND is_current = 1
                """, (recipe_id,)).fetchone()
                if current is None:
                    current = conn.execute("""
                        SELECT id FROM recipe_versions WHERE recipe_id = ?
                        ORDER BY version_number DESC LIMIT 1
                    """, (recipe_id,)).fetchone()
                    if current is not None:
                        conn.execute(
                            "UPDATE recipe_versions SET is_current = 1 WHERE id = ?",
                            (current["id"],),
                        )

                conn.execute("""
                    UPDATE recipes
                    SET deleted_at = NULL, current_version_id = ?, updated_at = ?
                    WHERE id = ?
                """, (current["id"] if current else None, now, recipe_id))
        except sqlite3.IntegrityError as e:
            raise DuplicateError(
                f"Cannot restore {recipe_id}: recipe ID {row['short_id']} is in use"
            ) from e

        logger.info("Restored recipe %s", recipe_id)
        return self.read(recipe_id)

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def read(self, recipe_id: str) -> Optional[Recipe]:
        """Get a live recipe by id, with its current version."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM recipes WHERE id = ? AND deleted_at IS NULL",
                (recipe_id,),
            ).fetchone()
            return self._row_to_recipe(row) if row else None

    def read_by_short_id(self, short_id: str) -> Optional[Recipe]:
        """Get a live recipe by short id (case-insensitive)."""
        with self._lock:
            row = self._conn.execute("""
                SELECT * FROM recipes
                WHERE short_id = ? COLLATE NOCASE AND deleted_at IS NULL
            """, (short_id,)).fetchone()
            return self._row_to_recipe(row) if row else None

    def list_recipes(self) -> list[Recipe]:
        """All live recipes ordered by title."""
        with self._lock:
            rows = self._conn.execute("""
                SELECT * FROM recipes WHERE deleted_at IS NULL
                ORDER BY title COLLATE NOCASE
            """).fetchall()
            return [self._row_to_recipe(row) for row in rows]

    def get_version(
        self,
        version_id: str,
        include_deleted: bool = False,
    ) -> Optional[RecipeVersion]:
        """Get a version by row id."""
        sql = f"SELECT {_VERSION_COLUMNS} FROM recipe_versions WHERE id = ?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        with self._lock:
            rows = self._conn.execute(sql, (version_id,)).fetchall()
            versions = self._rows_to_versions(rows)
        return versions[0] if versions else None

    def get_version_by_number(
        self,
        recipe_id: str,
        version_number: int,
        include_deleted: bool = False,
    ) -> Optional[RecipeVersion]:
        """Get a version of a recipe by its number."""
        sql = f"""
            SELECT {_VERSION_COLUMNS} FROM recipe_versions
            WHERE recipe_id = ? AND version_number = ?
        """
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        with self._lock:
            rows = self._conn.execute(sql, (recipe_id, version_number)).fetchall()
            versions = self._rows_to_versions(rows)
        return versions[0] if versions else None

    def get_version_history(self, recipe_id: str) -> list[RecipeVersion]:
        """All live versions of a live recipe, newest first."""
        with self._lock:
            if self.read(recipe_id) is None:
                raise NotFoundError(f"Recipe not found: {recipe_id}")
            rows = self._conn.execute(f"""
                SELECT {_VERSION_COLUMNS} FROM recipe_versions
                WHERE recipe_id = ? AND deleted_at IS NULL
                ORDER BY version_number DESC
            """, (recipe_id,)).fetchall()
            return self._rows_to_versions(rows)

    def max_version(self, recipe_id: str) -> int:
        """Highest version number ever assigned to a recipe (0 if none)."""
        with self._lock:
            value = self._conn.execute(
                "SELECT MAX(version_number) FROM recipe_versions WHERE recipe_id = ?",
                (recipe_id,),
            ).fetchone()[0]
        return value or 0

    def version_ids_in_projects(self, project_short_ids: list[str]) -> set[str]:
        """Live version ids linked to any of the given project short ids."""
        if not project_short_ids:
            return set()
        placeholders = ",".join("?" * len(project_short_ids))
        with self._lock:
            rows = self._conn.execute(f"""
                SELECT vp.version_id
                FROM version_projects vp
                JOIN projects p ON p.id = vp.project_id
                JOIN recipe_versions v ON v.id = vp.version_id
                WHERE casefold(p.short_id) IN ({placeholders})
                  AND v.deleted_at IS NULL
            """, [s.casefold() for s in project_short_ids]).fetchall()
        return {row[0] for row in rows}

    def text_search(
        self,
        query: str,
        limit: int = 10,
        project_ids: Optional[list[str]] = None,
    ) -> list[RecipeVersion]:
        """
        Case-insensitive substring search over current versions.

        Title matches rank above content-only matches; ties go to the most
        recently updated version.

        Args:
            query: Substring to look for in title or content
            limit: Maximum results
            project_ids: Optional project short ids to restrict to
        """
        needle = query.strip().casefold()
        if not needle:
            return []

        params: list = [needle, needle]
        project_clause = ""
        if project_ids:
            placeholders = ",".join("?" * len(project_ids))
            project_clause = f"""
              AND v.id IN (
                SELECT vp.version_id FROM version_projects vp
                JOIN projects p ON p.id = vp.project_id
                WHERE casefold(p.short_id) IN ({placeholders})
              )
            """
            params.extend(p.casefold() for p in project_ids)
        params.extend([needle, limit])

        with self._lock:
            rows = self._conn.execute(f"""
                SELECT {", ".join("v." + c.strip() for c in _VERSION_COLUMNS.split(","))}
                FROM recipe_versions v JOIN recipes r ON r.id = v.recipe_id
                WHERE v.deleted_at IS NULL
                  AND v.is_current = 1
                  AND r.deleted_at IS NULL
                  AND (instr(casefold(v.title), ?) > 0 OR instr(casefold(v.content), ?) > 0)
                  {project_clause}
                ORDER BY
                  CASE WHEN instr(casefold(v.title), ?) > 0 THEN 1 ELSE 2 END,
                  v.updated_at DESC
                LIMIT ?
            """, params).fetchall()
            return self._rows_to_versions(rows)

    # -------------------------------------------------------------------------
    # Tags and Projects
    # -------------------------------------------------------------------------

    def create_tag(self, name: str) -> Tag:
        """Create a tag. Names are unique case-insensitively."""
        name = _require_length(name, "Tag name", MAX_TAG_NAME_LENGTH)
        tag = Tag(id=new_id(), name=name)
        try:
            with self._write_transaction() as conn:
                conn.execute(
                    "INSERT INTO tags (id, name, created_at) VALUES (?, ?, ?)",
                    (tag.id, tag.name, utc_now()),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateError(f"Tag already exists: {name}") from e
        return tag

    def list_tags(self) -> list[Tag]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, name FROM tags ORDER BY name COLLATE NOCASE"
            ).fetchall()
        return [Tag(id=row[0], name=row[1]) for row in rows]

    def create_project(
        self,
        short_id: str,
        title: str,
        description: Optional[str] = None,
    ) -> Project:
        """Create a project. Short ids are unique case-insensitively."""
        short_id = validate_short_id(short_id)
        title = _require_length(title, "Project title", MAX_PROJECT_TITLE_LENGTH)
        if description and len(description) > MAX_PROJECT_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Project description must be less than {MAX_PROJECT_DESCRIPTION_LENGTH} characters"
            )
        project = Project(
            id=new_id(), short_id=short_id, title=title,
            description=description.strip() if description else None,
        )
        try:
            with self._write_transaction() as conn:
                conn.execute("""
                    INSERT INTO projects (id, short_id, title, description, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (project.id, project.short_id, project.title,
                      project.description, utc_now()))
        except sqlite3.IntegrityError as e:
            raise DuplicateError(f"Project ID already exists: {short_id}") from e
        return project

    def list_projects(self) -> list[Project]:
        with self._lock:
            rows = self._conn.execute("""
                SELECT id, short_id, title, description FROM projects
                ORDER BY title COLLATE NOCASE
            """).fetchall()
        return [
            Project(id=row[0], short_id=row[1], title=row[2], description=row[3])
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

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
