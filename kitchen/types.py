"""
Data types for the recipe store.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .errors import ValidationError


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.ffffff.

    All timestamps are UTC, stored without timezone suffix. Microseconds
    are kept so that queue ordering by creation time is stable.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Handles both the canonical format (no suffix) and formats that may
    include 'Z' or '+00:00' suffixes.
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def new_id() -> str:
    """Opaque row identifier."""
    return uuid.uuid4().hex


def version_label(version_number: int) -> str:
    """Display string for a version number ("v3")."""
    return f"v{version_number}"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

MAX_TITLE_LENGTH = 200
MAX_SHORT_ID_LENGTH = 50
MAX_CONTENT_LENGTH = 100_000
MAX_TAG_NAME_LENGTH = 50
MAX_PROJECT_TITLE_LENGTH = 100
MAX_PROJECT_DESCRIPTION_LENGTH = 300

_SHORT_ID_RE = re.compile(r'^[a-zA-Z0-9_-]+$')


def _require_length(value: str, what: str, maximum: int) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{what} must be a string")
    stripped = value.strip()
    if not stripped:
        raise ValidationError(f"{what} is required")
    if len(stripped) > maximum:
        raise ValidationError(f"{what} must be less than {maximum} characters")
    return stripped


def validate_title(title: str) -> str:
    """Validate and trim a recipe or version title."""
    return _require_length(title, "Title", MAX_TITLE_LENGTH)


def validate_short_id(short_id: str) -> str:
    """Validate and trim a short id (letters, numbers, hyphens, underscores)."""
    short_id = _require_length(short_id, "Short ID", MAX_SHORT_ID_LENGTH)
    if not _SHORT_ID_RE.match(short_id):
        raise ValidationError(
            f"Short ID can only contain letters, numbers, hyphens, and underscores: {short_id!r}"
        )
    return short_id


def validate_content(content: str) -> str:
    """Validate content length. Content is stored untrimmed."""
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Content is required")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Content must be less than {MAX_CONTENT_LENGTH} characters")
    return content


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class Tag:
    id: str
    name: str


@dataclass
class Project:
    id: str
    short_id: str
    title: str
    description: Optional[str] = None


@dataclass
class RecipeInput:
    """User-supplied recipe metadata for create / rename."""
    title: str
    short_id: str


@dataclass
class VersionInput:
    """User-supplied content for a new version."""
    title: str
    content: str
    tag_ids: list[str] = field(default_factory=list)
    project_ids: list[str] = field(default_factory=list)


@dataclass
class RecipeVersion:
    """
    An immutable snapshot of a recipe's content.

    Only `is_current`, `ai_summary` and `deleted_at` change after insert.
    """
    id: str
    recipe_id: str
    version_number: int
    version_id: str
    short_id: str
    title: str
    content: str
    content_hash: str
    is_current: bool
    created_at: str
    updated_at: str
    ai_summary: Optional[str] = None
    deleted_at: Optional[str] = None
    tags: list[Tag] = field(default_factory=list)
    projects: list[Project] = field(default_factory=list)


@dataclass
class Recipe:
    """A named, versioned markdown document."""
    id: str
    short_id: str
    title: str
    created_at: str
    updated_at: str
    current_version_id: Optional[str] = None
    deleted_at: Optional[str] = None
    current_version: Optional[RecipeVersion] = None


@dataclass
class QueueItem:
    """A unit of enrichment work tied to one version."""
    id: str
    title: str
    shortid: str
    version_id: str
    status: str
    created_at: str
    updated_at: str
    error: Optional[str] = None
    completed_at: Optional[str] = None
    deleted_at: Optional[str] = None


@dataclass
class EmbeddingRecord:
    """Stored vector for one version."""
    id: str
    version_id: str
    recipe_id: str
    title: str
    short_id: str
    vector: list[float]
    is_current: bool
    created_at: str
    updated_at: str


@dataclass
class SimilarityHit:
    """One row from an embedding similarity search."""
    version_id: str
    recipe_id: str
    title: str
    short_id: str
    similarity: float
