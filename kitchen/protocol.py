"""
Protocol definitions for the storage backends.

The SQLite classes in version_store, embedding_store and enrichment_queue
are the local implementations. Other backends (registered through the
``kitchen.backends`` entry point group) only need to satisfy these
interfaces.
"""

from typing import Optional, Protocol, runtime_checkable

from .types import (
    EmbeddingRecord,
    Project,
    QueueItem,
    Recipe,
    RecipeInput,
    RecipeVersion,
    SimilarityHit,
    Tag,
    VersionInput,
)


@runtime_checkable
class VersionStoreProtocol(Protocol):
    """Recipes, their append-only version chain, tags and projects."""

    # -- Write operations --

    def create(
        self, recipe: RecipeInput, version: VersionInput,
    ) -> tuple[Recipe, RecipeVersion]: ...

    def save(self, recipe_id: str, version: VersionInput) -> RecipeVersion: ...

    def revert(self, recipe_id: str, target_version_number: int) -> RecipeVersion: ...

    def update_metadata(self, recipe_id: str, data: RecipeInput) -> Recipe: ...

    def update_summary(self, version_id: str, summary: str) -> bool: ...

    def delete_recipe(self, recipe_id: str) -> None: ...

    def restore(self, recipe_id: str) -> Recipe: ...

    def create_tag(self, name: str) -> Tag: ...

    def create_project(
        self, short_id: str, title: str, description: Optional[str] = None,
    ) -> Project: ...

    # -- Read operations --

    def read(self, recipe_id: str) -> Optional[Recipe]: ...

    def read_by_short_id(self, short_id: str) -> Optional[Recipe]: ...

    def list_recipes(self) -> list[Recipe]: ...

    def get_version(
        self, version_id: str, include_deleted: bool = False,
    ) -> Optional[RecipeVersion]: ...

    def get_version_by_number(
        self, recipe_id: str, version_number: int, include_deleted: bool = False,
    ) -> Optional[RecipeVersion]: ...

    def get_version_history(self, recipe_id: str) -> list[RecipeVersion]: ...


    def max_version(self, recipe_id: str) -> int: ...

    def version_ids_in_projects(self, project_short_ids: list[str]) -> set[str]: ...

    def text_search(
        self, query: str, limit: int = 10, project_ids: Optional[list[str]] = None,
    ) -> list[RecipeVersion]: ...

    def list_tags(self) -> list[Tag]: ...

    def list_projects(self) -> list[Project]: ...

    def close(self) -> None: ...


@runtime_checkable
class EmbeddingStoreProtocol(Protocol):
    """One vector per version; at most one current vector per recipe."""

    def upsert(
        self,
        version_id: str,
        recipe_id: str,
        title: str,
        short_id: str,
        vector: list[float],
        is_current: bool = True,
    ) -> EmbeddingRecord: ...

    def similarity_search(
        self,
        vector: list[float],
        limit: int = 10,
        threshold: float = 0.3,
        version_ids: Optional[set[str]] = None,
    ) -> list[SimilarityHit]: ...

    def get(self, version_id: str) -> Optional[EmbeddingRecord]: ...

    def count(self, current_only: bool = True) -> int: ...

    def close(self) -> None: ...


@runtime_checkable
class EnrichmentQueueProtocol(Protocol):
    """Durable single-consumer queue of versions awaiting enrichment."""

    def add(self, title: str, shortid: str, version_id: str) -> QueueItem: ...

    def pop_next(self) -> Optional[QueueItem]: ...

    def mark_completed(self, item_id: str) -> None: ...

    def mark_failed(self, item_id: str, error: str) -> None: ...

    def retry(self, item_id: str) -> QueueItem: ...

    def retry_all_errors(self) -> int: ...

    def recover_stale_claims(self, stale_seconds: int = 600) -> int: ...

    def get(self, item_id: str) -> Optional[QueueItem]: ...

    def get_pending(self, limit: int = 50) -> list[QueueItem]: ...

    def get_recent_errors(self, limit: int = 10) -> list[QueueItem]: ...

    def get_recent_completed(self, limit: int = 10) -> list[QueueItem]: ...

    def stats(self) -> dict: ...

    def remove(self, item_id: str) -> None: ...

    def cleanup(self, retention_days: int = 7) -> int: ...

    def close(self) -> None: ...
