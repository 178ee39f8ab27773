"""
Core API for the recipe store.

This is the minimal working implementation focused on:
- create/save/revert: append versions and queue them for enrichment
- get/history: read recipes and their version chains
- search: hybrid vector + text search
- queue/processor: inspect, retry and drain enrichment work
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from .config import StoreConfig, load_or_create_config
from .errors import NotFoundError
from .pipeline import EnrichmentPipeline
from .processor import QueueProcessor
from .protocol import (
    EmbeddingStoreProtocol,
    EnrichmentQueueProtocol,
    VersionStoreProtocol,
)
from .search import SearchResult, SearchService
from .types import (
    Project,
    QueueItem,
    Recipe,
    RecipeInput,
    RecipeVersion,
    Tag,
    VersionInput,
)

logger = logging.getLogger(__name__)


class Kitchen:
    """
    Versioned recipe store with background enrichment and hybrid search.

    Example:
        kitchen = Kitchen()
        kitchen.create_recipe("Deploy to Fly", "deploy-fly", "1. fly launch ...")
        results = kitchen.search("deployment")
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        version_store: Optional[VersionStoreProtocol] = None,
        embedding_store: Optional[EmbeddingStoreProtocol] = None,
        queue: Optional[EnrichmentQueueProtocol] = None,
        pipeline: Optional[EnrichmentPipeline] = None,
    ) -> None:
        """
        Open (or create) a recipe store.

        Args:
            store_path: Path to store directory. Uses default if not specified.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            version_store: Injected version store (skips default backend creation).
            embedding_store: Injected embedding store.
            queue: Injected enrichment queue.
            pipeline: Injected pipeline (skips provider creation).
        """
        # --- Config resolution ---
        if config is not None:
            self._config: StoreConfig = config
        else:
            self._config = load_or_create_config(
                Path(store_path).expanduser().resolve() if store_path else None
            )
        self._store_path = self._config.path

        # --- Persistent operations log ---
        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        # --- Storage backends (injected or factory-created) ---
        if version_store is not None and embedding_store is not None and queue is not None:
            self._versions = version_store
            self._embeddings = embedding_store
            self._queue = queue
        else:
            from .backend import create_stores
            bundle = create_stores(self._config)
            self._versions = version_store or bundle.version_store
            self._embeddings = embedding_store or bundle.embedding_store
            self._queue = queue or bundle.queue

        # Providers are created on first use so read-only commands stay offline
        self._pipeline: Optional[EnrichmentPipeline] = pipeline
        # An injected pipeline belongs to the caller and is not closed here
        self._owns_pipeline = pipeline is None
        self._processor: Optional[QueueProcessor] = None
        self._search: Optional[SearchService] = None
        self._provider_init_lock = threading.Lock()

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def config(self) -> StoreConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Lazy services
    # -------------------------------------------------------------------------

    def _get_pipeline(self) -> EnrichmentPipeline:
        with self._provider_init_lock:
            if self._pipeline is None:
                self._pipeline = EnrichmentPipeline.from_config(self._config)
            return self._pipeline

    def _get_processor(self) -> QueueProcessor:
        pipeline = self._get_pipeline()
        with self._provider_init_lock:
            if self._processor is None:
                self._processor = QueueProcessor(
                    self._versions,
                    self._embeddings,
                    self._queue,
                    pipeline,
                    interval=self._config.processor.interval,
                    stale_claim_seconds=self._config.processor.stale_claim_seconds,
                    retention_days=self._config.queue.retention_days,
                )
            return self._processor

    def _get_search(self) -> SearchService:
        pipeline = self._get_pipeline()
        with self._provider_init_lock:
            if self._search is None:
                self._search = SearchService(
                    self._versions,
                    self._embeddings,
                    pipeline,
                    threshold=self._config.search.threshold,
                )
            return self._search

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _resolve(self, identifier: str) -> Recipe:
        """Find a live recipe by id or short id."""
        recipe = self.get_recipe(identifier)
        if recipe is None:
            raise NotFoundError(f"Recipe not found: {identifier}")
        return recipe

    def _enqueue(self, recipe: Recipe, version: RecipeVersion) -> QueueItem:
        return self._queue.add(version.title, recipe.short_id, version.id)

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def create_recipe(
        self,
        title: str,
        short_id: str,
        content: str,
        *,
        tag_ids: Optional[list[str]] = None,
        project_ids: Optional[list[str]] = None,
    ) -> Recipe:
        """
        Create a recipe with its first version and queue it for enrichment.

        Raises:
            ValidationError: Malformed title, short id or content
            DuplicateError: Short id already in use
        """
        recipe, version = self._versions.create(
            RecipeInput(title=title, short_id=short_id),
            VersionInput(
                title=title,
                content=content,
                tag_ids=list(tag_ids or []),
                project_ids=list(project_ids or []),
            ),
        )
        self._enqueue(recipe, version)
        return recipe

    def save_recipe(
        self,
        identifier: str,
        content: str,
        *,
        title: Optional[str] = None,
        tag_ids: Optional[list[str]] = None,
        project_ids: Optional[list[str]] = None,
    ) -> RecipeVersion:
        """
        Save new content as the recipe's current version.

        Title, tags and projects default to those of the current version.

        Raises:
            NotFoundError: No such recipe
            NoChangeError: Title and content unchanged
        """
        recipe = self._resolve(identifier)
        current = recipe.current_version
        if title is None:
            title = current.title if current else recipe.title
        if tag_ids is None:
            tag_ids = [t.id for t in current.tags] if current else []
        if project_ids is None:
            project_ids = [p.id for p in current.projects] if current else []

        version = self._versions.save(recipe.id, VersionInput(
            title=title,
            content=content,
            tag_ids=list(tag_ids),
            project_ids=list(project_ids),
        ))
        self._enqueue(recipe, version)
        return version

    def revert_recipe(self, identifier: str, version_number: int) -> RecipeVersion:
        """Append a copy of an earlier version as the new current version."""
        recipe = self._resolve(identifier)
        version = self._versions.revert(recipe.id, version_number)
        self._enqueue(recipe, version)
        return version

    def rename_recipe(
        self,
        identifier: str,
        *,
        title: Optional[str] = None,
        short_id: Optional[str] = None,
    ) -> Recipe:
        """Change a recipe's title and/or short id without a new version."""
        recipe = self._resolve(identifier)
        return self._versions.update_metadata(recipe.id, RecipeInput(
            title=title if title is not None else recipe.title,
            short_id=short_id if short_id is not None else recipe.short_id,
        ))

    def delete_recipe(self, identifier: str) -> Recipe:
        """Soft-delete a recipe and its versions. Returns the recipe as it was."""
        recipe = self._resolve(identifier)
        self._versions.delete_recipe(recipe.id)
        return recipe

    def restore_recipe(self, recipe_id: str) -> Recipe:
        """Restore a soft-deleted recipe by id."""
        return self._versions.restore(recipe_id)

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get_recipe(self, identifier: str) -> Optional[Recipe]:
        """Look up a live recipe by id first, then by short id."""
        return self._versions.read(identifier) or self._versions.read_by_short_id(identifier)

    def list_recipes(self) -> list[Recipe]:
        return self._versions.list_recipes()

    def get_history(self, identifier: str) -> list[RecipeVersion]:
        """Versions of a recipe, newest first."""
        return self._versions.get_version_history(self._resolve(identifier).id)

    def get_version(self, identifier: str, version_number: int) -> RecipeVersion:
        recipe = self._resolve(identifier)
        version = self._versions.get_version_by_number(recipe.id, version_number)
        if version is None:
            raise NotFoundError(f"Version not found: {recipe.short_id} v{version_number}")
        return version

    def search(
        self,
        query: str,
        *,
        limit: Optional[int] = None,
        project_ids: Optional[list[str]] = None,
        text_only: bool = False,
    ) -> list[SearchResult]:
        """
        Hybrid search (vector first, text fallback).

        Args:
            query: Free-text query
            limit: Maximum results (default from config)
            project_ids: Restrict to recipes in these projects (short ids)
            text_only: Skip the vector path
        """
        limit = limit or self._config.search.limit
        if text_only:
            if not query or not query.strip():
                return []
            return self._get_search().text_search(
                query.strip(), limit=limit, project_ids=project_ids,
            )
        return self._get_search().hybrid_search(query, limit=limit, project_ids=project_ids)

    # -------------------------------------------------------------------------
    # Tags and Projects
    # -------------------------------------------------------------------------

    def create_tag(self, name: str) -> Tag:
        return self._versions.create_tag(name)

    def list_tags(self) -> list[Tag]:
        return self._versions.list_tags()

    def create_project(
        self, short_id: str, title: str, description: Optional[str] = None,
    ) -> Project:
        return self._versions.create_project(short_id, title, description)

    def list_projects(self) -> list[Project]:
        return self._versions.list_projects()

    # -------------------------------------------------------------------------
    # Queue and Processor
    # -------------------------------------------------------------------------

    def queue_stats(self) -> dict:
        return self._queue.stats()

    def pending(self, limit: int = 50) -> list[QueueItem]:
        return self._queue.get_pending(limit)

    def recent_errors(self, limit: int = 10) -> list[QueueItem]:
        return self._queue.get_recent_errors(limit)

    def recent_completed(self, limit: int = 10) -> list[QueueItem]:
        return self._queue.get_recent_completed(limit)

    def retry(self, item_id: str) -> QueueItem:
        return self._queue.retry(item_id)

    def retry_all(self) -> int:
        return self._queue.retry_all_errors()

    def remove_queue_item(self, item_id: str) -> None:
        self._queue.remove(item_id)

    def cleanup_queue(self, retention_days: Optional[int] = None) -> int:
        days = retention_days if retention_days is not None else self._config.queue.retention_days
        return self._queue.cleanup(days)

    def start_processor(self) -> bool:
        """Start background enrichment. False if no providers are configured."""
        return self._get_processor().start()

    def stop_processor(self, timeout: Optional[float] = 10.0) -> None:
        if self._processor is not None:
            self._processor.stop(timeout)

    def processor_status(self) -> dict:
        if self._processor is None:
            return {"running": False, "processing": False,
                    "interval": self._config.processor.interval}
        return self._processor.status()

    def process_pending(self, limit: Optional[int] = None) -> dict:
        """
        Drain the queue synchronously.

        Returns:
            Dict with: processed (int), failed (int), errors (list)
        """
        processor = self._get_processor()
        self._queue.recover_stale_claims(processor.stale_claim_seconds)
        return processor.run_until_empty(limit)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Stop the processor and close stores and the ops log."""
        self.stop_processor()
        if self._owns_pipeline and self._pipeline is not None:
            self._pipeline.close()
        self._embeddings.close()
        self._versions.close()
        self._queue.close()

        # Remove ops log handler to avoid handler accumulation
        if self._ops_log_handler is not None:
            from .logging_config import remove_ops_log
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
