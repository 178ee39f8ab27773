"""
Hybrid recipe search.

Vector search over current embeddings is the primary path. When it cannot
answer (no embedding provider, provider error, or no hit above the
threshold) the query falls back to case-insensitive text search over
current versions. Search never raises because the vector path failed.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .embedding_store import DEFAULT_THRESHOLD
from .pipeline import EnrichmentPipeline
from .protocol import EmbeddingStoreProtocol, VersionStoreProtocol

logger = logging.getLogger(__name__)

# Fixed score reported for text matches; not comparable to cosine scores
TEXT_SEARCH_SIMILARITY = 0.8

DEFAULT_LIMIT = 10

# Extra vector hits fetched so that deleted recipes and duplicates can be dropped
_OVERFETCH = 20


@dataclass
class SearchResult:
    """One recipe matched by a search."""
    recipe_id: str
    short_id: str
    title: str
    version_id: str
    version_number: int
    similarity: float
    source: str  # "vector" or "text"
    summary: Optional[str] = None


class SearchService:
    """Vector search with text fallback over the recipe stores."""

    def __init__(
        self,
        version_store: VersionStoreProtocol,
        embedding_store: EmbeddingStoreProtocol,
        pipeline: EnrichmentPipeline,
        *,
        threshold: float = DEFAULT_THRESHOLD,
    ):
        self._versions = version_store
        self._embeddings = embedding_store
        self._pipeline = pipeline
        self.threshold = threshold

    def _to_result(
        self, recipe_id: str, similarity: float, source: str,
    ) -> Optional[SearchResult]:
        """
        Describe a live recipe by its current version.

        A vector hit may come from an older version whose successor is not
        enriched yet; the result still shows the current title, and the
        summary is whatever the current version has (possibly None).
        """
        recipe = self._versions.read(recipe_id)
        if recipe is None or recipe.current_version is None:
            return None
        version = recipe.current_version
        return SearchResult(
            recipe_id=recipe.id,
            short_id=recipe.short_id,
            title=version.title,
            version_id=version.id,
            version_number=version.version_number,
            similarity=similarity,
            source=source,
            summary=version.ai_summary,
        )

    def vector_search(
        self,
        query: str,
        limit: int = DEFAULT_LIMIT,
        threshold: Optional[float] = None,
        project_ids: Optional[list[str]] = None,
    ) -> list[SearchResult]:
        """
        Rank recipes by embedding similarity to the query.

        Raises whatever the pipeline raises (ProcessingError); callers that
        want degradation use `hybrid_search`.
        """
        threshold = self.threshold if threshold is None else threshold
        vector = self._pipeline.embed(query)

        allowed = None
        if project_ids:
            allowed = self._versions.version_ids_in_projects(project_ids)
            if not allowed:
                return []

        hits = self._embeddings.similarity_search(
            vector, limit=limit + _OVERFETCH, threshold=threshold, version_ids=allowed,
        )
        results = []
        seen = set()
        for hit in hits:
            if hit.recipe_id in seen:
                continue
            seen.add(hit.recipe_id)
            result = self._to_result(hit.recipe_id, hit.similarity, "vector")
            if result is not None:
                results.append(result)
            if len(results) >= limit:
                break
        return results

    def text_search(
        self,
        query: str,
        limit: int = DEFAULT_LIMIT,
        project_ids: Optional[list[str]] = None,
    ) -> list[SearchResult]:
        """Substring match on title/content; title matches rank first."""
        versions = self._versions.text_search(query, limit=limit, project_ids=project_ids)
        results = []
        for version in versions:
            result = self._to_result(version.recipe_id, TEXT_SEARCH_SIMILARITY, "text")
            if result is not None:
                results.append(result)
        return results

    def hybrid_search(
        self,
        query: str,
        limit: int = DEFAULT_LIMIT,
        project_ids: Optional[list[str]] = None,
    ) -> list[SearchResult]:
        """
        Vector search, falling back to text search on error or no hits.

        Args:
            query: Free-text query (blank returns no results)
            limit: Maximum results
            project_ids: Optional project short ids to restrict to
        """
        if not query or not query.strip():
            return []
        query = query.strip()

        if self._pipeline.has_embeddings:
            try:
                results = self.vector_search(query, limit=limit, project_ids=project_ids)
                if results:
                    return results
                logger.debug("No vector hits for %r, falling back to text search", query)
            except Exception as e:
                logger.warning("Vector search failed, falling back to text search: %s", e)
        else:
            logger.debug("No embedding provider, using text search")

        return self.text_search(query, limit=limit, project_ids=project_ids)
