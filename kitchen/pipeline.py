"""
Enrichment pipeline: summaries and embeddings for recipe versions.

The pipeline is pure compute. It wraps the configured providers and knows
nothing about stores or the queue; the processor applies its results.

Every provider call runs on its own daemon thread and is abandoned after
the timeout, so a hung provider cannot hold up later calls. Providers also
apply a timeout to their own HTTP requests. Timeouts and provider errors
surface as ProcessingError, which the processor records on the queue item.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .config import NO_PROVIDER, StoreConfig
from .errors import ProcessingError
from .providers.base import EmbeddingProvider, SummarizationProvider, get_registry

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 60.0
# ~6000 tokens at 4 chars/token
DEFAULT_MAX_EMBED_CHARS = 24000


def document_text(title: str, content: str, max_chars: int = DEFAULT_MAX_EMBED_CHARS) -> str:
    """
    Text embedded for a version: ``"{title}\\n\\n{content}"``.

    Longer text is cut at `max_chars`, then back to the last whitespace so
    no word is split. Deterministic for a given input.
    """
    text = f"{title}\n\n{content}"
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    for i in range(len(cut) - 1, 0, -1):
        if cut[i].isspace():
            return cut[:i].rstrip()
    return cut


@dataclass
class Enrichment:
    """Result of enriching one version. Caller applies to stores."""
    summary: str
    vector: list[float]


class EnrichmentPipeline:
    """
    Summarize and embed recipes with the configured providers.

    Either provider may be missing (no credentials, or `none` configured);
    `is_configured` reports whether full enrichment is possible.
    """

    def __init__(
        self,
        embedding_provider: Optional[EmbeddingProvider] = None,
        summarization_provider: Optional[SummarizationProvider] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_embed_chars: int = DEFAULT_MAX_EMBED_CHARS,
    ):
        self._embedding = embedding_provider
        self._summarization = summarization_provider
        self.timeout = timeout
        self.max_embed_chars = max_embed_chars
        self._closed = False

    @classmethod
    def from_config(cls, config: StoreConfig) -> "EnrichmentPipeline":
        """
        Build a pipeline from store config.

        A provider that cannot be created (missing credential, unreachable
        server) is logged and left unset rather than failing startup.
        """
        registry = get_registry()

        embedding = None
        if config.embedding.name and config.embedding.name != NO_PROVIDER:
            try:
                embedding = registry.create_embedding(
                    config.embedding.name, config.embedding.params,
                )
            except (ValueError, RuntimeError) as e:
                logger.warning("Embedding provider unavailable: %s", e)

        summarization = None
        if config.summarization.name and config.summarization.name != NO_PROVIDER:
            try:
                summarization = registry.create_summarization(
                    config.summarization.name, config.summarization.params,
                )
            except (ValueError, RuntimeError) as e:
                logger.warning("Summarization provider unavailable: %s", e)

        return cls(
            embedding,
            summarization,
            timeout=config.processor.timeout,
            max_embed_chars=config.processor.max_embed_chars,
        )

    @property
    def has_embeddings(self) -> bool:
        return self._embedding is not None

    def is_configured(self) -> bool:
        """True when both a summarizer and an embedder are available."""
        return self._embedding is not None and self._summarization is not None

    def _call(self, what: str, fn: Callable[..., T], *args) -> T:
        """Run a provider call under the timeout."""
        if self._closed:
            raise ProcessingError(f"{what} requested after the pipeline was closed")

        outcome: dict = {}

        def run():
            try:
                outcome["value"] = fn(*args)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=run, name=f"kitchen-{what.lower()}", daemon=True)
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            # Left to finish on its own; the result is discarded
            logger.warning("%s still running after %gs, abandoned", what, self.timeout)
            raise ProcessingError(f"{what} timed out after {self.timeout:g}s")

        error = outcome.get("error")
        if isinstance(error, ProcessingError):
            raise error
        if error is not None:
            raise ProcessingError(f"{what} failed: {type(error).__name__}: {error}") from error
        return outcome["value"]

    def summarize(self, title: str, content: str) -> str:
        """Markdown summary of a recipe."""
        if self._summarization is None:
            raise ProcessingError("No summarization provider configured")
        summary = self._call("Summarization", self._summarization.summarize, title, content)
        if not summary or not summary.strip():
            raise ProcessingError("Summarization returned empty text")
        return summary.strip()

    def embed(self, text: str) -> list[float]:
        """Embedding of free text (used for search queries)."""
        if self._embedding is None:
            raise ProcessingError("No embedding provider configured")
        vector = self._call("Embedding", self._embedding.embed, text)
        if not vector:
            raise ProcessingError("Embedding returned an empty vector")
        return list(vector)

    def embed_document(self, title: str, content: str) -> list[float]:
        """Embedding of a version's title and content."""
        return self.embed(document_text(title, content, self.max_embed_chars))

    def enrich(self, title: str, content: str) -> Enrichment:
        """Summary and document embedding for one version."""
        summary = self.summarize(title, content)
        vector = self.embed_document(title, content)
        return Enrichment(summary=summary, vector=vector)

    def close(self) -> None:
        # Abandoned calls are daemon threads and need no cleanup
        self._closed = True
