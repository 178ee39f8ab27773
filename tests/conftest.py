"""
Shared pytest fixtures for kitchen tests.

Provides mock providers so no test touches a network API, and tmp_path
backed SQLite stores.
"""

import hashlib
import math
import re
import time

import pytest

from kitchen.config import StoreConfig
from kitchen.embedding_store import EmbeddingStore
from kitchen.enrichment_queue import EnrichmentQueue
from kitchen.pipeline import EnrichmentPipeline
from kitchen.version_store import VersionStore

_WORD_RE = re.compile(r"[a-z0-9]+")


class MockEmbeddingProvider:
    """
    Deterministic bag-of-words embedding provider for testing.

    Each word is hashed into one of `dimension` buckets, so texts that
    share words have positive cosine similarity and identical texts have
    similarity 1.0. No model loading, no network.
    """

    dimension = 256
    model_name = "mock-bow"

    def __init__(self):
        self.embed_calls = 0

    def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        vector = [0.0] * self.dimension
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        norm = math.sqrt(sum(x * x for x in vector))
        if norm == 0:
            # Non-empty so stores accept it; orthogonal to nothing in particular
            vector[0] = 1.0
            return vector
        return [x / norm for x in vector]


class MockSummarizationProvider:
    """Mock summarization provider: first line of content, tagged."""

    def __init__(self):
        self.calls = []

    def summarize(self, title: str, content: str) -> str:
        self.calls.append((title, content))
        first = content.strip().splitlines()[0]
        return f"Summary of {title}: {first[:100]}"


class FailingSummarizationProvider:
    """Summarizer whose backend is down."""

    def __init__(self, message: str = "provider down"):
        self.message = message
        self.calls = 0

    def summarize(self, title: str, content: str) -> str:
        self.calls += 1
        raise RuntimeError(self.message)


class FailingEmbeddingProvider:
    """Embedder whose backend is down."""

    dimension = 256
    model_name = "mock-broken"

    def embed(self, text: str) -> list[float]:
        raise ConnectionError("embedding service unreachable")


class SlowSummarizationProvider:
    """Summarizer that takes longer than any reasonable test timeout."""

    def __init__(self, delay: float = 2.0):
        self.delay = delay

    def summarize(self, title: str, content: str) -> str:
        time.sleep(self.delay)
        return "too late"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """No provider credentials or store overrides leak in from the shell."""
    for var in (
        "OPENAI_API_KEY",
        "KITCHEN_OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "OLLAMA_HOST",
        "KITCHEN_VERBOSE",
    ):
        monkeypatch.delenv(var, raising=False)
    # Error logs from CLI failures land in the test's own directory
    monkeypatch.setenv("KITCHEN_STORE_PATH", str(tmp_path / "env-store"))


@pytest.fixture
def mock_embedding_provider():
    return MockEmbeddingProvider()


@pytest.fixture
def mock_summarization_provider():
    return MockSummarizationProvider()


@pytest.fixture
def pipeline(mock_embedding_provider, mock_summarization_provider):
    """Pipeline wired to deterministic mock providers."""
    p = EnrichmentPipeline(
        mock_embedding_provider,
        mock_summarization_provider,
        timeout=5.0,
    )
    yield p
    p.close()


@pytest.fixture
def version_store(tmp_path):
    store = VersionStore(tmp_path / "recipes.db")
    yield store
    store.close()


@pytest.fixture
def queue(tmp_path):
    q = EnrichmentQueue(tmp_path / "enrichment_queue.db")
    yield q
    q.close()


@pytest.fixture
def embedding_store(tmp_path):
    store = EmbeddingStore(tmp_path / "embeddings.db")
    yield store
    store.close()


@pytest.fixture
def store_config(tmp_path):
    """Config for a store in tmp_path with no real providers."""
    return StoreConfig(path=tmp_path / "store")


@pytest.fixture
def kitchen(store_config, pipeline):
    """Kitchen over tmp_path SQLite stores with mock providers."""
    from kitchen.api import Kitchen

    k = Kitchen(config=store_config, pipeline=pipeline)
    yield k
    k.close()
