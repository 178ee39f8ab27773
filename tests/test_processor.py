"""Tests for the background enrichment processor."""

import threading
import time

import pytest

from kitchen.enrichment_queue import COMPLETED, FAILED, PENDING, PROCESSING
from kitchen.pipeline import EnrichmentPipeline
from kitchen.processor import QueueProcessor
from kitchen.types import RecipeInput, VersionInput

from tests.conftest import (
    FailingSummarizationProvider,
    MockEmbeddingProvider,
    MockSummarizationProvider,
)


def _create(version_store, queue, short_id="deploy", content="fly launch"):
    recipe, version = version_store.create(
        RecipeInput(title="Deploy", short_id=short_id),
        VersionInput(title="Deploy", content=content),
    )
    item = queue.add(version.title, recipe.short_id, version.id)
    return recipe, version, item


def _save(version_store, queue, recipe, content):
    version = version_store.save(recipe.id, VersionInput(title="Deploy", content=content))
    item = queue.add(version.title, recipe.short_id, version.id)
    return version, item


@pytest.fixture
def processor(version_store, embedding_store, queue, pipeline):
    p = QueueProcessor(version_store, embedding_store, queue, pipeline, interval=0.05)
    yield p
    p.stop(timeout=5)


class TestProcessNext:

    def test_empty_queue(self, processor):
        assert processor.process_next() is None

    def test_enriches_version(self, processor, version_store, embedding_store, queue):
        recipe, version, item = _create(version_store, queue)

        result = processor.process_next()

        assert result.id == item.id
        assert result.status == COMPLETED
        assert queue.get(item.id).status == COMPLETED
        assert version_store.get_version(version.id).ai_summary == "Summary of Deploy: fly launch"
        embedding = embedding_store.get_current(recipe.id)
        assert embedding.version_id == version.id
        assert embedding.short_id == "deploy"

    def test_superseded_version_does_not_take_current_embedding(
        self, processor, version_store, embedding_store, queue,
    ):
        recipe, v1, item1 = _create(version_store, queue)
        v2, item2 = _save(version_store, queue, recipe, "fly deploy")

        # Newest first, so the stale v1 item is processed last
        queue.remove(item1.id)
        processor.process_next()
        queue.add(v1.title, recipe.short_id, v1.id)
        processor.process_next()

        assert embedding_store.get_current(recipe.id).version_id == v2.id
        assert not embedding_store.get(v1.id).is_current
        assert version_store.get_version(v1.id).ai_summary is not None

    def test_provider_failure_marks_item_failed(
        self, version_store, embedding_store, queue,
    ):
        failing = EnrichmentPipeline(MockEmbeddingProvider(), FailingSummarizationProvider())
        processor = QueueProcessor(version_store, embedding_store, queue, failing)
        recipe, version, item = _create(version_store, queue)

        result = processor.process_next()

        assert result.status == FAILED
        stored = queue.get(item.id)
        assert stored.status == FAILED
        assert stored.error.startswith("ProcessingError:")
        assert "provider down" in stored.error
        assert version_store.get_version(version.id).ai_summary is None
        assert embedding_store.get_current(recipe.id) is None
        failing.close()

    def test_missing_version_marks_item_failed(self, processor, queue):
        item = queue.add("Ghost", "ghost", "no-such-version")
        result = processor.process_next()
        assert result.status == FAILED
        assert queue.get(item.id).error.startswith("NotFoundError:")

    def test_deleted_recipe_still_enriched(self, processor, version_store, queue):
        recipe, version, item = _create(version_store, queue)
        version_store.delete_recipe(recipe.id)

        assert processor.process_next().status == COMPLETED
        restored = version_store.restore(recipe.id)
        assert restored.current_version.ai_summary is not None

    def test_tick_is_single_flight(self, processor, version_store, queue):
        _create(version_store, queue)
        processor._busy.acquire()
        try:
            assert processor.process_next() is None
            assert queue.stats()[PENDING] == 1
        finally:
            processor._busy.release()
        assert processor.process_next().status == COMPLETED


class TestRunUntilEmpty:

    def test_drains_queue(self, processor, version_store, queue):
        for n in range(3):
            _create(version_store, queue, short_id=f"r{n}", content=f"content {n}")

        result = processor.run_until_empty()
        assert result == {"processed": 3, "failed": 0, "errors": []}
        assert queue.stats()[COMPLETED] == 3

    def test_limit(self, processor, version_store, queue):
        for n in range(3):
            _create(version_store, queue, short_id=f"r{n}", content=f"content {n}")

        assert processor.run_until_empty(limit=2)["processed"] == 2
        assert queue.stats()[PENDING] == 1

    def test_failures_reported(self, version_store, embedding_store, queue):
        failing = EnrichmentPipeline(MockEmbeddingProvider(), FailingSummarizationProvider())
        processor = QueueProcessor(version_store, embedding_store, queue, failing)
        _create(version_store, queue)

        result = processor.run_until_empty()
        assert result["processed"] == 0
        assert result["failed"] == 1
        assert result["errors"][0].startswith("deploy: ProcessingError")
        failing.close()


class TestLifecycle:

    def test_start_refuses_without_providers(self, version_store, embedding_store, queue):
        unconfigured = EnrichmentPipeline(None, MockSummarizationProvider())
        processor = QueueProcessor(version_store, embedding_store, queue, unconfigured)

        assert processor.start() is False
        assert not processor.is_running
        unconfigured.close()

    def test_background_thread_processes_queue(self, processor, version_store, queue):
        _create(version_store, queue)

        assert processor.start()
        assert processor.is_running
        deadline = time.monotonic() + 5
        while queue.stats()[COMPLETED] < 1 and time.monotonic() < deadline:
            time.sleep(0.02)
        processor.stop(timeout=5)

        assert queue.stats()[COMPLETED] == 1
        assert not processor.is_running
        assert processor.status()["running"] is False

    def test_start_recovers_stale_claims(self, processor, version_store, queue):
        _, _, item = _create(version_store, queue)
        queue.pop_next()
        queue._conn.execute(
            "UPDATE queue_items SET updated_at = '2020-01-01T00:00:00.000000' WHERE id = ?",
            (item.id,),
        )
        assert queue.get(item.id).status == PROCESSING

        processor.start()
        deadline = time.monotonic() + 5
        while queue.get(item.id).status != COMPLETED and time.monotonic() < deadline:
            time.sleep(0.02)
        assert queue.get(item.id).status == COMPLETED

    def test_stop_waits_for_current_item(self, version_store, embedding_store, queue):
        started = threading.Event()
        release = threading.Event()

        class BlockingSummarizer:
            def summarize(self, title, content):
                started.set()
                release.wait(5)
                return "done"

        blocking = EnrichmentPipeline(MockEmbeddingProvider(), BlockingSummarizer())
        processor = QueueProcessor(
            version_store, embedding_store, queue, blocking, interval=0.05,
        )
        _, _, item = _create(version_store, queue)
        processor.start()
        assert started.wait(5)
        assert processor.status()["processing"] is True

        release.set()
        processor.stop(timeout=5)
        assert queue.get(item.id).status == COMPLETED
        blocking.close()
