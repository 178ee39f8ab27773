"""
End-to-end tests for the Kitchen facade.

Covers the save / enrich / fail / retry lifecycle over real SQLite stores
with mock providers.
"""

import logging

import pytest

from kitchen.api import Kitchen
from kitchen.enrichment_queue import COMPLETED, FAILED, PENDING
from kitchen.errors import DuplicateError, NoChangeError, NotFoundError
from kitchen.pipeline import EnrichmentPipeline

from tests.conftest import (
    FailingSummarizationProvider,
    MockEmbeddingProvider,
    MockSummarizationProvider,
)


class TestWrites:

    def test_create_enqueues_version_one(self, kitchen):
        recipe = kitchen.create_recipe("Deploy to Fly", "deploy-fly", "fly launch")

        pending = kitchen.pending()
        assert len(pending) == 1
        assert pending[0].shortid == "deploy-fly"
        assert pending[0].version_id == recipe.current_version_id
        assert pending[0].title == "Deploy to Fly"

    def test_save_defaults_title_and_links_from_current(self, kitchen):
        tag = kitchen.create_tag("infra")
        project = kitchen.create_project("web", "Web")
        kitchen.create_recipe(
            "Deploy", "deploy", "v1 body", tag_ids=[tag.id], project_ids=[project.id],
        )

        v2 = kitchen.save_recipe("deploy", "v2 body")
        assert v2.version_number == 2
        assert v2.title == "Deploy"
        assert [t.name for t in v2.tags] == ["infra"]
        assert [p.short_id for p in v2.projects] == ["web"]
        assert kitchen.queue_stats()[PENDING] == 2

    def test_save_no_change_does_not_enqueue(self, kitchen):
        kitchen.create_recipe("Deploy", "deploy", "body")
        with pytest.raises(NoChangeError):
            kitchen.save_recipe("deploy", "body")
        assert kitchen.queue_stats()["total"] == 1

    def test_revert_enqueues_new_version(self, kitchen):
        kitchen.create_recipe("Deploy", "deploy", "one")
        kitchen.save_recipe("deploy", "two")

        v3 = kitchen.revert_recipe("deploy", 1)
        assert v3.version_number == 3
        assert v3.content == "one"
        assert kitchen.pending()[-1].version_id == v3.id

    def test_duplicate_short_id(self, kitchen):
        kitchen.create_recipe("Deploy", "deploy", "one")
        with pytest.raises(DuplicateError):
            kitchen.create_recipe("Other", "Deploy", "two")

    def test_unknown_recipe(self, kitchen):
        with pytest.raises(NotFoundError):
            kitchen.save_recipe("missing", "body")
        with pytest.raises(NotFoundError):
            kitchen.get_history("missing")
        assert kitchen.get_recipe("missing") is None

    def test_rename(self, kitchen):
        kitchen.create_recipe("Deploy", "deploy", "one")
        renamed = kitchen.rename_recipe("deploy", short_id="ship")
        assert renamed.short_id == "ship"
        assert renamed.title == "Deploy"
        assert kitchen.get_recipe("deploy") is None
        assert kitchen.get_recipe("ship").id == renamed.id

    def test_delete_and_restore(self, kitchen):
        recipe = kitchen.create_recipe("Deploy", "deploy", "one")
        kitchen.delete_recipe("deploy")
        assert kitchen.get_recipe("deploy") is None
        assert kitchen.list_recipes() == []

        restored = kitchen.restore_recipe(recipe.id)
        assert restored.short_id == "deploy"
        assert kitchen.get_recipe(recipe.id).current_version.content == "one"


class TestReads:

    def test_get_recipe_by_id_or_short_id(self, kitchen):
        recipe = kitchen.create_recipe("Deploy", "deploy", "one")
        assert kitchen.get_recipe(recipe.id).id == recipe.id
        assert kitchen.get_recipe("DEPLOY").id == recipe.id

    def test_get_version(self, kitchen):
        kitchen.create_recipe("Deploy", "deploy", "one")
        kitchen.save_recipe("deploy", "two")
        assert kitchen.get_version("deploy", 1).content == "one"
        with pytest.raises(NotFoundError):
            kitchen.get_version("deploy", 9)

    def test_history(self, kitchen):
        kitchen.create_recipe("Deploy", "deploy", "one")
        kitchen.save_recipe("deploy", "two")
        assert [v.version_id for v in kitchen.get_history("deploy")] == ["v2", "v1"]


class TestLifecycleScenarios:

    def test_save_then_enrich_then_search(self, kitchen):
        recipe = kitchen.create_recipe(
            "Deploy to Fly", "deploy-fly", "fly launch then fly deploy the app",
        )
        result = kitchen.process_pending()
        assert result == {"processed": 1, "failed": 0, "errors": []}

        current = kitchen.get_recipe(recipe.id).current_version
        assert current.ai_summary.startswith("Summary of Deploy to Fly")

        hits = kitchen.search("fly deploy")
        assert hits[0].short_id == "deploy-fly"
        assert hits[0].source == "vector"
        assert hits[0].summary == current.ai_summary

    def test_search_before_enrichment_uses_text(self, kitchen):
        kitchen.create_recipe("Deploy to Fly", "deploy-fly", "fly launch")
        hits = kitchen.search("Deploy")
        assert [h.short_id for h in hits] == ["deploy-fly"]
        assert hits[0].source == "text"

    def test_text_only_search(self, kitchen):
        kitchen.create_recipe("Deploy to Fly", "deploy-fly", "fly launch")
        kitchen.process_pending()
        hits = kitchen.search("fly", text_only=True)
        assert hits[0].source == "text"
        assert kitchen.search("  ", text_only=True) == []

    def test_search_only_sees_latest_content(self, kitchen):
        kitchen.create_recipe("Notes", "notes", "kubernetes cluster upgrade")
        kitchen.process_pending()
        kitchen.save_recipe("notes", "nomad job scheduling")
        kitchen.process_pending()

        assert kitchen.search("kubernetes cluster upgrade") == []
        assert kitchen.search("kubernetes", text_only=True) == []
        assert kitchen.search("nomad job scheduling")[0].short_id == "notes"

    def test_fail_then_retry(self, store_config):
        failing = EnrichmentPipeline(MockEmbeddingProvider(), FailingSummarizationProvider())
        with Kitchen(config=store_config, pipeline=failing) as k:
            k.create_recipe("Deploy", "deploy", "fly launch")
            result = k.process_pending()
            assert result["failed"] == 1

            errors = k.recent_errors()
            assert len(errors) == 1
            assert "provider down" in errors[0].error
            failed_id = errors[0].id

        # Provider fixed: reopen the same store with a working pipeline
        working = EnrichmentPipeline(MockEmbeddingProvider(), MockSummarizationProvider())
        with Kitchen(config=store_config, pipeline=working) as k:
            retried = k.retry(failed_id)
            assert retried.status == PENDING
            assert k.process_pending()["processed"] == 1
            assert k.queue_stats()[COMPLETED] == 1
            assert k.queue_stats()[FAILED] == 0
            assert k.get_recipe("deploy").current_version.ai_summary is not None

    def test_retry_all(self, store_config):
        failing = EnrichmentPipeline(MockEmbeddingProvider(), FailingSummarizationProvider())
        with Kitchen(config=store_config, pipeline=failing) as k:
            k.create_recipe("A", "a", "one")
            k.create_recipe("B", "b", "two")
            k.process_pending()
            assert k.retry_all() == 2
            assert k.queue_stats()[PENDING] == 2

    def test_start_processor_fails_fast_without_providers(self, store_config):
        with Kitchen(config=store_config) as k:
            # Default config: passthrough summaries, no embeddings
            assert k.start_processor() is False
            assert k.processor_status()["running"] is False

    def test_processor_status_before_start(self, kitchen):
        status = kitchen.processor_status()
        assert status == {"running": False, "processing": False, "interval": 5.0}

    def test_cleanup_queue(self, kitchen):
        kitchen.create_recipe("Deploy", "deploy", "one")
        kitchen.process_pending()
        assert kitchen.cleanup_queue(retention_days=7) == 0
        assert len(kitchen.recent_completed()) == 1


class TestStoreLayout:

    def test_files_created_in_store_directory(self, kitchen, store_config):
        kitchen.create_recipe("Deploy", "deploy", "one")
        names = {p.name for p in store_config.path.iterdir()}
        assert {"recipes.db", "embeddings.db", "enrichment_queue.db"} <= names
        assert "kitchen-ops.log" in names

    def test_ops_log_records_writes(self, store_config, pipeline):
        with Kitchen(config=store_config, pipeline=pipeline) as k:
            k.create_recipe("Deploy", "deploy", "one")
        log_text = (store_config.path / "kitchen-ops.log").read_text()
        assert "Created recipe deploy" in log_text

    def test_ops_log_handler_removed_on_close(self, store_config, pipeline):
        before = len(logging.getLogger("kitchen").handlers)
        k = Kitchen(config=store_config, pipeline=pipeline)
        assert len(logging.getLogger("kitchen").handlers) == before + 1
        k.close()
        assert len(logging.getLogger("kitchen").handlers) == before

    def test_default_config_written_on_first_open(self, tmp_path):
        store = tmp_path / "fresh"
        with Kitchen(store) as k:
            assert (store / "kitchen.toml").exists()
            assert k.config.summarization.name == "passthrough"
            assert k.config.embedding.name == "none"
