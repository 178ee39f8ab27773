"""Tests for the embedding store and cosine ranking."""

import logging

import pytest

from kitchen.embedding_store import cosine_similarity
from kitchen.errors import ValidationError


class TestCosineSimilarity:

    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


class TestUpsert:

    def test_new_current_embedding_retires_previous(self, embedding_store):
        embedding_store.upsert("v1", "r1", "Deploy", "deploy", [1.0, 0.0])
        embedding_store.upsert("v2", "r1", "Deploy", "deploy", [0.0, 1.0])

        assert embedding_store.get_current("r1").version_id == "v2"
        assert not embedding_store.get("v1").is_current
        assert embedding_store.count() == 1
        assert embedding_store.count(current_only=False) == 2

    def test_superseded_version_does_not_steal_current(self, embedding_store):
        embedding_store.upsert("v2", "r1", "Deploy", "deploy", [0.0, 1.0])
        embedding_store.upsert("v1", "r1", "Deploy", "deploy", [1.0, 0.0], is_current=False)

        assert embedding_store.get_current("r1").version_id == "v2"
        assert embedding_store.get("v1") is not None

    def test_reembedding_replaces_vector_in_place(self, embedding_store):
        first = embedding_store.upsert("v1", "r1", "Deploy", "deploy", [1.0, 0.0])
        second = embedding_store.upsert("v1", "r1", "Deploy", "deploy", [0.5, 0.5])

        assert second.id == first.id
        assert second.vector == [0.5, 0.5]
        assert embedding_store.count(current_only=False) == 1

    def test_empty_vector_rejected(self, embedding_store):
        with pytest.raises(ValidationError):
            embedding_store.upsert("v1", "r1", "Deploy", "deploy", [])


class TestSimilaritySearch:

    def test_ranked_and_thresholded(self, embedding_store):
        embedding_store.upsert("va", "ra", "A", "a", [1.0, 0.0, 0.0])
        embedding_store.upsert("vb", "rb", "B", "b", [0.8, 0.6, 0.0])
        embedding_store.upsert("vc", "rc", "C", "c", [0.0, 0.0, 1.0])

        hits = embedding_store.similarity_search([1.0, 0.0, 0.0], threshold=0.3)
        assert [h.short_id for h in hits] == ["a", "b"]
        assert hits[0].similarity == pytest.approx(1.0)
        assert hits[1].similarity == pytest.approx(0.8)

    def test_only_current_rows_ranked(self, embedding_store):
        embedding_store.upsert("v1", "r1", "Deploy", "deploy", [1.0, 0.0])
        embedding_store.upsert("v2", "r1", "Deploy", "deploy", [0.0, 1.0])

        hits = embedding_store.similarity_search([1.0, 0.0], threshold=0.0)
        assert [h.version_id for h in hits] == ["v2"]

    def test_limit(self, embedding_store):
        for n in range(5):
            embedding_store.upsert(f"v{n}", f"r{n}", f"R{n}", f"r{n}", [1.0, float(n)])
        assert len(embedding_store.similarity_search([1.0, 1.0], limit=2, threshold=0.0)) == 2

    def test_allow_list(self, embedding_store):
        embedding_store.upsert("va", "ra", "A", "a", [1.0, 0.0])
        embedding_store.upsert("vb", "rb", "B", "b", [1.0, 0.0])

        hits = embedding_store.similarity_search([1.0, 0.0], version_ids={"vb"})
        assert [h.version_id for h in hits] == ["vb"]

    def test_mismatched_dimensions_skipped(self, embedding_store, caplog):
        embedding_store.upsert("va", "ra", "A", "a", [1.0, 0.0])
        embedding_store.upsert("vb", "rb", "B", "b", [1.0, 0.0, 0.0])

        with caplog.at_level(logging.WARNING, logger="kitchen.embedding_store"):
            hits = embedding_store.similarity_search([1.0, 0.0])
        assert [h.version_id for h in hits] == ["va"]
        assert "dimension" in caplog.text
