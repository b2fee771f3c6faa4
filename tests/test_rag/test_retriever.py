"""Tests for the Retriever: fake embedder and vector store, no API calls."""

import pytest

from storechat.errors import RetrievalError, ScopeError
from storechat.rag.retrieval import Retriever, require_scope
from tests.conftest import SITE_ID, TENANT_ID, FakeEmbedder, FakeVectorStore, make_chunk


class TestRequireScope:

    @pytest.mark.parametrize("tenant_id,site_id", [("", SITE_ID), (TENANT_ID, ""), (None, None)])
    def test_missing_scope(self, tenant_id, site_id):
        with pytest.raises(ScopeError) as exc:
            require_scope(tenant_id, site_id)
        assert exc.value.code == "MISSING_SCOPE"

    def test_non_uuid_scope(self):
        with pytest.raises(ScopeError) as exc:
            require_scope(TENANT_ID, "site-1")
        assert exc.value.code == "INVALID_SCOPE"


class TestRetriever:

    def test_filters_threshold_and_truncates(self):
        chunks = [make_chunk(f"p{i}", s) for i, s in enumerate([0.95, 0.9, 0.8, 0.75, 0.6])]
        retriever = Retriever(FakeEmbedder(), FakeVectorStore(chunks))

        result = retriever.retrieve(TENANT_ID, SITE_ID, "headphones", top_k=3, similarity_threshold=0.7)

        assert [c.similarity for c in result] == [0.95, 0.9, 0.8]
        assert all(c.similarity >= 0.7 for c in result)

    def test_scope_checked_before_embedding(self):
        embedder = FakeEmbedder()
        store = FakeVectorStore()
        with pytest.raises(ScopeError):
            Retriever(embedder, store).retrieve("", SITE_ID, "q")
        assert embedder.calls == []
        assert store.calls == []

    def test_defaults_to_all_types_and_embedder_model(self):
        embedder = FakeEmbedder(model="text-embedding-3-small")
        store = FakeVectorStore()
        Retriever(embedder, store).retrieve(TENANT_ID, SITE_ID, "q")

        assert store.calls[0]["entity_types"] == ["product", "page", "policy"]
        assert store.calls[0]["model"] == "text-embedding-3-small"
        assert embedder.calls == [("q", "text-embedding-3-small")]

    def test_upstream_errors_propagate(self):
        retriever = Retriever(FakeEmbedder(error=RetrievalError("embedding down")), FakeVectorStore())
        with pytest.raises(RetrievalError):
            retriever.retrieve(TENANT_ID, SITE_ID, "q")
