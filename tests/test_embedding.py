"""Tests for the embedding service and its Redis cache, with mocked clients."""

import json
from unittest.mock import MagicMock

import pytest
import redis
from openai import OpenAIError

from storechat.cache import EmbeddingCache, _key_for_text
from storechat.embedding import Embedder
from storechat.errors import RetrievalError


def _client(vectors):
    client = MagicMock()
    client.embeddings.create.return_value = MagicMock(
        data=[MagicMock(embedding=v) for v in vectors], usage=MagicMock(total_tokens=3)
    )
    return client


class TestEmbedder:

    def test_embed_single_query(self):
        client = _client([[0.1, 0.2]])
        vector = Embedder(client, "text-embedding-3-small").embed("lamps")

        assert vector == [0.1, 0.2]
        client.embeddings.create.assert_called_once_with(model="text-embedding-3-small", input=["lamps"])

    def test_api_failure_becomes_retrieval_error(self):
        client = MagicMock()
        client.embeddings.create.side_effect = OpenAIError("rate limited")

        with pytest.raises(RetrievalError) as exc:
            Embedder(client, "text-embedding-3-small").embed("lamps")
        assert exc.value.code == "EMBEDDING_FAILED"

    def test_cache_hit_skips_api(self):
        client = _client([[9.9]])
        cache = MagicMock()
        cache.get.return_value = [0.5, 0.5]

        assert Embedder(client, "m", cache=cache).embed("lamps") == [0.5, 0.5]
        client.embeddings.create.assert_not_called()

    def test_cache_miss_stores_vector(self):
        cache = MagicMock()
        cache.get.return_value = None
        Embedder(_client([[0.3]]), "m", cache=cache).embed("lamps")
        cache.set.assert_called_once_with("lamps", "m", [0.3])

    def test_embed_texts_batch(self):
        client = _client([[1.0], [2.0]])
        assert Embedder(client, "m").embed_texts(["a", "b"]) == [[1.0], [2.0]]
        assert Embedder(client, "m").embed_texts([]) == []


class TestEmbeddingCache:

    def test_key_depends_on_model_and_trimmed_text(self):
        assert _key_for_text(" lamps ", "m") == _key_for_text("lamps", "m")
        assert _key_for_text("lamps", "m") != _key_for_text("lamps", "other")

    def test_round_trip_with_ttl(self):
        client = MagicMock()
        cache = EmbeddingCache(client, ttl_seconds=60)
        cache.set("lamps", "m", [0.1, 0.2])

        key, ttl, payload = client.setex.call_args[0]
        assert ttl == 60
        client.get.return_value = payload
        assert cache.get("lamps", "m") == [0.1, 0.2]
        assert key.startswith("storechat:emb:v1:")

    def test_redis_errors_are_misses(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")
        client.setex.side_effect = redis.ConnectionError("down")
        cache = EmbeddingCache(client, ttl_seconds=60)

        assert cache.get("lamps", "m") is None
        cache.set("lamps", "m", [0.1])

    def test_corrupt_payload_is_miss(self):
        client = MagicMock()
        client.get.return_value = json.dumps({"not": "a vector"})
        assert EmbeddingCache(client, ttl_seconds=60).get("lamps", "m") is None
