"""Query-embedding cache using Redis.

Embeddings are deterministic per (text, model), so repeated shopper questions
skip the embedding call.

Provides:
- get_redis: Redis client from REDIS_URL.
- _key_for_text: Stable cache key derived from model + normalized text.
- EmbeddingCache: get/set of JSON-encoded vectors with TTL from settings.EMBEDDING_CACHE_TTL_SECONDS.
"""
import hashlib
import json
import logging
from typing import List, Optional

import redis

from storechat.config import settings

logger = logging.getLogger(__name__)


def get_redis(url: Optional[str] = None) -> redis.Redis:
    """Return a Redis client configured from settings.REDIS_URL.

    Returns:
        redis.Redis: Client with decode_responses=True.
    """
    return redis.from_url(url or settings.REDIS_URL, decode_responses=True)


def _key_for_text(text: str, model: str) -> str:
    """Compute a stable cache key for an embedding request.

    Args:
        text: Text being embedded (whitespace-trimmed, case preserved).
        model: Embedding model name.

    Returns:
        str: Namespaced cache key.
    """
    h = hashlib.sha256(f"{model}|{text.strip()}".encode("utf-8")).hexdigest()
    return f"storechat:emb:v1:{h}"


class EmbeddingCache:
    """Redis-backed vector cache. Cache failures never fail an embedding call."""

    def __init__(self, client: redis.Redis, ttl_seconds: Optional[int] = None):
        self.client = client
        self.ttl_seconds = ttl_seconds or settings.EMBEDDING_CACHE_TTL_SECONDS

    def get(self, text: str, model: str) -> Optional[List[float]]:
        try:
            raw = self.client.get(_key_for_text(text, model))
        except redis.RedisError as e:
            logger.warning("Embedding cache read failed: %s", e)
            return None
        if not raw:
            return None
        try:
            return [float(x) for x in json.loads(raw)]
        except (ValueError, TypeError):
            return None

    def set(self, text: str, model: str, vector: List[float]) -> None:
        try:
            self.client.setex(_key_for_text(text, model), self.ttl_seconds, json.dumps(vector))
        except redis.RedisError as e:
            logger.warning("Embedding cache write failed: %s", e)
