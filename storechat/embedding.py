"""Embedding utilities wrapping OpenAI's embeddings API.

Provides:
- create_openai_client: OpenAI client with timeout and retry settings (built once at bootstrap).
- Embedder: single-query and batch embedding with an optional Redis cache for queries.

Models and dimensions are configured via storechat.config.settings.
"""
import logging
import time
from typing import List, Optional

from openai import OpenAI, OpenAIError

from storechat.cache import EmbeddingCache
from storechat.config import settings
from storechat.errors import RetrievalError

logger = logging.getLogger(__name__)


def create_openai_client() -> OpenAI:
    """Return an OpenAI client initialized with the configured key, timeout and retries.

    The client retries 429/5xx/timeouts itself (max_retries).
    """
    return OpenAI(
        api_key=settings.OPENAI_API_KEY,
        timeout=settings.OPENAI_TIMEOUT_SECONDS,
        max_retries=settings.OPENAI_MAX_RETRIES,
    )


class Embedder:
    """Embedding service used by the Retriever and the ingestion CLI."""

    def __init__(self, client: OpenAI, default_model: Optional[str] = None, cache: Optional[EmbeddingCache] = None):
        self.client = client
        self.default_model = default_model or settings.OPENAI_EMBEDDING_MODEL
        self.cache = cache

    def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        """Embed a single query string and return its embedding vector.

        Args:
            text: The query to embed.
            model: Embedding model; defaults to the configured model.

        Returns:
            List[float]: The embedding vector for the query.

        Raises:
            RetrievalError: On API failure after the client's retries.
        """
        model = model or self.default_model
        if self.cache is not None:
            cached = self.cache.get(text, model)
            if cached is not None:
                return cached

        t0 = time.time()
        try:
            resp = self.client.embeddings.create(model=model, input=[text])
        except OpenAIError as e:
            raise RetrievalError(f"Embedding request failed: {e}", code="EMBEDDING_FAILED") from e
        vector = resp.data[0].embedding
        logger.debug(
            "Embedded query (model=%s, tokens=%s, latency_ms=%d)",
            model,
            getattr(resp.usage, "total_tokens", None),
            int((time.time() - t0) * 1000),
        )
        if self.cache is not None:
            self.cache.set(text, model, vector)
        return vector

    def embed_texts(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        """Embed a batch of texts (ingestion path, uncached).

        Args:
            texts: List of input strings to embed.
            model: Embedding model; defaults to the configured model.

        Returns:
            List[List[float]]: One embedding vector per input text.
        """
        if not texts:
            return []
        resp = self.client.embeddings.create(model=model or self.default_model, input=texts)
        return [d.embedding for d in resp.data]
