"""Retriever: query embedding plus tenant/site-scoped vector search.

Tenant and site scoping is mandatory and checked before any I/O. Embedding and
vector-store errors propagate; degrading to "no context" is the caller's call.
"""
import logging
import re
from typing import List, Optional, Sequence

from storechat.errors import ScopeError
from storechat.rag.types import ENTITY_TYPES, RetrievedChunk

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)


def require_scope(tenant_id: Optional[str], site_id: Optional[str]) -> None:
    """Fail closed unless both ids are present and UUID-shaped.

    Raises:
        ScopeError: MISSING_SCOPE or INVALID_SCOPE.
    """
    if not tenant_id or not site_id:
        raise ScopeError("tenant_id and site_id are required")
    for name, value in (("tenant_id", tenant_id), ("site_id", site_id)):
        if not UUID_RE.match(value):
            raise ScopeError(f"Invalid {name} format: expected UUID, got {value}", code="INVALID_SCOPE")


class Retriever:
    def __init__(self, embedder, vector_store):
        self.embedder = embedder
        self.vector_store = vector_store

    def retrieve(
        self,
        tenant_id: str,
        site_id: str,
        query_text: str,
        top_k: int = 10,
        similarity_threshold: float = 0.7,
        allowed_types: Optional[Sequence[str]] = None,
        model: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        """Return at most `top_k` chunks with similarity >= `similarity_threshold`.

        Args:
            tenant_id: Tenant scope.
            site_id: Site scope.
            query_text: Shopper question.
            top_k: Result cap.
            similarity_threshold: Minimum similarity in [0, 1].
            allowed_types: Entity types to search; defaults to all.
            model: Embedding model; defaults to the embedder's model.

        Returns:
            List[RetrievedChunk]: Descending similarity.
        """
        require_scope(tenant_id, site_id)
        types = list(allowed_types) if allowed_types else list(ENTITY_TYPES)
        model = model or self.embedder.default_model

        vector = self.embedder.embed(query_text, model)
        chunks = self.vector_store.search(
            vector,
            tenant_id=tenant_id,
            site_id=site_id,
            entity_types=types,
            limit=top_k,
            min_similarity=similarity_threshold,
            model=model,
        )
        selected = [c for c in chunks if c.similarity >= similarity_threshold][:top_k]
        logger.info(
            "Retrieved %d chunks (tenant=%s site=%s top_k=%d threshold=%.2f types=%s)",
            len(selected), tenant_id, site_id, top_k, similarity_threshold, ",".join(types),
        )
        return selected
