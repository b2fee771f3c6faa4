"""pgvector nearest-neighbor search over the tenant/site-scoped embeddings table.

Distance is pgvector cosine distance (`<=>`, 0 = identical, 2 = opposite) and is
converted to a similarity in [0, 1] as `1 - distance / 2`. The index returns
nearest-by-distance rather than nearest-above-threshold, so the adapter asks for
`limit * overfetch_factor` rows and applies the similarity floor client-side.
"""
import logging
import math
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storechat.db import SessionFactory
from storechat.errors import EmbeddingMismatchError, RetrievalError
from storechat.rag.types import ChunkMetadata, RetrievedChunk

logger = logging.getLogger(__name__)

SEARCH_SQL = text(
    """
    SELECT e.id, e.tenant_id, e.site_id, e.entity_type, e.entity_id, e.content_text,
        e.model, e.version, e.metadata, e.created_at, e.updated_at,
        (e.embedding <=> CAST(:qvec AS vector)) AS distance
    FROM embeddings e
    WHERE e.embedding IS NOT NULL
        AND e.tenant_id = CAST(:tenant_id AS uuid)
        AND e.site_id = CAST(:site_id AS uuid)
        AND e.entity_type = ANY(:entity_types)
    ORDER BY e.embedding <=> CAST(:qvec AS vector)
    LIMIT :limit
    """
)


def similarity_from_distance(distance: Any) -> float:
    """Map cosine distance to a similarity clamped to [0, 1].

    The formula is exact only for normalized vectors; anything outside [0, 2]
    (unnormalized embeddings, float noise) is clamped, and a missing or
    non-finite distance counts as maximally dissimilar.
    """
    try:
        d = float(distance)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(d):
        return 0.0
    return min(1.0, max(0.0, 1.0 - d / 2.0))


def _vector_literal(vector: Sequence[float]) -> str:
    return "[" + ",".join(f"{float(x):.8f}" for x in vector) + "]"


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def row_to_chunk(row: Mapping[str, Any]) -> RetrievedChunk:
    """Convert one result row into a RetrievedChunk."""
    meta = ChunkMetadata.from_dict(row.get("metadata"))
    return RetrievedChunk(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        site_id=str(row["site_id"]),
        entity_type=row["entity_type"],
        entity_id=str(row["entity_id"]),
        content_text=row["content_text"] or "",
        similarity=similarity_from_distance(row.get("distance")),
        chunk_index=meta.chunk_index or 0,
        chunk_hash=meta.chunk_hash or "",
        metadata=meta,
        model=row.get("model"),
        version=int(row.get("version") or 1),
        created_at=_iso(row.get("created_at")),
        updated_at=_iso(row.get("updated_at")),
    )


class PgVectorStore:
    """Read-only similarity search against the `embeddings` table."""

    def __init__(
        self,
        session_factory: SessionFactory,
        embedding_dim: int,
        index_model: str,
        overfetch_factor: int = 2,
    ):
        self.session_factory = session_factory
        self.embedding_dim = embedding_dim
        self.index_model = index_model
        self.overfetch_factor = max(1, overfetch_factor)

    def _check_query(self, query_vector: Sequence[float], model: Optional[str]) -> None:
        if model is not None and model != self.index_model:
            raise EmbeddingMismatchError(
                f"Query embedded with {model!r} but the index holds {self.index_model!r} vectors",
                details={"query_model": model, "index_model": self.index_model},
            )
        if len(query_vector) != self.embedding_dim:
            raise EmbeddingMismatchError(
                f"Query vector has {len(query_vector)} dimensions, index expects {self.embedding_dim}",
                details={"query_dim": len(query_vector), "index_dim": self.embedding_dim},
            )

    def _fetch(self, params: dict) -> List[Mapping[str, Any]]:
        session = self.session_factory()
        try:
            return list(session.execute(SEARCH_SQL, params).mappings().all())
        except SQLAlchemyError as e:
            raise RetrievalError(f"Vector search failed: {e}") from e
        finally:
            session.close()

    def search(
        self,
        query_vector: Sequence[float],
        tenant_id: str,
        site_id: str,
        entity_types: Iterable[str],
        limit: int,
        min_similarity: float = 0.0,
        model: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        """Return chunks ordered by ascending distance with similarity >= min_similarity.

        Args:
            query_vector: Query embedding.
            tenant_id: Tenant scope (required).
            site_id: Site scope (required).
            entity_types: Allowed entity types.
            limit: Number of results the caller wants; `limit * overfetch_factor` rows are fetched.
            min_similarity: Similarity floor applied after fetching.
            model: Embedding model of the query vector; must match the index.

        Raises:
            EmbeddingMismatchError: Query model or dimension differs from the index.
            RetrievalError: Database failure.
        """
        self._check_query(query_vector, model)
        types = list(entity_types)
        if not types or limit <= 0:
            return []

        rows = self._fetch(
            {
                "qvec": _vector_literal(query_vector),
                "tenant_id": tenant_id,
                "site_id": site_id,
                "entity_types": types,
                "limit": int(limit) * self.overfetch_factor,
            }
        )
        chunks = [row_to_chunk(r) for r in rows]
        kept = [c for c in chunks if c.similarity >= min_similarity]
        logger.debug(
            "Vector search tenant=%s site=%s fetched=%d kept=%d floor=%.2f",
            tenant_id, site_id, len(chunks), len(kept), min_similarity,
        )
        return kept
