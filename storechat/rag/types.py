"""Value types flowing through the retrieval pipeline.

Every entity type (product, page, policy) shares one chunk shape tagged by
`entity_type`; type-specific metadata keys are resolved through ordered
fallback chains on ChunkMetadata rather than per-type classes.
"""
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Literal, Optional, Tuple

EntityType = Literal["product", "page", "policy"]
ENTITY_TYPES: Tuple[str, ...] = ("product", "page", "policy")

TITLE_FALLBACK: Tuple[str, ...] = ("product_title", "page_title", "title")
URL_FALLBACK: Tuple[str, ...] = ("product_url", "page_url", "url")


def _coerce(key: str, value: Any) -> Any:
    """Metadata is free-form JSON: known string keys become str, chunk_index becomes int."""
    if value is None:
        return None
    if key == "chunk_index":
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    return value if isinstance(value, str) else str(value)


@dataclass(frozen=True)
class ChunkMetadata:
    """Typed view over the free-form JSON metadata stored with each chunk.

    Known keys become attributes; anything else is kept in `extra` so newer
    ingestion fields survive a round trip.
    """
    product_title: Optional[str] = None
    page_title: Optional[str] = None
    title: Optional[str] = None
    product_url: Optional[str] = None
    page_url: Optional[str] = None
    url: Optional[str] = None
    sku: Optional[str] = None
    source_updated_at: Optional[str] = None
    chunk_index: Optional[int] = None
    chunk_hash: Optional[str] = None
    full_content_hash: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "ChunkMetadata":
        raw = dict(raw or {})
        known = {f.name for f in fields(cls) if f.name != "extra"}
        values = {k: _coerce(k, raw.pop(k)) for k in list(raw) if k in known}
        return cls(extra=raw, **values)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = value
        return out

    def first_of(self, keys: Tuple[str, ...]) -> Optional[str]:
        """Return the first non-empty value among `keys`, in order."""
        for key in keys:
            value = getattr(self, key, None)
            if value:
                return value
        return None

    @property
    def display_title(self) -> Optional[str]:
        return self.first_of(TITLE_FALLBACK)

    @property
    def display_url(self) -> Optional[str]:
        return self.first_of(URL_FALLBACK)


@dataclass(frozen=True)
class RetrievedChunk:
    """One similarity-search hit; lives for a single request."""
    id: str
    tenant_id: str
    site_id: str
    entity_type: EntityType
    entity_id: str
    content_text: str
    similarity: float
    chunk_index: int = 0
    chunk_hash: str = ""
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)
    model: Optional[str] = None
    version: int = 1
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def source_key(self) -> Tuple[str, str]:
        return (self.entity_type, self.entity_id)


@dataclass(frozen=True)
class ContextBlock:
    """Merged, budget-checked text for one source entity."""
    source_type: EntityType
    source_id: str
    content: str
    chunk_ids: List[str]
    chunk_indices: List[int]
    similarity: float
    title: Optional[str] = None
    url: Optional[str] = None
    source_updated_at: Optional[str] = None


@dataclass(frozen=True)
class EvidenceItem:
    """Citation record pointing back to a source entity and its chunks."""
    source_type: EntityType
    source_id: str
    chunk_ids: List[str]
    score: float
    title: Optional[str] = None
    url: Optional[str] = None
    source_updated_at: Optional[str] = None


@dataclass(frozen=True)
class PromptBundle:
    system_prompt: str
    user_prompt: str
    full_prompt: str


@dataclass(frozen=True)
class RetrievalOutcome:
    """Complete orchestrator output: chunks, context blocks, evidence, prompts."""
    chunks: List[RetrievedChunk]
    context_blocks: List[ContextBlock]
    evidence: List[EvidenceItem]
    prompts: PromptBundle
