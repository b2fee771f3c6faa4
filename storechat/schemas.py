"""Pydantic request/response schemas for the chat API.

Defines the public contracts used by the FastAPI endpoints:
- ChatMessageRequest: a shopper message plus prior turns.
- ContextRequest: retrieval-only preview request.
- EvidenceOut / ContextBlockOut / ChunkOut / PromptsOut / ContextResponse: the
  four-part retrieval outcome.
- ErrorBody / ErrorResponse: structured error envelope.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from storechat.rag.types import RetrievalOutcome


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatMessageRequest(BaseModel):
    """Request body for a chat turn.

    Attributes:
        site_id: Site the widget is embedded on.
        visitor_id: Anonymous visitor identifier from the widget.
        conversation_id: Conversation the turn belongs to, if any.
        message: Latest shopper message.
        history: Prior turns, oldest first.
    """
    site_id: str = Field(..., min_length=1)
    visitor_id: str = Field(..., min_length=1)
    conversation_id: Optional[str] = None
    message: str = Field(..., min_length=1, max_length=4000)
    history: List[HistoryMessage] = Field(default_factory=list)


class ContextRequest(BaseModel):
    site_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=4000)
    source_types: List[str] = Field(default_factory=list)
    top_k: Optional[int] = Field(default=None, ge=1, le=50)
    similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class EvidenceOut(BaseModel):
    source_type: str
    source_id: str
    chunk_ids: List[str]
    score: float
    title: Optional[str] = None
    url: Optional[str] = None
    source_updated_at: Optional[str] = None


class ContextBlockOut(BaseModel):
    source_type: str
    source_id: str
    title: Optional[str] = None
    url: Optional[str] = None
    content: str
    chunk_ids: List[str]
    chunk_indices: List[int]
    similarity: float
    source_updated_at: Optional[str] = None


class ChunkOut(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    chunk_index: int
    similarity: float
    content_text: str


class PromptsOut(BaseModel):
    system_prompt: str
    user_prompt: str
    full_prompt: str


class ContextResponse(BaseModel):
    chunks: List[ChunkOut]
    context_blocks: List[ContextBlockOut]
    evidence: List[EvidenceOut]
    prompts: PromptsOut
    degraded: bool = False

    @classmethod
    def from_outcome(cls, outcome: RetrievalOutcome, degraded: bool = False) -> "ContextResponse":
        return cls(
            chunks=[
                ChunkOut(
                    id=c.id,
                    entity_type=c.entity_type,
                    entity_id=c.entity_id,
                    chunk_index=c.chunk_index,
                    similarity=c.similarity,
                    content_text=c.content_text,
                )
                for c in outcome.chunks
            ],
            context_blocks=[ContextBlockOut(**vars(b)) for b in outcome.context_blocks],
            evidence=[EvidenceOut(**vars(e)) for e in outcome.evidence],
            prompts=PromptsOut(**vars(outcome.prompts)),
            degraded=degraded,
        )


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    error: ErrorBody
