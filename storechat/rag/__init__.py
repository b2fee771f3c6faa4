"""Retrieval-augmented generation building blocks.

- vector_store: pgvector similarity search, tenant/site scoped.
- retrieval: query embedding + search with a similarity floor.
- context: per-source context blocks under token/character budgets.
- evidence: citation records.
- prompts: system/user prompts and chat message arrays.
- guardrails: source-type policies.
- pipeline: the orchestrator tying the stages together.
"""
from storechat.rag.context import ContextOptions, build_context_blocks, estimate_tokens, format_context_blocks
from storechat.rag.evidence import build_evidence, build_evidence_from_chunks
from storechat.rag.guardrails import (
    DEFAULT_RETRIEVAL_POLICY,
    GuardrailResult,
    RetrievalPolicy,
    permissive_policy,
    sanitize_source_types,
    strict_policy,
    validate_retrieval_request,
)
from storechat.rag.pipeline import PipelineResult, RAGPipeline, RetrievalRequest, empty_outcome
from storechat.rag.prompts import (
    DEFAULT_SYSTEM_TEMPLATE,
    FALLBACK_SYSTEM_PROMPT,
    PromptOptions,
    StoreInfo,
    append_store_info,
    assemble_chat_prompt,
    assemble_conversation_prompt,
    assemble_prompt,
    build_chat_messages,
)
from storechat.rag.retrieval import Retriever, require_scope
from storechat.rag.types import (
    ENTITY_TYPES,
    ChunkMetadata,
    ContextBlock,
    EvidenceItem,
    PromptBundle,
    RetrievalOutcome,
    RetrievedChunk,
)
from storechat.rag.vector_store import PgVectorStore, similarity_from_distance

__all__ = [
    "ChunkMetadata",
    "ContextBlock",
    "ContextOptions",
    "DEFAULT_RETRIEVAL_POLICY",
    "DEFAULT_SYSTEM_TEMPLATE",
    "ENTITY_TYPES",
    "EvidenceItem",
    "FALLBACK_SYSTEM_PROMPT",
    "GuardrailResult",
    "PgVectorStore",
    "PipelineResult",
    "PromptBundle",
    "PromptOptions",
    "RAGPipeline",
    "RetrievalOutcome",
    "RetrievalPolicy",
    "RetrievalRequest",
    "RetrievedChunk",
    "Retriever",
    "StoreInfo",
    "append_store_info",
    "assemble_chat_prompt",
    "assemble_conversation_prompt",
    "assemble_prompt",
    "build_chat_messages",
    "build_context_blocks",
    "build_evidence",
    "build_evidence_from_chunks",
    "empty_outcome",
    "estimate_tokens",
    "format_context_blocks",
    "permissive_policy",
    "require_scope",
    "sanitize_source_types",
    "similarity_from_distance",
    "strict_policy",
    "validate_retrieval_request",
]
