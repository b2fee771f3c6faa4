"""End-to-end retrieval pipeline: validate → retrieve → context → evidence → prompts.

Scope and policy failures raise before any I/O. Upstream failures (embedding
service, vector index, retrieval timeout) come back as a PipelineResult with
`error` set, and the caller picks the fallback (usually empty_outcome()).
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from storechat.errors import PolicyViolation, RetrievalError, ScopeError
from storechat.obs import span
from storechat.rag.context import ContextOptions, build_context_blocks, context_stats
from storechat.rag.evidence import build_evidence
from storechat.rag.guardrails import (
    DEFAULT_RETRIEVAL_POLICY,
    RetrievalPolicy,
    sanitize_source_types,
    validate_retrieval_request,
)
from storechat.rag.prompts import FALLBACK_SYSTEM_PROMPT, PromptOptions, assemble_prompt
from storechat.rag.retrieval import Retriever, require_scope
from storechat.rag.types import RetrievalOutcome, RetrievedChunk

logger = logging.getLogger(__name__)

CANCEL_POLL_SECONDS = 0.05


@dataclass
class RetrievalRequest:
    """Input to RAGPipeline.run.

    Attributes:
        tenant_id: Tenant scope (required).
        site_id: Site scope (required).
        query_text: Latest shopper message.
        top_k: Maximum chunks retrieved.
        similarity_threshold: Similarity floor in [0, 1].
        allowed_source_types: Requested entity types; empty means the policy's set.
        max_context_tokens: Context token budget.
        max_chunks_per_source: Chunks merged per source block.
        max_sources: Context blocks emitted.
        embedding_model: Query embedding model; defaults to the embedder's.
        partial_sources_ok: Drop disallowed types instead of failing the request.
    """
    tenant_id: str
    site_id: str
    query_text: str
    top_k: int = 10
    similarity_threshold: float = 0.7
    allowed_source_types: List[str] = field(default_factory=list)
    max_context_tokens: int = 4000
    max_chunks_per_source: int = 3
    max_sources: int = 5
    embedding_model: Optional[str] = None
    partial_sources_ok: bool = False


@dataclass
class PipelineResult:
    outcome: Optional[RetrievalOutcome] = None
    error: Optional[RetrievalError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.outcome is not None

    def unwrap_or(self, fallback: RetrievalOutcome) -> RetrievalOutcome:
        return self.outcome if self.ok else fallback


def empty_outcome(query_text: str, system_prompt: str = FALLBACK_SYSTEM_PROMPT) -> RetrievalOutcome:
    """Degraded outcome: no chunks, blocks or evidence, and an ungrounded system prompt."""
    prompts = assemble_prompt(query_text, [], PromptOptions(system_template=system_prompt))
    return RetrievalOutcome(chunks=[], context_blocks=[], evidence=[], prompts=prompts)


class _RetrievalCall:
    """One retrieval running on its own daemon thread.

    Every request gets its own worker, so the budget only covers this request's
    embed and search. An abandoned call finishes in the background and its
    result is dropped.
    """

    def __init__(self, fn: Callable[..., List[RetrievedChunk]], *args: Any, **kwargs: Any):
        self._done = threading.Event()
        self._result: List[RetrievedChunk] = []
        self._error: Optional[Exception] = None
        self._thread = threading.Thread(target=self._run, args=(fn, args, kwargs), name="retrieval", daemon=True)
        self._thread.start()

    def _run(self, fn, args, kwargs) -> None:
        try:
            self._result = fn(*args, **kwargs)
        except Exception as e:
            self._error = e
        finally:
            self._done.set()

    def wait(self, timeout: float, cancel_event: Optional[threading.Event] = None) -> bool:
        """Block until the call finishes, the deadline passes or `cancel_event` is set.

        Returns:
            bool: True when the call finished.
        """
        deadline = time.monotonic() + timeout
        while not self._done.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0 or (cancel_event is not None and cancel_event.is_set()):
                return False
            self._done.wait(min(remaining, CANCEL_POLL_SECONDS))
        return True

    def result(self) -> List[RetrievedChunk]:
        if self._error is not None:
            raise self._error
        return self._result


class RAGPipeline:
    """Runs one retrieval request through every stage.

    Retrieval is bounded by `retrieval_timeout_seconds` and watches
    `cancel_event` while it runs. Once either fires the request returns at
    once and no later stage starts.
    """

    def __init__(
        self,
        retriever: Retriever,
        policy: RetrievalPolicy = DEFAULT_RETRIEVAL_POLICY,
        prompt_options: Optional[PromptOptions] = None,
        retrieval_timeout_seconds: float = 5.0,
    ):
        self.retriever = retriever
        self.policy = policy
        self.prompt_options = prompt_options or PromptOptions()
        self.retrieval_timeout_seconds = retrieval_timeout_seconds

    def _resolve_types(self, request: RetrievalRequest) -> List[str]:
        requested = request.allowed_source_types
        if request.partial_sources_ok:
            requested = sanitize_source_types(requested, self.policy)
        result = validate_retrieval_request(request.tenant_id, request.site_id, requested, self.policy)
        if not result.valid:
            if result.rejected_types:
                raise PolicyViolation(result.rejected_types, result.error)
            raise ScopeError(result.error or "tenant_id and site_id are required")
        return result.allowed_types

    def run(self, request: RetrievalRequest, cancel_event: Optional[threading.Event] = None) -> PipelineResult:
        """Run the pipeline for one request.

        Args:
            request: Retrieval parameters.
            cancel_event: Set by the caller when the client goes away; watched while
                retrieval runs and checked between stages.

        Returns:
            PipelineResult: The four-part outcome, or the upstream RetrievalError.

        Raises:
            ScopeError: Missing or malformed tenant/site id.
            PolicyViolation: Disallowed source type under a strict policy.
        """
        allowed_types = self._resolve_types(request)
        require_scope(request.tenant_id, request.site_id)

        if cancel_event is not None and cancel_event.is_set():
            return PipelineResult(error=RetrievalError("Request cancelled before retrieval", code="CANCELLED"))

        with span("rag.retrieve", {"tenant_id": request.tenant_id, "site_id": request.site_id}):
            call = _RetrievalCall(
                self.retriever.retrieve,
                request.tenant_id,
                request.site_id,
                request.query_text,
                top_k=request.top_k,
                similarity_threshold=request.similarity_threshold,
                allowed_types=allowed_types,
                model=request.embedding_model,
            )
            if not call.wait(self.retrieval_timeout_seconds, cancel_event):
                if cancel_event is not None and cancel_event.is_set():
                    return PipelineResult(
                        error=RetrievalError("Request cancelled during retrieval", code="CANCELLED")
                    )
                return PipelineResult(
                    error=RetrievalError(
                        f"Retrieval exceeded {self.retrieval_timeout_seconds:.1f}s budget",
                        code="RETRIEVAL_TIMEOUT",
                        details={"timeout_seconds": self.retrieval_timeout_seconds},
                    )
                )
            try:
                chunks = call.result()
            except RetrievalError as e:
                return PipelineResult(error=e)

        if cancel_event is not None and cancel_event.is_set():
            return PipelineResult(error=RetrievalError("Request cancelled after retrieval", code="CANCELLED"))

        blocks = build_context_blocks(
            chunks,
            ContextOptions(
                max_context_tokens=request.max_context_tokens,
                max_chunks_per_source=request.max_chunks_per_source,
                max_sources=request.max_sources,
            ),
        )
        evidence = build_evidence(blocks)
        prompts = assemble_prompt(request.query_text, blocks, self.prompt_options)
        logger.info(
            "RAG pipeline site=%s chunks=%d context=%s",
            request.site_id, len(chunks), context_stats(blocks),
        )
        return PipelineResult(
            outcome=RetrievalOutcome(chunks=chunks, context_blocks=blocks, evidence=evidence, prompts=prompts)
        )
