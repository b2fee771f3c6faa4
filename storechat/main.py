"""FastAPI application entrypoint and routes.

Exposes the widget-facing runtime endpoints:
- GET /health: liveness check.
- OPTIONS /chat/message: per-origin CORS preflight after the full runtime gate.
- POST /chat/message: gate → history → retrieval pipeline → streamed answer (SSE) →
  usage recording and conversation persistence.
- POST /chat/context: gate → retrieval pipeline, returning the outcome without generation.
- GET /site/status: license kill switch only.

CORS headers are only ever set for an origin that passed the runtime gate, so
there is no blanket CORS middleware. Retrieval failures degrade the answer to an
ungrounded one; gate, scope and policy failures are returned as structured errors.
A client that disconnects during retrieval cancels the pipeline; one that
disconnects mid-stream is still metered.
"""
import asyncio
import json
import logging
import threading
import time
from typing import Any, Dict, Iterator, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse
from openai import OpenAIError

from storechat.config import settings
from storechat.db import init_db
from storechat.errors import StoreChatError
from storechat.gate import GatePass, check_license_kill_switch
from storechat.generation import TokenUsage, trim_history
from storechat.obs import Trace, configure_logging, span
from storechat.rag.pipeline import PipelineResult, RetrievalRequest, empty_outcome
from storechat.rag.prompts import StoreInfo, append_store_info, build_chat_messages
from storechat.rag.types import RetrievalOutcome
from storechat.schemas import ChatMessageRequest, ContextRequest, ContextResponse, EvidenceOut
from storechat.services import Services, build_services
from storechat.usage import UsageEventData

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = "GET, POST, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization"
CORS_MAX_AGE = "86400"
DISCONNECT_POLL_SECONDS = 0.1
# nginx convention for a request the client abandoned
CLIENT_CLOSED_REQUEST = 499


def cors_headers(origin: str, preflight: bool = False) -> Dict[str, str]:
    """CORS headers for an origin that already passed the runtime gate."""
    headers = {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
        "Vary": "Origin",
    }
    if preflight:
        headers["Access-Control-Max-Age"] = CORS_MAX_AGE
    return headers


def sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _services(request: Request) -> Services:
    return request.app.state.services


def _retrieve(
    services: Services,
    gate_pass: GatePass,
    query: str,
    source_types: Optional[List[str]] = None,
    top_k: Optional[int] = None,
    threshold: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
):
    """Run the pipeline for a gated request; returns (outcome, degraded)."""
    site = gate_pass.site
    result: PipelineResult = services.pipeline.run(
        RetrievalRequest(
            tenant_id=site.tenant_id,
            site_id=site.id,
            query_text=query,
            top_k=top_k or settings.TOP_K,
            similarity_threshold=settings.SIMILARITY_THRESHOLD if threshold is None else threshold,
            allowed_source_types=list(source_types or []),
            max_context_tokens=settings.MAX_CONTEXT_TOKENS,
            max_chunks_per_source=settings.MAX_CHUNKS_PER_SOURCE,
            max_sources=settings.MAX_SOURCES,
        ),
        cancel_event=cancel_event,
    )
    if not result.ok:
        if result.error.code == "CANCELLED":
            logger.info("Retrieval cancelled for site %s: %s", site.id, result.error.message)
        else:
            logger.error(
                "Retrieval failed, answering without context (tenant=%s site=%s code=%s): %s",
                site.tenant_id, site.id, result.error.code, result.error.message,
                exc_info=result.error,
            )
        return empty_outcome(query), True
    return result.outcome, False


async def watch_disconnect(
    request: Request, cancel: threading.Event, poll_seconds: float = DISCONNECT_POLL_SECONDS
) -> None:
    """Set `cancel` once the client has gone away."""
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected from %s", request.url.path)
            cancel.set()
            return
        await asyncio.sleep(poll_seconds)


async def retrieve_until_disconnect(request: Request, services: Services, gate_pass: GatePass, query: str, **kwargs):
    """Run _retrieve off the event loop, cancelling it if the client disconnects.

    Returns:
        tuple: (outcome, degraded, cancelled)
    """
    cancel = threading.Event()
    watcher = asyncio.create_task(watch_disconnect(request, cancel))
    try:
        outcome, degraded = await run_in_threadpool(
            _retrieve, services, gate_pass, query, cancel_event=cancel, **kwargs
        )
    finally:
        watcher.cancel()
    return outcome, degraded, cancel.is_set()


def _open_conversation(services: Services, gate_pass: GatePass, req: ChatMessageRequest):
    """Resolve the conversation, load its stored turns and persist the new user turn.

    Returns:
        tuple: (conversation row id or None, prompt history)
    """
    history = [m.model_dump() for m in req.history]
    if services.conversations is None or not req.conversation_id:
        return None, history
    site_id = gate_pass.site.id
    conversation_pk = services.conversations.get_or_create(site_id, req.conversation_id, req.visitor_id)
    stored = services.conversations.recent_messages(conversation_pk, settings.HISTORY_MAX_TURNS)
    services.conversations.save_message(site_id, conversation_pk, "user", req.message)
    return conversation_pk, stored or history


def _finish_turn(
    services: Services,
    gate_pass: GatePass,
    conversation_pk: Optional[str],
    answer: str,
    evidence: List[Dict[str, Any]],
    usage: TokenUsage,
    latency_ms: int,
    error_code: Optional[str],
) -> None:
    """Meter the turn and persist whatever answer was produced."""
    services.usage_meter.record(
        UsageEventData(
            tenant_id=gate_pass.site.tenant_id,
            site_id=gate_pass.site.id,
            conversation_id=conversation_pk,
            type="chat",
            model=services.generator.model,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            latency_ms=latency_ms,
            success=error_code is None,
            error_code=error_code,
        )
    )
    if conversation_pk is None or not answer:
        return
    try:
        services.conversations.save_message(
            gate_pass.site.id,
            conversation_pk,
            "assistant",
            answer,
            content_json={"evidence": evidence},
            token_usage=vars(usage),
            model=services.generator.model,
        )
    except StoreChatError as e:
        logger.error("Assistant turn not saved for conversation %s: %s", conversation_pk, e.message)


def _answer_stream(
    services: Services,
    gate_pass: GatePass,
    outcome: RetrievalOutcome,
    messages: List[Dict[str, str]],
    trace: Trace,
    conversation_pk: Optional[str] = None,
) -> Iterator[str]:
    t0 = time.time()
    parts: List[str] = []
    usage = TokenUsage()
    error_code = None
    evidence = [EvidenceOut(**vars(e)).model_dump() for e in outcome.evidence]
    try:
        try:
            for item in services.generator.stream(messages):
                if isinstance(item, TokenUsage):
                    usage = item
                else:
                    parts.append(item)
                    yield sse("token", {"text": item})
        except OpenAIError as e:
            error_code = type(e).__name__
            logger.error("Generation failed for site %s: %s", gate_pass.site.id, e)
            yield sse("error", {"code": "GENERATION_FAILED", "message": "The assistant is unavailable. Please try again."})

        if error_code is None:
            yield sse("evidence", evidence)
            yield sse("done", vars(usage))
    except GeneratorExit:
        # Client went away before the terminal event
        error_code = error_code or "CLIENT_DISCONNECTED"
        raise
    except Exception as e:
        error_code = error_code or "STREAM_FAILED"
        logger.error("Answer stream failed for site %s: %s", gate_pass.site.id, e, exc_info=True)
        raise
    finally:
        latency_ms = int((time.time() - t0) * 1000)
        answer = "".join(parts)
        _finish_turn(services, gate_pass, conversation_pk, answer, evidence, usage, latency_ms, error_code)
        trace.generation("answer", prompt=messages, output=answer, model=services.generator.model, usage=vars(usage))
        trace.end(output={"latency_ms": latency_ms, "sources": len(outcome.evidence), "error": error_code})


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the API. Without `services`, clients are built and the schema ensured at startup."""
    app = FastAPI(title="StoreChat Runtime API", version="0.1.0")
    app.state.services = services

    @app.on_event("startup")
    def on_startup() -> None:
        configure_logging()
        if app.state.services is None:
            app.state.services = build_services()
            init_db(app.state.services.engine)

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        if app.state.services is not None:
            app.state.services.close()

    @app.exception_handler(StoreChatError)
    def handle_storechat_error(request: Request, exc: StoreChatError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": {
                    "code": "INVALID_REQUEST",
                    "message": "Request body is invalid",
                    "details": {"errors": jsonable_encoder(exc.errors())},
                }
            },
        )

    @app.get("/health")
    def health():
        """Liveness check endpoint.

        Returns:
            dict: {"status": "ok"} when the service is running.
        """
        return {"status": "ok"}

    @app.options("/chat/message")
    def chat_message_preflight(request: Request, site_id: Optional[str] = Query(default=None)) -> Response:
        origin = request.headers.get("origin")
        if not origin:
            return Response(status_code=403)
        if not site_id:
            return Response(status_code=400)
        try:
            _services(request).gate.evaluate(site_id, origin)
        except StoreChatError as e:
            logger.info("Preflight rejected for site %s from %s: %s", site_id, origin, e.code)
            return Response(status_code=403)
        return Response(status_code=204, headers=cors_headers(origin, preflight=True))

    @app.post("/chat/message")
    async def chat_message(req: ChatMessageRequest, request: Request) -> Response:
        """Answer a shopper message with a grounded, streamed reply.

        Workflow:
        - Runtime gate (origin, site, license, allowlist, usage)
        - Conversation history loaded and the user turn saved when a conversation id is given
        - Retrieval pipeline, cancelled if the client disconnects, degrading to the
          ungrounded prompt on upstream failure
        - Store information appended to the system prompt
        - Stream `token` events, then `evidence`, then `done` with token usage
        - Record usage and save the answer with its evidence once the stream ends
        """
        services = _services(request)
        gate_pass = await run_in_threadpool(services.gate.evaluate, req.site_id, request.headers.get("origin"))
        trace = Trace(
            "chat.message",
            input={"message": req.message},
            metadata={"site_id": gate_pass.site.id, "tenant_id": gate_pass.site.tenant_id},
        )
        conversation_pk, history = await run_in_threadpool(_open_conversation, services, gate_pass, req)

        with span("chat.retrieve", {"site_id": gate_pass.site.id}):
            outcome, degraded, cancelled = await retrieve_until_disconnect(request, services, gate_pass, req.message)
        trace.event("retrieval", {"chunks": len(outcome.chunks), "sources": len(outcome.evidence), "degraded": degraded})
        if cancelled:
            trace.end(output={"error": "CLIENT_DISCONNECTED"})
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        store_info = StoreInfo.from_site_context(gate_pass.site.site_context, gate_pass.site.site_name)
        system_prompt = append_store_info(outcome.prompts.system_prompt, store_info)
        messages = build_chat_messages(
            system_prompt, trim_history(history, settings.HISTORY_MAX_TURNS), req.message
        )

        return StreamingResponse(
            _answer_stream(services, gate_pass, outcome, messages, trace, conversation_pk),
            media_type="text/event-stream",
            headers={**cors_headers(gate_pass.origin), "Cache-Control": "no-cache"},
        )

    @app.post("/chat/context", response_model=ContextResponse)
    async def chat_context(req: ContextRequest, request: Request) -> Response:
        """Return chunks, context blocks, evidence and prompts for a message without generating."""
        services = _services(request)
        gate_pass = await run_in_threadpool(services.gate.evaluate, req.site_id, request.headers.get("origin"))
        outcome, degraded, cancelled = await retrieve_until_disconnect(
            request,
            services,
            gate_pass,
            req.message,
            source_types=req.source_types,
            top_k=req.top_k,
            threshold=req.similarity_threshold,
        )
        if cancelled:
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        body = ContextResponse.from_outcome(outcome, degraded=degraded)
        return JSONResponse(content=jsonable_encoder(body), headers=cors_headers(gate_pass.origin))

    @app.get("/site/status")
    def site_status(request: Request, site_id: Optional[str] = Query(default=None)):
        if not site_id:
            raise StoreChatError("site_id is required", code="MISSING_REQUIRED_FIELD", status_code=400)
        license = check_license_kill_switch(_services(request).directory, site_id)
        return {"site_id": site_id, "status": "active", "license_id": license.id}

    return app


app = create_app()
