"""Application bootstrap: build every client once and wire collaborators together.

build_services() is called by the API at startup and by the CLIs. Tests build a
Services instance directly from fakes.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from storechat.cache import EmbeddingCache, get_redis
from storechat.config import settings
from storechat.conversations import ConversationStore, SqlConversationStore
from storechat.db import SessionFactory, create_db_engine, create_session_factory
from storechat.embedding import Embedder, create_openai_client
from storechat.gate import RuntimeGate
from storechat.generation import ChatGenerator
from storechat.rag.guardrails import DEFAULT_RETRIEVAL_POLICY
from storechat.rag.pipeline import RAGPipeline
from storechat.rag.retrieval import Retriever
from storechat.rag.vector_store import PgVectorStore
from storechat.tenancy import SqlTenantDirectory, TenantDirectory
from storechat.usage import SqlUsageStore, UsageMeter

logger = logging.getLogger(__name__)


@dataclass
class Services:
    directory: TenantDirectory
    gate: RuntimeGate
    usage_meter: UsageMeter
    pipeline: RAGPipeline
    generator: ChatGenerator
    conversations: Optional[ConversationStore] = None
    engine: Any = None
    session_factory: Optional[SessionFactory] = None

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()


def build_services() -> Services:
    """Construct the engine, OpenAI and Redis clients and the runtime collaborators."""
    engine = create_db_engine()
    session_factory = create_session_factory(engine)
    openai_client = create_openai_client()

    cache = None
    if settings.EMBEDDING_CACHE_ENABLED:
        cache = EmbeddingCache(get_redis(), settings.EMBEDDING_CACHE_TTL_SECONDS)

    embedder = Embedder(openai_client, settings.OPENAI_EMBEDDING_MODEL, cache=cache)
    vector_store = PgVectorStore(
        session_factory,
        embedding_dim=settings.EMBEDDING_DIM,
        index_model=settings.OPENAI_EMBEDDING_MODEL,
        overfetch_factor=settings.VECTOR_OVERFETCH_FACTOR,
    )
    pipeline = RAGPipeline(
        Retriever(embedder, vector_store),
        policy=DEFAULT_RETRIEVAL_POLICY,
        retrieval_timeout_seconds=settings.RETRIEVAL_TIMEOUT_SECONDS,
    )

    directory = SqlTenantDirectory(session_factory)
    usage_meter = UsageMeter(SqlUsageStore(session_factory), settings.USAGE_ESTIMATED_CHAT_TOKENS)
    logger.info(
        "Services ready (chat_model=%s embedding_model=%s dim=%d cache=%s)",
        settings.OPENAI_CHAT_MODEL, settings.OPENAI_EMBEDDING_MODEL, settings.EMBEDDING_DIM, cache is not None,
    )
    return Services(
        directory=directory,
        gate=RuntimeGate(directory, usage_meter),
        usage_meter=usage_meter,
        pipeline=pipeline,
        generator=ChatGenerator(openai_client),
        conversations=SqlConversationStore(session_factory),
        engine=engine,
        session_factory=session_factory,
    )
