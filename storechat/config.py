"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- API keys and model names
- Data stores (PostgreSQL pool, Redis) and the query-embedding cache
- Retrieval and context-budget knobs used by the RAG pipeline
- Generation and usage-metering defaults
- Ingestion chunking parameters
- Optional observability (Langfuse, OpenTelemetry console export)

A light-weight local safety warning is logged if OPENAI_API_KEY is not set when not running in Docker.
"""
import logging
import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    See individual field names for semantics and safe defaults.
    """
    # Required
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")

    # Models
    OPENAI_CHAT_MODEL: str = "gpt-4o"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"  # 1536 dims
    OPENAI_TIMEOUT_SECONDS: float = 30.0
    OPENAI_MAX_RETRIES: int = 3

    # Data stores
    DATABASE_URL: str = "postgresql+psycopg2://storechat:storechat@db:5432/storechat"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 0
    REDIS_URL: str = "redis://redis:6379/0"
    EMBEDDING_CACHE_ENABLED: bool = True
    EMBEDDING_CACHE_TTL_SECONDS: int = 3600

    # Retrieval / context assembly
    TOP_K: int = 10
    SIMILARITY_THRESHOLD: float = 0.5  # 0-1, chat default; Retriever's own default is 0.7
    MAX_CONTEXT_TOKENS: int = 4000
    MAX_CHUNKS_PER_SOURCE: int = 3
    MAX_SOURCES: int = 5
    VECTOR_OVERFETCH_FACTOR: int = 2
    RETRIEVAL_TIMEOUT_SECONDS: float = 5.0

    # Generation
    GENERATION_TIMEOUT_SECONDS: float = 60.0
    GENERATION_TEMPERATURE: float = 0.7
    MAX_OUTPUT_TOKENS: int = 1000
    HISTORY_MAX_TURNS: int = 10

    # Usage metering
    USAGE_ESTIMATED_CHAT_TOKENS: int = 1000

    # Ingestion
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200

    # Observability (optional)
    LOG_LEVEL: str = "INFO"
    LANGFUSE_HOST: str = ""
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    OTEL_CONSOLE_EXPORT: bool = False

    # Derived
    @property
    def EMBEDDING_DIM(self) -> int:
        """Embedding dimension for the configured embedding model.

        Returns:
            int: The vector dimension inferred from OPENAI_EMBEDDING_MODEL.
        """
        model = self.OPENAI_EMBEDDING_MODEL.lower()
        if "text-embedding-3-large" in model:
            return 3072
        # text-embedding-3-small and text-embedding-ada-002
        return 1536

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()

# Safety check for local dev (inside API container this must be set)
if os.environ.get("RUNNING_IN_DOCKER", "0") == "0":
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set. Set it in .env before running ingestion or the chat API.")
