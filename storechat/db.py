"""Database setup and session utilities for SQLAlchemy.

This module centralizes engine/session construction, the metadata base, and helpers:
- create_db_engine: Builds an engine with a bounded connection pool shared by the
  vector store, tenant directory and usage store.
- init_db: Ensures the pgvector extension exists and creates required tables and the
  HNSW cosine index over embeddings.embedding for similarity search.
- session_scope: Context-managed transactional scope for imperative workflows.

Engines are created by the application bootstrap (storechat.services.build_services)
and handed to collaborators; nothing connects at import time.
"""
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from storechat.config import settings

Base = declarative_base()

SessionFactory = Callable[[], Session]


def create_db_engine(url: Optional[str] = None, pool_size: Optional[int] = None) -> Engine:
    """Create an engine with a small, bounded pool.

    Args:
        url: SQLAlchemy URL; defaults to settings.DATABASE_URL.
        pool_size: Pool size; defaults to settings.DB_POOL_SIZE.

    Returns:
        Engine: A configured SQLAlchemy engine.
    """
    return create_engine(
        url or settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_size=pool_size or settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        future=True,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def init_db(engine: Engine) -> None:
    """Initialize database extensions, tables, and vector indexes.

    Ensures pgvector extension is available, creates tables from SQLAlchemy metadata,
    and creates the HNSW cosine index over embeddings.embedding if missing.

    This function is idempotent and safe to run multiple times.
    """
    with engine.connect() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        conn.commit()

    # Import models after Base is defined
    from storechat import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    # HNSW keeps query cost sub-linear at tens of thousands of chunks per tenant
    with engine.connect() as conn:
        conn.execute(
            text(
                """
                CREATE INDEX IF NOT EXISTS idx_embeddings_vector
                ON embeddings USING hnsw (embedding vector_cosine_ops)
                WITH (m = 16, ef_construction = 64)
                """
            )
        )
        conn.commit()


@contextmanager
def session_scope(session_factory: SessionFactory) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations.

    Yields:
        Session: A SQLAlchemy session from the given factory.

    Notes:
        - Commits on successful exit.
        - Rolls back and re-raises on exception.
        - Always closes the session at the end.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
