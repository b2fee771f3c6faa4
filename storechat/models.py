"""Database ORM models.

Tenancy tables (tenants, licenses, sites) are owned by the surrounding platform;
the chat runtime only reads them. The pipeline reads embeddings, the usage
meter writes usage_events and usage_daily, and the chat endpoint writes
conversations and messages.

- Embedding: one chunk of store content with its pgvector embedding. Ingestion
  inserts a new version for changed chunks and deletes the superseded ones.
- Conversation / Message: widget chat threads and their turns; assistant turns
  keep the evidence they cited in `content_json`.
- UsageDaily: per-site daily aggregate used for plan-limit enforcement.
- UsageEvent: one row per metered chat or embedding call.
"""
import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID

from storechat.config import settings
from storechat.db import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class License(Base):
    """Commercial license; `status` is the kill-switch input.

    Statuses seen in practice: active, revoked, expired, suspended.
    """
    __tablename__ = "licenses"

    id = Column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(UUID(as_uuid=False), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(32), nullable=False, default="active")
    expires_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    plan_limits = Column(JSONB, nullable=False, default=dict)
    max_sites = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Site(Base):
    """A WooCommerce store bound to a license, with its CORS allowlist."""
    __tablename__ = "sites"

    id = Column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(UUID(as_uuid=False), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    license_id = Column(UUID(as_uuid=False), ForeignKey("licenses.id"), nullable=True)
    site_url = Column(String(1024), nullable=False)
    site_name = Column(String(255), nullable=True)
    status = Column(String(32), nullable=False, default="active")
    allowed_origins = Column(ARRAY(Text), nullable=False, default=list)
    # Store information surfaced to the assistant (contact, hours, policies, currency)
    site_context = Column(JSONB, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("idx_sites_license", "license_id"),)


class Embedding(Base):
    """Vector-embedded chunk of a product, page or policy.

    Uniquely identified by (site_id, entity_type, entity_id, version). The
    embedding dimension is derived from settings.EMBEDDING_DIM and must match
    the embedding model recorded in `model`.
    """
    __tablename__ = "embeddings"

    id = Column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    site_id = Column(UUID(as_uuid=False), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(UUID(as_uuid=False), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(Text, nullable=False)
    entity_id = Column(Text, nullable=False)
    content_text = Column(Text, nullable=False)
    embedding = Column(Vector(dim=settings.EMBEDDING_DIM), nullable=True)
    model = Column(Text, nullable=False, default=settings.OPENAI_EMBEDDING_MODEL)
    version = Column(Integer, nullable=False, default=1)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSONB, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("site_id", "entity_type", "entity_id", "version", name="uq_embeddings_entity_version"),
        CheckConstraint("entity_type IN ('product', 'page', 'policy')", name="ck_embeddings_entity_type"),
        Index("idx_embeddings_site_id", "site_id"),
        Index("idx_embeddings_tenant_id", "tenant_id"),
        Index("idx_embeddings_entity", "entity_type", "entity_id"),
    )


class UsageDaily(Base):
    __tablename__ = "usage_daily"

    date = Column(Date, primary_key=True)
    site_id = Column(UUID(as_uuid=False), ForeignKey("sites.id", ondelete="CASCADE"), primary_key=True)
    tenant_id = Column(UUID(as_uuid=False), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    chat_requests = Column(Integer, nullable=False, default=0)
    embedding_requests = Column(Integer, nullable=False, default=0)
    total_tokens = Column(BigInteger, nullable=False, default=0)
    estimated_cost = Column(Numeric(12, 6), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class UsageEvent(Base):
    __tablename__ = "usage_events"

    id = Column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(UUID(as_uuid=False), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    site_id = Column(UUID(as_uuid=False), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    conversation_id = Column(UUID(as_uuid=False), nullable=True)
    type = Column(String(16), nullable=False)
    model = Column(Text, nullable=False)
    prompt_tokens = Column(Integer, nullable=False, default=0)
    completion_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    latency_ms = Column(Integer, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    error_code = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("type IN ('chat', 'embedding')", name="ck_usage_events_type"),
        Index("idx_usage_events_site_id", "site_id"),
        Index("idx_usage_events_created_at", "created_at"),
    )


class Conversation(Base):
    """A widget chat thread, keyed by the widget's own conversation id per site."""
    __tablename__ = "conversations"

    id = Column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    site_id = Column(UUID(as_uuid=False), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    conversation_id = Column(Text, nullable=False)
    visitor_id = Column(Text, nullable=True)
    message_count = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    last_message_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("site_id", "conversation_id", name="uq_conversations_site_conversation"),
        Index("idx_conversations_last_message_at", "last_message_at"),
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id = Column(
        UUID(as_uuid=False), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    site_id = Column(UUID(as_uuid=False), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(16), nullable=False)
    content_text = Column(Text, nullable=True)
    # {"evidence": [...]} on assistant turns
    content_json = Column(JSONB, nullable=True)
    token_usage = Column(JSONB, nullable=True)
    model = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant', 'system')", name="ck_messages_role"),
        Index("idx_messages_conversation_created", "conversation_id", "created_at"),
    )
