"""Per-site usage metering against license plan limits.

Provides:
- UsageLimits / UsageSnapshot / UsageCheck: plan limits, today's counters and a check verdict.
- check_usage_limits: pure limit check for a chat or embedding request.
- calculate_cost: USD estimate from a per-1K-token pricing table.
- UsageMeter: limit check before a request and event + daily-aggregate recording after it.
- SqlUsageStore: usage_events inserts and an atomic usage_daily upsert.

Recording is best-effort: a failed write is logged and never fails the chat.
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Literal, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from storechat.db import SessionFactory, session_scope
from storechat.errors import StoreChatError
from storechat.models import UsageDaily, UsageEvent
from storechat.tenancy import LicenseRecord, SiteRecord

logger = logging.getLogger(__name__)

UsageKind = Literal["chat", "embedding"]

# USD per 1K tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4": {"prompt": 0.03, "completion": 0.06},
    "gpt-4-turbo": {"prompt": 0.01, "completion": 0.03},
    "gpt-4o": {"prompt": 0.005, "completion": 0.015},
    "gpt-3.5-turbo": {"prompt": 0.0005, "completion": 0.0015},
    "text-embedding-3-small": {"prompt": 0.00002, "completion": 0.0},
    "text-embedding-3-large": {"prompt": 0.00013, "completion": 0.0},
    "text-embedding-ada-002": {"prompt": 0.0001, "completion": 0.0},
}
FALLBACK_PRICING = {"prompt": 0.001, "completion": 0.002}

# Tokens attributed to each chat request when estimating embedding usage
CHAT_TOKENS_PER_REQUEST_ESTIMATE = 1000


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model, FALLBACK_PRICING)
    return (prompt_tokens * pricing["prompt"] + completion_tokens * pricing["completion"]) / 1000


@dataclass(frozen=True)
class UsageLimits:
    max_tokens_per_day: int = 1_000_000
    max_chat_requests_per_day: int = 1_000
    max_embedding_tokens_per_day: int = 100_000

    @classmethod
    def from_plan(cls, plan_limits: Optional[Dict[str, Any]]) -> "UsageLimits":
        """Read limits from a license's plan_limits JSON; missing keys keep defaults."""
        plan = plan_limits or {}
        defaults = cls()
        return cls(
            max_tokens_per_day=int(plan.get("max_tokens_per_day", defaults.max_tokens_per_day)),
            max_chat_requests_per_day=int(plan.get("max_chat_requests_per_day", defaults.max_chat_requests_per_day)),
            max_embedding_tokens_per_day=int(
                plan.get("max_embedding_tokens_per_day", defaults.max_embedding_tokens_per_day)
            ),
        )


@dataclass(frozen=True)
class UsageSnapshot:
    chat_requests: int = 0
    embedding_requests: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class UsageCheck:
    allowed: bool
    reason: Optional[str] = None
    current_usage: Optional[UsageSnapshot] = None
    limits: Optional[UsageLimits] = None

    def details(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.current_usage is not None:
            out["current_usage"] = asdict(self.current_usage)
        if self.limits is not None:
            out["limits"] = asdict(self.limits)
        return out


def check_usage_limits(
    snapshot: UsageSnapshot, limits: UsageLimits, kind: UsageKind, requested_tokens: int
) -> UsageCheck:
    """Check today's usage plus a pending request against plan limits.

    Args:
        snapshot: Today's counters for the site.
        limits: Plan limits.
        kind: "chat" or "embedding".
        requested_tokens: Tokens the pending request is expected to use.

    Returns:
        UsageCheck: allowed, or the first limit that would be crossed.
    """

    def deny(reason: str) -> UsageCheck:
        return UsageCheck(allowed=False, reason=reason, current_usage=snapshot, limits=limits)

    if kind == "chat":
        if snapshot.chat_requests >= limits.max_chat_requests_per_day:
            return deny("Daily chat request limit reached")
    else:
        embedding_tokens = snapshot.total_tokens - snapshot.chat_requests * CHAT_TOKENS_PER_REQUEST_ESTIMATE
        if embedding_tokens + requested_tokens > limits.max_embedding_tokens_per_day:
            return deny("Daily embedding token limit would be exceeded")

    if snapshot.total_tokens + requested_tokens > limits.max_tokens_per_day:
        return deny("Daily token limit would be exceeded")
    return UsageCheck(allowed=True, current_usage=snapshot, limits=limits)


@dataclass
class UsageEventData:
    tenant_id: str
    site_id: str
    type: UsageKind
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    conversation_id: Optional[str] = None
    latency_ms: Optional[int] = None
    success: bool = True
    error_code: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class UsageStore(Protocol):
    def get_daily(self, site_id: str, day: date) -> UsageSnapshot:
        ...

    def log_event(self, event: UsageEventData) -> None:
        ...

    def increment_daily(self, event: UsageEventData, cost: float, day: date) -> None:
        ...


class SqlUsageStore:
    """UsageStore over usage_events and usage_daily."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get_daily(self, site_id: str, day: date) -> UsageSnapshot:
        session = self.session_factory()
        try:
            row = session.execute(
                select(UsageDaily).where(UsageDaily.date == day, UsageDaily.site_id == site_id)
            ).scalar_one_or_none()
        finally:
            session.close()
        if row is None:
            return UsageSnapshot()
        return UsageSnapshot(
            chat_requests=row.chat_requests or 0,
            embedding_requests=row.embedding_requests or 0,
            total_tokens=int(row.total_tokens or 0),
        )

    def log_event(self, event: UsageEventData) -> None:
        with session_scope(self.session_factory) as session:
            session.add(UsageEvent(**asdict(event)))

    def increment_daily(self, event: UsageEventData, cost: float, day: date) -> None:
        is_chat = 1 if event.type == "chat" else 0
        stmt = pg_insert(UsageDaily).values(
            date=day,
            site_id=event.site_id,
            tenant_id=event.tenant_id,
            chat_requests=is_chat,
            embedding_requests=1 - is_chat,
            total_tokens=event.total_tokens,
            estimated_cost=cost,
            updated_at=func.now(),
        )
        # Concurrent requests for the same site/day add to one row
        stmt = stmt.on_conflict_do_update(
            index_elements=[UsageDaily.date, UsageDaily.site_id],
            set_={
                "chat_requests": UsageDaily.chat_requests + stmt.excluded.chat_requests,
                "embedding_requests": UsageDaily.embedding_requests + stmt.excluded.embedding_requests,
                "total_tokens": UsageDaily.total_tokens + stmt.excluded.total_tokens,
                "estimated_cost": UsageDaily.estimated_cost + stmt.excluded.estimated_cost,
                "updated_at": func.now(),
            },
        )
        with session_scope(self.session_factory) as session:
            session.execute(stmt)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class UsageMeter:
    """Plan-limit checks and usage recording for one deployment."""

    def __init__(self, store: UsageStore, estimated_chat_tokens: int = 1000):
        self.store = store
        self.estimated_chat_tokens = estimated_chat_tokens

    def check(
        self,
        site: SiteRecord,
        license: LicenseRecord,
        kind: UsageKind = "chat",
        requested_tokens: Optional[int] = None,
    ) -> UsageCheck:
        if requested_tokens is None:
            requested_tokens = self.estimated_chat_tokens
        try:
            snapshot = self.store.get_daily(site.id, utc_today())
        except SQLAlchemyError as e:
            logger.error("Failed to read daily usage for site %s: %s", site.id, e)
            raise StoreChatError("Failed to check usage limits", code="USAGE_CHECK_FAILED", status_code=500) from e
        return check_usage_limits(snapshot, UsageLimits.from_plan(license.plan_limits), kind, requested_tokens)

    def record(self, event: UsageEventData) -> float:
        """Log the event and bump today's aggregate; returns the estimated cost."""
        cost = calculate_cost(event.model, event.prompt_tokens, event.completion_tokens)
        try:
            self.store.log_event(event)
        except SQLAlchemyError as e:
            logger.error("Failed to log usage event for site %s: %s", event.site_id, e)
        try:
            self.store.increment_daily(event, cost, event.created_at.date())
        except SQLAlchemyError as e:
            logger.error("Failed to update daily usage for site %s: %s", event.site_id, e)
        return cost
