"""
Shared test fixtures for the storechat test suite.

Provides in-memory doubles for the embedding service, vector store, tenant
directory, usage store and conversation store, plus chunk factories. No network
or database needed.
"""

from datetime import datetime, timedelta, timezone

import pytest

from storechat.rag.types import ChunkMetadata, RetrievedChunk
from storechat.tenancy import LicenseRecord, SiteRecord
from storechat.usage import UsageSnapshot

TENANT_ID = "11111111-1111-4111-8111-111111111111"
SITE_ID = "22222222-2222-4222-8222-222222222222"
LICENSE_ID = "33333333-3333-4333-8333-333333333333"
ORIGIN = "https://shop.example.com"
CONVERSATION_PK = "44444444-4444-4444-8444-444444444444"


def make_chunk(
    entity_id="p1",
    similarity=0.9,
    entity_type="product",
    chunk_index=0,
    content=None,
    chunk_id=None,
    **meta,
):
    """Build a RetrievedChunk with sensible defaults."""
    return RetrievedChunk(
        id=chunk_id or f"{entity_id}-c{chunk_index}",
        tenant_id=TENANT_ID,
        site_id=SITE_ID,
        entity_type=entity_type,
        entity_id=entity_id,
        content_text=content if content is not None else f"Text of {entity_id} chunk {chunk_index}",
        similarity=similarity,
        chunk_index=chunk_index,
        chunk_hash=f"hash-{entity_id}-{chunk_index}",
        metadata=ChunkMetadata.from_dict(meta),
    )


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------

class FakeEmbedder:
    def __init__(self, dim=4, model="text-embedding-3-small", error=None):
        self.dim = dim
        self.default_model = model
        self.error = error
        self.calls = []

    def embed(self, text, model=None):
        self.calls.append((text, model))
        if self.error is not None:
            raise self.error
        return [0.1] * self.dim


class FakeVectorStore:
    def __init__(self, chunks=None, error=None, on_search=None):
        self.chunks = list(chunks or [])
        self.error = error
        self.on_search = on_search
        self.calls = []

    def search(self, query_vector, tenant_id, site_id, entity_types, limit, min_similarity=0.0, model=None):
        self.calls.append(
            {
                "tenant_id": tenant_id,
                "site_id": site_id,
                "entity_types": list(entity_types),
                "limit": limit,
                "min_similarity": min_similarity,
                "model": model,
            }
        )
        if self.on_search is not None:
            self.on_search()
        if self.error is not None:
            raise self.error
        return [c for c in self.chunks if c.entity_type in entity_types]


class FakeDirectory:
    def __init__(self, sites=None, licenses=None):
        self.sites = {s.id: s for s in (sites or [])}
        self.licenses = {lic.id: lic for lic in (licenses or [])}
        self.site_lookups = 0

    def get_site(self, site_id):
        self.site_lookups += 1
        return self.sites.get(site_id)

    def get_license(self, license_id):
        return self.licenses.get(license_id)


class FakeUsageStore:
    def __init__(self, snapshot=None, fail=None, read_error=None):
        self.snapshot = snapshot or UsageSnapshot()
        self.fail = fail
        self.read_error = read_error
        self.events = []
        self.increments = []

    def get_daily(self, site_id, day):
        if self.read_error is not None:
            raise self.read_error
        return self.snapshot

    def log_event(self, event):
        if self.fail is not None:
            raise self.fail
        self.events.append(event)

    def increment_daily(self, event, cost, day):
        if self.fail is not None:
            raise self.fail
        self.increments.append((event, cost, day))


class FakeConversationStore:
    def __init__(self, stored=None, save_error=None):
        self.stored = list(stored or [])
        self.save_error = save_error
        self.created = []
        self.saved = []

    def get_or_create(self, site_id, conversation_id, visitor_id=None):
        self.created.append((site_id, conversation_id, visitor_id))
        return CONVERSATION_PK

    def recent_messages(self, conversation_pk, limit):
        return self.stored[-limit:]

    def save_message(self, site_id, conversation_pk, role, content, content_json=None, token_usage=None, model=None):
        if self.save_error is not None:
            raise self.save_error
        self.saved.append(
            {
                "conversation_pk": conversation_pk,
                "role": role,
                "content": content,
                "content_json": content_json,
                "token_usage": token_usage,
                "model": model,
            }
        )


# ---------------------------------------------------------------------------
# Tenancy fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def active_license():
    return LicenseRecord(
        id=LICENSE_ID,
        tenant_id=TENANT_ID,
        status="active",
        expires_at=datetime.now(timezone.utc) + timedelta(days=30),
        plan_limits={"max_chat_requests_per_day": 100},
    )


@pytest.fixture
def active_site():
    return SiteRecord(
        id=SITE_ID,
        tenant_id=TENANT_ID,
        license_id=LICENSE_ID,
        status="active",
        site_url=ORIGIN,
        site_name="Example Shop",
        allowed_origins=[ORIGIN, "https://www.example.com:443"],
        site_context={"contact": {"email": "help@example.com"}},
    )


@pytest.fixture
def directory(active_site, active_license):
    return FakeDirectory([active_site], [active_license])


@pytest.fixture
def usage_store():
    return FakeUsageStore()


# ---------------------------------------------------------------------------
# Chunk fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def six_product_chunks():
    """7 chunks across 6 products; p1 has two chunks."""
    return [
        make_chunk("p1", 0.91, product_title="Wireless Headphones", product_url="https://shop.example.com/p1"),
        make_chunk("p2", 0.85, product_title="Bluetooth Speaker"),
        make_chunk("p3", 0.80, product_title="Earbuds"),
        make_chunk("p4", 0.78, product_title="Headphone Stand"),
        make_chunk("p1", 0.76, chunk_index=1, product_title="Wireless Headphones"),
        make_chunk("p5", 0.74, product_title="Audio Cable"),
        make_chunk("p6", 0.70, product_title="Carrying Case"),
    ]
