"""Application package for the store chat runtime: API, configuration, data access,
retrieval pipeline, runtime gate and supporting utilities.

Submodules overview:
- main: FastAPI application and the widget-facing endpoints.
- services: Bootstrap that builds clients once and wires collaborators.
- config: Application settings and environment variable loading.
- db: Database engine/session management helpers and schema bootstrap.
- models: ORM models (tenancy, embeddings, usage).
- schemas: Pydantic request/response models for API contracts.
- rag: Retrieval, context, evidence, prompt and guardrail building blocks.
- gate: Runtime gate (site, license kill switch, origin allowlist, usage).
- tenancy: Read-only site/license lookups.
- usage: Plan limits, cost estimates and usage recording.
- generation: Streaming chat completions.
- embedding: Embedding client wrapper.
- cache: Redis query-embedding cache.
- ingestion: Offline catalog ingestion CLI.
- harness: Dev CLI printing every pipeline stage for one query.
- obs: Logging setup and tracing (OpenTelemetry spans, Langfuse).
- utils: Origin normalization, hashing, HTML extraction and chunking.
"""
