"""Ingestion package for offline catalog loading.

Populates the embeddings table with chunked, embedded store content. See
ingest_catalog.py for the catalog export pipeline.
"""
