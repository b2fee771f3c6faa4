"""Store catalog ingestor.

Loads a catalog export (local JSON file or URL) holding a site's products,
pages and policies, converts each entity to text, chunks it, embeds the chunks
with OpenAI embeddings and inserts Embedding rows into Postgres.

Chunk rows are versioned rather than edited:
- An entity whose full text hash is already stored is skipped entirely.
- Chunks whose hash is already stored for the entity are not re-embedded.
- Every inserted chunk gets the next version number for its entity.
- Once the new version is written, rows for chunks that are no longer part of
  the entity text are deleted so search never returns superseded content.

Catalog shape:
  {"tenant_id": "...", "site_id": "...",
   "products": [{"id", "title", "description", "sku", "brand", "categories", "tags",
                 "attributes", "variation_attributes", "price_range", "url", "updated_at"}],
   "pages": [{"id", "title", "content", "type", "url", "updated_at"}],
   "policies": [{"id", "title", "content", "url", "updated_at"}]}

Usage:
  python -m storechat.ingestion.ingest_catalog --source catalog.json
  python -m storechat.ingestion.ingest_catalog --source https://shop.example.com/catalog.json
"""
import argparse
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

import requests
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storechat.config import settings
from storechat.db import SessionFactory, create_db_engine, create_session_factory, init_db, session_scope
from storechat.embedding import Embedder, create_openai_client
from storechat.models import Embedding
from storechat.obs import configure_logging
from storechat.utils import chunk_spans, content_hash, html_to_text

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "StoreChat-Ingestor/1.0",
    "Accept": "application/json",
}


def fetch_catalog(source: str, timeout: int = 30) -> Dict[str, Any]:
    """Load a catalog from an http(s) URL or a local path."""
    if source.startswith(("http://", "https://")):
        logger.info("Fetching catalog: %s", source)
        resp = requests.get(source, headers=HEADERS, timeout=timeout)
        logger.info("HTTP %d from %s (bytes=%d)", resp.status_code, source, len(resp.content or b""))
        resp.raise_for_status()
        return resp.json()
    with open(source, encoding="utf-8") as fh:
        return json.load(fh)


def build_product_text(product: Dict[str, Any]) -> str:
    parts = [f"Product: {product.get('title', '')}"]
    if product.get("sku"):
        parts.append(f"SKU: {product['sku']}")
    if product.get("brand"):
        parts.append(f"Brand: {product['brand']}")
    parts.append(f"Description: {html_to_text(product.get('description') or product.get('summary') or '')}")
    if product.get("categories"):
        parts.append(f"Categories: {', '.join(product['categories'])}")
    if product.get("tags"):
        parts.append(f"Tags: {', '.join(product['tags'])}")
    attributes = product.get("attributes") or {}
    if attributes:
        parts.append("Attributes: " + "; ".join(f"{k}: {', '.join(v)}" for k, v in attributes.items()))
    if product.get("variation_attributes"):
        parts.append(f"Available Variations: {', '.join(product['variation_attributes'])}")
    price = product.get("price_range")
    if price:
        symbol = "$" if price.get("currency") == "USD" else price.get("currency", "")
        if price.get("min") == price.get("max"):
            parts.append(f"Price: {symbol}{price.get('min')}")
        else:
            parts.append(f"Price Range: {symbol}{price.get('min')} - {symbol}{price.get('max')}")
    return "\n".join(parts)


def build_page_text(page: Dict[str, Any]) -> str:
    return f"Page: {page.get('title', '')}\n\n{html_to_text(page.get('content') or '')}"


def plan_chunks(
    text: str, existing_chunk_hashes: Set[str], chunk_size: int, overlap: int
) -> Tuple[List[Dict[str, Any]], int]:
    """Chunk text and drop chunks already stored for the entity.

    Returns:
        Tuple[List[Dict[str, Any]], int]: New chunks (index, text, hash, start/end
        offsets) and the number skipped as duplicates.
    """
    planned: List[Dict[str, Any]] = []
    skipped = 0
    for i, (start, end, chunk) in enumerate(chunk_spans(text, chunk_size, overlap)):
        h = content_hash(chunk)
        if h in existing_chunk_hashes:
            skipped += 1
            continue
        planned.append({"chunk_index": i, "text": chunk, "chunk_hash": h, "start_char": start, "end_char": end})
    return planned, skipped


@dataclass
class EntityResult:
    entity_type: str
    entity_id: str
    created: int = 0
    skipped_chunks: int = 0
    pruned: int = 0
    unchanged: bool = False


class CatalogIngestor:
    def __init__(self, session_factory: SessionFactory, embedder: Embedder,
                 chunk_size: Optional[int] = None, overlap: Optional[int] = None):
        self.session_factory = session_factory
        self.embedder = embedder
        self.chunk_size = chunk_size or settings.CHUNK_SIZE
        self.overlap = settings.CHUNK_OVERLAP if overlap is None else overlap

    def existing_state(self, db: Session, site_id: str, entity_type: str, entity_id: str):
        """Return (max_version, full_content_hashes, chunk_hashes) stored for an entity."""
        rows = db.execute(
            select(Embedding.version, Embedding.meta).where(
                Embedding.site_id == site_id,
                Embedding.entity_type == entity_type,
                Embedding.entity_id == entity_id,
            )
        ).all()
        max_version = max((r[0] for r in rows), default=0)
        full_hashes = {(r[1] or {}).get("full_content_hash") for r in rows} - {None}
        chunk_hashes = {(r[1] or {}).get("chunk_hash") for r in rows} - {None}
        return max_version, full_hashes, chunk_hashes

    def prune_superseded(
        self,
        db: Session,
        site_id: str,
        entity_type: str,
        entity_id: str,
        keep_hashes: Set[str],
        full_hash: str,
    ) -> int:
        """Delete an entity's rows whose chunk is no longer in its current text.

        Surviving rows are re-stamped with the current full_content_hash so the
        unchanged-content check only matches the latest text.
        """
        removed = 0
        rows = db.scalars(
            select(Embedding).where(
                Embedding.site_id == site_id,
                Embedding.entity_type == entity_type,
                Embedding.entity_id == entity_id,
            )
        ).all()
        for row in rows:
            meta = row.meta or {}
            if meta.get("chunk_hash") not in keep_hashes:
                db.delete(row)
                removed += 1
            elif meta.get("full_content_hash") != full_hash:
                row.meta = {**meta, "full_content_hash": full_hash}
        return removed

    def ingest_entity(
        self,
        tenant_id: str,
        site_id: str,
        entity_type: str,
        entity_id: str,
        text: str,
        base_meta: Dict[str, Any],
    ) -> EntityResult:
        """Embed and insert new chunks for one entity.

        Args:
            tenant_id: Tenant owning the site.
            site_id: Site the entity belongs to.
            entity_type: product, page or policy.
            entity_id: Store-side entity id.
            text: Full entity text.
            base_meta: Title/url/recency metadata copied onto every chunk.

        Returns:
            EntityResult: Counts for logging.
        """
        result = EntityResult(entity_type=entity_type, entity_id=entity_id)
        full_hash = content_hash(text)
        with session_scope(self.session_factory) as db:
            max_version, full_hashes, chunk_hashes = self.existing_state(db, site_id, entity_type, entity_id)
            if full_hash in full_hashes:
                logger.info("Skipping %s %s: content unchanged", entity_type, entity_id)
                result.unchanged = True
                return result

            planned, result.skipped_chunks = plan_chunks(text, chunk_hashes, self.chunk_size, self.overlap)
            vectors = self.embedder.embed_texts([p["text"] for p in planned]) if planned else []

            for offset, (chunk, vector) in enumerate(zip(planned, vectors), start=1):
                meta = dict(base_meta)
                meta.update(
                    chunk_index=chunk["chunk_index"],
                    chunk_hash=chunk["chunk_hash"],
                    start_char=chunk["start_char"],
                    end_char=chunk["end_char"],
                    full_content_hash=full_hash,
                )
                db.add(
                    Embedding(
                        site_id=site_id,
                        tenant_id=tenant_id,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        content_text=chunk["text"],
                        embedding=vector,
                        model=self.embedder.default_model,
                        version=max_version + offset,
                        meta=meta,
                        updated_at=func.now(),
                    )
                )
            result.created = len(planned)
            if max_version:
                keep = {content_hash(c) for _, _, c in chunk_spans(text, self.chunk_size, self.overlap)}
                result.pruned = self.prune_superseded(db, site_id, entity_type, entity_id, keep, full_hash)
        logger.debug(
            "Ingested %s %s: created=%d skipped=%d pruned=%d",
            entity_type, entity_id, result.created, result.skipped_chunks, result.pruned,
        )
        return result


def catalog_entities(catalog: Dict[str, Any]):
    """Yield (entity_type, entity_id, text, base_meta) for every catalog entry."""
    for product in catalog.get("products") or []:
        yield "product", str(product["id"]), build_product_text(product), {
            "product_id": product["id"],
            "product_title": product.get("title"),
            "product_url": product.get("url"),
            "sku": product.get("sku"),
            "source_updated_at": product.get("updated_at"),
        }
    for kind, key in (("page", "pages"), ("policy", "policies")):
        for page in catalog.get(key) or []:
            yield kind, str(page["id"]), build_page_text(page), {
                "page_id": page["id"],
                "page_title": page.get("title"),
                "page_url": page.get("url"),
                "page_type": page.get("type", kind),
                "source_updated_at": page.get("updated_at"),
            }


def ingest_catalog(catalog: Dict[str, Any], ingestor: CatalogIngestor) -> Dict[str, int]:
    """Ingest every entity in a catalog; returns totals."""
    tenant_id, site_id = catalog.get("tenant_id"), catalog.get("site_id")
    if not tenant_id or not site_id:
        raise ValueError("catalog must name tenant_id and site_id")

    totals = {"entities": 0, "created": 0, "unchanged": 0, "skipped_chunks": 0, "pruned": 0}
    for entity_type, entity_id, text, meta in catalog_entities(catalog):
        result = ingestor.ingest_entity(
            tenant_id, site_id, entity_type, entity_id, text, {k: v for k, v in meta.items() if v is not None}
        )
        totals["entities"] += 1
        totals["created"] += result.created
        totals["unchanged"] += int(result.unchanged)
        totals["skipped_chunks"] += result.skipped_chunks
        totals["pruned"] += result.pruned
    return totals


def main():
    parser = argparse.ArgumentParser(description="Ingest a store catalog export into the embeddings table.")
    parser.add_argument("--source", required=True, help="Catalog JSON file path or URL")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: INFO)",
    )
    args = parser.parse_args()
    configure_logging(args.log_level)

    engine = create_db_engine()
    init_db(engine)
    ingestor = CatalogIngestor(create_session_factory(engine), Embedder(create_openai_client()))
    try:
        totals = ingest_catalog(fetch_catalog(args.source), ingestor)
        logger.info("Completed ingestion: %s (source=%s)", totals, args.source)
        print(f"[INGEST-CATALOG] {args.source} -> {totals['created']} chunks")
    except Exception:
        logger.exception("Ingestion failed for %s", args.source)
        raise
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
