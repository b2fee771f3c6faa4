"""Dev harness: run the retrieval pipeline for one query and print each stage.

Usage:
  python -m storechat.harness --tenant-id <uuid> --site-id <uuid> --query "Do you have wireless headphones?"
"""
import argparse
import logging
import time

from storechat.config import settings
from storechat.obs import configure_logging
from storechat.rag.pipeline import PipelineResult, RetrievalRequest
from storechat.rag.types import RetrievalOutcome
from storechat.services import build_services

logger = logging.getLogger(__name__)

RULE = "-" * 60


def render_outcome(outcome: RetrievalOutcome, preview_chars: int = 150) -> str:
    """Human-readable dump of chunks, context blocks, evidence and prompts."""
    lines = [f"Retrieved Chunks ({len(outcome.chunks)}):", RULE]
    for i, chunk in enumerate(outcome.chunks, start=1):
        lines.append(f"[{i}] {chunk.entity_type}:{chunk.entity_id} chunk={chunk.chunk_index} "
                     f"similarity={chunk.similarity * 100:.2f}%")
        title = chunk.metadata.display_title
        if title:
            lines.append(f"    Title: {title}")
        lines.append(f"    {chunk.content_text[:preview_chars]}")

    lines += ["", f"Context Blocks ({len(outcome.context_blocks)}):", RULE]
    for i, block in enumerate(outcome.context_blocks, start=1):
        lines.append(f"[{i}] {block.source_type}:{block.source_id} similarity={block.similarity * 100:.2f}% "
                     f"chunks={len(block.chunk_ids)} chars={len(block.content)}")
        if block.title:
            lines.append(f"    Title: {block.title}")
        if block.url:
            lines.append(f"    URL: {block.url}")

    lines += ["", f"Evidence ({len(outcome.evidence)}):", RULE]
    for i, ev in enumerate(outcome.evidence, start=1):
        lines.append(f"[{i}] {ev.source_type}:{ev.source_id} score={ev.score * 100:.2f}% "
                     f"chunk_ids={','.join(ev.chunk_ids)}")

    lines += [
        "",
        f"System Prompt ({len(outcome.prompts.system_prompt)} chars):",
        RULE,
        outcome.prompts.system_prompt,
        "",
        f"User Prompt ({len(outcome.prompts.user_prompt)} chars):",
        RULE,
        outcome.prompts.user_prompt,
    ]
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(description="Run the retrieval pipeline for one query.")
    parser.add_argument("--tenant-id", required=True)
    parser.add_argument("--site-id", required=True)
    parser.add_argument("--query", required=True)
    parser.add_argument("--top-k", type=int, default=settings.TOP_K)
    parser.add_argument("--threshold", type=float, default=settings.SIMILARITY_THRESHOLD)
    parser.add_argument("--types", nargs="*", default=[], help="Source types (product page policy)")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args()
    configure_logging(args.log_level)

    services = build_services()
    try:
        t0 = time.time()
        result: PipelineResult = services.pipeline.run(
            RetrievalRequest(
                tenant_id=args.tenant_id,
                site_id=args.site_id,
                query_text=args.query,
                top_k=args.top_k,
                similarity_threshold=args.threshold,
                allowed_source_types=args.types,
                max_context_tokens=settings.MAX_CONTEXT_TOKENS,
                max_chunks_per_source=settings.MAX_CHUNKS_PER_SOURCE,
                max_sources=settings.MAX_SOURCES,
            )
        )
        elapsed_ms = int((time.time() - t0) * 1000)
        if not result.ok:
            logger.error("Retrieval failed after %dms: %s", elapsed_ms, result.error.message)
            raise SystemExit(1)
        print(f"Query: {args.query!r} ({elapsed_ms}ms)")
        print(render_outcome(result.outcome))
    finally:
        services.close()


if __name__ == "__main__":
    main()
