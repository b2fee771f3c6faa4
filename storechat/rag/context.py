"""Context assembly from retrieved chunks.

Provides:
- estimate_tokens: ceil(chars / 4), a fixed English-text heuristic (no tokenizer call).
- ContextOptions: budgets and merge strategy.
- build_context_blocks: group by source, rank, cap and merge under token/character budgets.
- format_context_blocks: render blocks into one text blob for prompt injection.

Blocks are accepted in similarity order and building stops at the first block
that would break a budget; a smaller block further down is never squeezed in.
"""
import math
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from storechat.rag.types import ContextBlock, RetrievedChunk

MergeStrategy = Literal["concatenate", "separate"]

CHUNK_SEPARATOR = "\n\n"
BLOCK_SEPARATOR = "\n\n---\n\n"


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


@dataclass(frozen=True)
class ContextOptions:
    """Budgets for one context build.

    Attributes:
        max_context_tokens: Cap on the sum of estimated tokens across blocks.
        max_context_characters: Optional cap on the sum of characters.
        max_chunks_per_source: Chunks merged into one block.
        max_sources: Blocks emitted.
        merge_strategy: "separate" is reserved for per-chunk citations and
            currently merges exactly like "concatenate".
    """
    max_context_tokens: int = 4000
    max_context_characters: Optional[int] = None
    max_chunks_per_source: int = 3
    max_sources: int = 5
    merge_strategy: MergeStrategy = "concatenate"


def group_by_source(chunks: Sequence[RetrievedChunk]) -> "OrderedDict[Tuple[str, str], List[RetrievedChunk]]":
    groups: "OrderedDict[Tuple[str, str], List[RetrievedChunk]]" = OrderedDict()
    for chunk in chunks:
        groups.setdefault(chunk.source_key, []).append(chunk)
    return groups


def _merge(chunks: Sequence[RetrievedChunk], strategy: MergeStrategy) -> str:
    # TODO: give "separate" per-chunk markers once evidence cites individual chunks
    texts = [c.content_text.strip() for c in chunks]
    return CHUNK_SEPARATOR.join(t for t in texts if t)


def build_context_blocks(
    chunks: Sequence[RetrievedChunk], options: Optional[ContextOptions] = None
) -> List[ContextBlock]:
    """Build ranked, budget-limited context blocks.

    Args:
        chunks: Retrieved chunks in any order.
        options: Budgets; defaults to ContextOptions().

    Returns:
        List[ContextBlock]: At most max_sources blocks, descending best similarity.
    """
    opts = options or ContextOptions()
    if opts.max_sources <= 0 or opts.max_chunks_per_source <= 0:
        return []

    ranked = []
    for key, group in group_by_source(chunks).items():
        ordered = sorted(group, key=lambda c: c.similarity, reverse=True)
        ranked.append((ordered[0].similarity, key, ordered))
    ranked.sort(key=lambda item: item[0], reverse=True)

    blocks: List[ContextBlock] = []
    total_chars = 0
    total_tokens = 0
    for best, (source_type, source_id), ordered in ranked[: opts.max_sources]:
        limited = ordered[: opts.max_chunks_per_source]
        content = _merge(limited, opts.merge_strategy)

        chars = len(content)
        tokens = estimate_tokens(content)
        if opts.max_context_characters is not None and total_chars + chars > opts.max_context_characters:
            break
        if total_tokens + tokens > opts.max_context_tokens:
            break

        head = limited[0].metadata
        blocks.append(
            ContextBlock(
                source_type=source_type,
                source_id=source_id,
                content=content,
                chunk_ids=[c.id for c in limited],
                chunk_indices=[c.chunk_index for c in limited],
                similarity=best,
                title=head.display_title,
                url=head.display_url,
                source_updated_at=head.source_updated_at,
            )
        )
        total_chars += chars
        total_tokens += tokens
    return blocks


def format_updated(value: Any) -> str:
    """Render a recency hint as YYYY-MM-DD; unparseable values pass through as text."""
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except (TypeError, AttributeError, ValueError):
        return str(value)


def format_context_blocks(blocks: Sequence[ContextBlock]) -> str:
    """Render blocks as `[Source N] Title: … | URL: … | Updated: …` sections."""
    if not blocks:
        return ""
    sections: List[str] = []
    for i, block in enumerate(blocks, start=1):
        parts = []
        if block.title:
            parts.append(f"Title: {block.title}")
        if block.url:
            parts.append(f"URL: {block.url}")
        if block.source_updated_at:
            parts.append(f"Updated: {format_updated(block.source_updated_at)}")
        header = f"[Source {i}] " + " | ".join(parts) if parts else f"[Source {i}]"
        sections.append(header + "\n" + block.content)
    return BLOCK_SEPARATOR.join(sections)


def context_stats(blocks: Sequence[ContextBlock]) -> Dict[str, int]:
    """Block count and estimated token/character totals, for logging."""
    return {
        "blocks": len(blocks),
        "chars": sum(len(b.content) for b in blocks),
        "tokens": sum(estimate_tokens(b.content) for b in blocks),
    }
