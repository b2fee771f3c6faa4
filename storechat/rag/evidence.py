"""Evidence (citation) records for answers.

- build_evidence: 1:1 from context blocks, keeping their (already score-descending) order.
- build_evidence_from_chunks: straight from retrieved chunks, grouped per source and
  explicitly sorted by score descending, so both paths order the same way. Title
  and URL come from the best-scoring chunk of each source, as in the context builder.
"""
from typing import List, Sequence

from storechat.rag.context import group_by_source
from storechat.rag.types import ContextBlock, EvidenceItem, RetrievedChunk


def build_evidence(blocks: Sequence[ContextBlock]) -> List[EvidenceItem]:
    return [
        EvidenceItem(
            source_type=b.source_type,
            source_id=b.source_id,
            chunk_ids=list(b.chunk_ids),
            score=b.similarity,
            title=b.title,
            url=b.url,
            source_updated_at=b.source_updated_at,
        )
        for b in blocks
    ]


def build_evidence_from_chunks(chunks: Sequence[RetrievedChunk]) -> List[EvidenceItem]:
    evidence: List[EvidenceItem] = []
    for (source_type, source_id), group in group_by_source(chunks).items():
        meta = max(group, key=lambda c: c.similarity).metadata
        evidence.append(
            EvidenceItem(
                source_type=source_type,
                source_id=source_id,
                chunk_ids=[c.id for c in group],
                score=max(c.similarity for c in group),
                title=meta.display_title,
                url=meta.display_url,
                source_updated_at=meta.source_updated_at,
            )
        )
    evidence.sort(key=lambda e: e.score, reverse=True)
    return evidence
