"""Chunk selection under the per-request context budget.

Documents are fed in lesson order. For each one the selector ranks its
chunks, merges three candidate pools (definition hits, keyword hits, top
scores) and appends the winners to the context pack until the global chunk
or character budget runs out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from tutor.services.chunking import chunk_id, chunk_text
from tutor.services.scoring import (
    DefinitionQuery,
    detect_definition_query,
    extract_keywords,
    keyword_hits,
    score_chunk,
    score_definition_hit,
    tokenize_query,
)
from tutor.services.trace import RequestTrace

logger = logging.getLogger(__name__)

MAX_DOCUMENTS = 3
MAX_CHARS_TOTAL = 20000
MAX_CHARS_PER_CHUNK = 8000
MAX_CHUNKS_PER_DOCUMENT = 3
MAX_CHUNKS_TOTAL = 6
MAX_DEFINITION_PICKS = 2
MAX_KEYWORD_PICKS = 2


@dataclass(frozen=True)
class QueryProfile:
    """Everything about the question that ranking needs, computed once."""
    tokens: list[str]
    lower: str
    definition: DefinitionQuery
    keywords: list[str]

    @classmethod
    def from_message(cls, message: str) -> "QueryProfile":
        return cls(
            tokens=tokenize_query(message),
            lower=message.lower().strip(),
            definition=detect_definition_query(message),
            keywords=extract_keywords(message),
        )


@dataclass(frozen=True)
class ScoredChunk:
    index: int
    text: str
    score: int


@dataclass(frozen=True)
class SelectedChunk:
    chunk_id: str
    document_id: str
    index: int
    label: str
    excerpt: str


@dataclass
class CitationMeta:
    resource_id: str
    name: str
    excerpts: list[int]

    def to_dict(self) -> dict:
        return {"resourceId": self.resource_id, "name": self.name, "excerpts": self.excerpts}

    def page_range(self) -> Optional[dict]:
        if not self.excerpts:
            return None
        return {"from": self.excerpts[0] + 1, "to": self.excerpts[-1] + 1}


def pick_chunks(chunks: list[str], query: QueryProfile) -> list[ScoredChunk]:
    """Choose up to three chunks of one document, best first."""
    term = query.definition.term
    ranked = sorted(
        (
            ScoredChunk(i, chunk, score_chunk(chunk, query.tokens, query.lower) + score_definition_hit(chunk, term))
            for i, chunk in enumerate(chunks)
        ),
        key=lambda item: item.score,
        reverse=True,
    )

    definition_matches = []
    if query.definition.is_definition:
        definition_matches = [
            item for item in ranked if score_definition_hit(item.text, term) > 0
        ][:MAX_DEFINITION_PICKS]

    keyword_matches = []
    if query.keywords:
        hits = [
            ScoredChunk(i, chunk, keyword_hits(chunk, query.keywords))
            for i, chunk in enumerate(chunks)
        ]
        keyword_matches = sorted(
            (item for item in hits if item.score > 0),
            key=lambda item: item.score,
            reverse=True,
        )[:MAX_KEYWORD_PICKS]

    positive = [item for item in ranked if item.score > 0][:MAX_CHUNKS_PER_DOCUMENT]

    picked: list[ScoredChunk] = []
    seen: set[int] = set()
    for item in definition_matches + keyword_matches + positive:
        if item.index in seen:
            continue
        seen.add(item.index)
        picked.append(item)
    picked = picked[:MAX_CHUNKS_PER_DOCUMENT]

    if not picked:
        return ranked[:1]
    return picked


@dataclass
class ChunkSelector:
    query: QueryProfile
    chunk_size: int = 1000
    overlap: int = 200
    chunks: list[SelectedChunk] = field(default_factory=list)
    citation_meta: list[CitationMeta] = field(default_factory=list)
    context_parts: list[str] = field(default_factory=list)
    chars_used: int = 0
    attached_documents: int = 0

    @property
    def exhausted(self) -> bool:
        return self.chars_used >= MAX_CHARS_TOTAL or len(self.chunks) >= MAX_CHUNKS_TOTAL

    @property
    def chunk_ids(self) -> list[str]:
        return [c.chunk_id for c in self.chunks]

    @property
    def excerpt_texts(self) -> list[str]:
        return [c.excerpt for c in self.chunks]

    def _remaining_chars(self) -> int:
        return max(MAX_CHARS_TOTAL - self.chars_used, 0)

    def add_document(self, document_id: str, name: str, text: str, trace: RequestTrace) -> int:
        """Rank one document and attach its best chunks. Returns the number attached."""
        if not text or self.exhausted:
            return 0
        try:
            trace = trace.at("pdf:chunk").info(resourceId=document_id)
            chunks = chunk_text(text, self.chunk_size, self.overlap)
            trace = trace.at("pdf:rank").info(resourceId=document_id)
            picked = pick_chunks(chunks, self.query)
        except Exception as exc:  # unrankable text is attached raw
            trace.warn(code="pdf_rank_failed", message=str(exc))
            return self._attach_raw(name, text, trace, document_id)

        trace.at("pdf:select").info(resourceId=document_id, picked=len(picked))
        indices: list[int] = []
        for item in picked:
            if self.exhausted:
                break
            excerpt = item.text[: min(MAX_CHARS_PER_CHUNK, self._remaining_chars())]
            if not excerpt:
                continue
            cid = chunk_id(document_id, item.index)
            label = f"PDF: {name} (chunk {item.index + 1}/{len(chunks)}, id: {cid})"
            self.context_parts.append(f"{label}\n{excerpt}")
            self.chunks.append(SelectedChunk(cid, document_id, item.index, label, excerpt))
            self.chars_used += len(excerpt)
            indices.append(item.index)

        if indices:
            self.citation_meta.append(CitationMeta(document_id, name, sorted(set(indices))))
            self.attached_documents += 1
        return len(indices)

    def _attach_raw(self, name: str, text: str, trace: RequestTrace, document_id: str) -> int:
        """Fallback: the start of the document under a generic label, not citable."""
        excerpt = text[: min(MAX_CHARS_PER_CHUNK, self._remaining_chars())]
        if not excerpt:
            return 0
        trace.at("pdf:attach").info(resourceId=document_id)
        self.context_parts.append(f"PDF: {name}\n{excerpt}")
        self.chars_used += len(excerpt)
        self.attached_documents += 1
        return 0
