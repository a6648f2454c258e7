"""Citations router: resolve a ``<docId>#<index>`` id back to its text."""

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tutor.config import settings
from tutor.database import get_db
from tutor.errors import DependencyError, InputError, NotFoundError
from tutor.middleware.auth import CurrentUser, get_current_user, get_trace
from tutor.schemas.citations import CitationResponse
from tutor.services.chunking import chunk_text, parse_chunk_id
from tutor.services.pdf_cache import get_cached_entry
from tutor.services.trace import RequestTrace

router = APIRouter(prefix="/api/ai/citations", tags=["citations"])

SNIPPET_WORDS = 25


def first_words(text: str, limit: int = SNIPPET_WORDS) -> str:
    return " ".join(text.split()[:limit])


@router.get("/{citation_id}", response_model=CitationResponse)
def get_citation(
    citation_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    trace: RequestTrace = Depends(get_trace),
):
    """Re-chunk the cached text and return the start of the cited chunk."""
    try:
        resource_id, chunk_index = parse_chunk_id(citation_id)
    except ValueError as e:
        raise trace.at("req:validate").fail(InputError, "invalid_citation_id", "Invalid citationId.", str(e)) from e

    trace = trace.at("citations:read").info(resourceId=resource_id)
    try:
        entry = get_cached_entry(db, resource_id)
    except SQLAlchemyError as e:
        raise trace.fail(DependencyError, "citation_read_failed", "Failed to load citation.", str(e)) from e
    if entry is None or not entry.text:
        raise trace.fail(NotFoundError, "citation_not_found", "Citation not found.")

    trace = trace.at("citations:chunk").info(resourceId=resource_id, chunkIndex=chunk_index)
    chunks = chunk_text(entry.text, settings.RAG_CHUNK_SIZE, settings.RAG_CHUNK_OVERLAP)
    if chunk_index >= len(chunks):
        raise trace.fail(NotFoundError, "citation_not_found", "Citation not found.")

    return CitationResponse(
        resource_id=resource_id,
        name=entry.name or "PDF",
        citation_id=citation_id.strip(),
        snippet=first_words(chunks[chunk_index]),
        chunk_index=chunk_index,
    )
