"""Lesson PDF discovery and the extracted-text cache.

A cache miss triggers extraction and writes the (truncated) text back. An
unreadable PDF is logged and treated as "no text", never as a request failure.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import unquote

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tutor.config import settings
from tutor.models.lesson import Lesson
from tutor.models.pdf_text_cache import PdfTextCache
from tutor.services.pdf_extract import extract_pdf_text
from tutor.services.trace import RequestTrace

Extractor = Callable[[str], "tuple[str, dict]"]

_STORAGE_OBJECT = re.compile(r"/o/([^?]+)")


@dataclass(frozen=True)
class SourceDocument:
    id: str
    name: str
    storage_path: str = ""
    download_url: str = ""
    content_type: str = ""


def _is_pdf_url(url: str) -> bool:
    return bool(url) and url.split("?")[0].lower().endswith(".pdf")


def is_pdf_resource(name: str, content_type: str, url: str) -> bool:
    if "pdf" in (content_type or "").lower():
        return True
    if _is_pdf_url(name) or _is_pdf_url(url):
        return True
    return "application/pdf" in (url or "").lower()


def storage_path_from_url(url: str) -> str:
    """``gs://bucket/a/b.pdf`` -> ``a/b.pdf``; ``.../o/a%2Fb.pdf?alt=media`` -> ``a/b.pdf``."""
    if not url:
        return ""
    if url.startswith("gs://"):
        return "/".join(url.split("/")[3:])
    match = _STORAGE_OBJECT.search(url)
    if not match:
        return ""
    return unquote(match.group(1))


def document_id_for(resource_id: Optional[str], storage_path: str, url: str, name: str) -> str:
    if resource_id:
        return resource_id
    return hashlib.sha1((storage_path or url or name).encode("utf-8")).hexdigest()


def lesson_pdf_documents(lesson: Optional[Lesson]) -> list[SourceDocument]:
    """PDF resources of a lesson in attachment order, duplicates dropped."""
    if lesson is None:
        return []

    candidates: list[dict] = [
        {
            "id": r.id,
            "name": r.name,
            "storage_path": r.storage_path,
            "url": r.download_url,
            "content_type": r.content_type,
        }
        for r in lesson.resources
    ]
    for attachment in json.loads(lesson.attachments or "[]"):
        if isinstance(attachment, dict):
            candidates.append({"name": attachment.get("name"), "url": attachment.get("url")})

    documents: list[SourceDocument] = []
    seen: set[str] = set()
    for raw in candidates:
        name = raw.get("name") or "PDF"
        url = raw.get("url") or ""
        content_type = raw.get("content_type") or ""
        if not is_pdf_resource(name, content_type, url):
            continue
        storage_path = raw.get("storage_path") or storage_path_from_url(url)
        key = raw.get("id") or storage_path or url or name
        if key in seen:
            continue
        seen.add(key)
        documents.append(SourceDocument(
            id=document_id_for(raw.get("id"), storage_path, url, name),
            name=name,
            storage_path=storage_path,
            download_url=url,
            content_type=content_type,
        ))
    return documents


# ── Cache store ──────────────────────────────────────────────────────────────

def get_cached_text(db: Session, document_id: str) -> Optional[str]:
    entry = db.get(PdfTextCache, document_id)
    if entry is None or not entry.text:
        return None
    return entry.text


def get_cached_entry(db: Session, document_id: str) -> Optional[PdfTextCache]:
    return db.get(PdfTextCache, document_id)


def put_cached_text(db: Session, document_id: str, text: str, metadata: dict) -> PdfTextCache:
    """Create or overwrite the cache entry, truncated to PDF_CACHE_MAX_CHARS."""
    entry = db.get(PdfTextCache, document_id)
    if entry is None:
        entry = PdfTextCache(id=document_id)
        db.add(entry)
    entry.text = text[: settings.PDF_CACHE_MAX_CHARS]
    entry.name = metadata.get("name")
    entry.storage_path = metadata.get("storagePath")
    entry.content_type = metadata.get("contentType")
    entry.size = metadata.get("size")
    entry.generation = metadata.get("generation")
    entry.updated_at = datetime.now(timezone.utc)
    db.commit()
    return entry


def load_document_text(
    db: Session,
    document: SourceDocument,
    trace: RequestTrace,
    extractor: Optional[Extractor] = None,
) -> str:
    """Cached text for a document, extracting on a miss. "" when unavailable."""
    extractor = extractor or extract_pdf_text
    cached = ""
    trace = trace.at("pdf:cache:read").info(resourceId=document.id)
    try:
        cached = get_cached_text(db, document.id) or ""
    except SQLAlchemyError as e:
        db.rollback()
        trace.warn(code="pdf_cache_read_failed", message=str(e))

    if cached or not document.storage_path:
        return cached

    trace = trace.at("pdf:extract").info(resourceId=document.id)
    try:
        text, metadata = extractor(document.storage_path)
        trace.info(resourceId=document.id, bytes=metadata.get("size"), textLen=len(text or ""))
        trace = trace.at("pdf:cache:write").info(resourceId=document.id)
        put_cached_text(db, document.id, text or "", {
            "name": document.name,
            "storagePath": document.storage_path,
            "contentType": metadata.get("contentType") or document.content_type or None,
            "size": metadata.get("size"),
            "generation": metadata.get("generation"),
        })
        return text or ""
    except (RuntimeError, ValueError, OSError, SQLAlchemyError) as e:
        db.rollback()
        trace.warn(code="pdf_extract_failed", message=str(e))
        return ""
