"""Text extraction for lesson PDFs kept in the storage directory."""

from pathlib import Path

import pdfplumber

from tutor.config import settings


def _resolve_storage_path(storage_path: str) -> Path:
    root = Path(settings.STORAGE_DIR).resolve()
    path = (root / storage_path.lstrip("/")).resolve()
    if root != path and root not in path.parents:
        raise ValueError(f"Storage path escapes storage root: {storage_path}")
    return path


def extract_pdf_text(storage_path: str, max_pages: int | None = None) -> tuple[str, dict]:
    """Extract text from the first ``max_pages`` pages of a stored PDF.

    Returns:
        (text, metadata) where metadata has size, contentType and generation.
    Raises:
        RuntimeError when the file is missing, corrupt, or not a PDF.
    """
    max_pages = max_pages or settings.PDF_MAX_PAGES
    path = _resolve_storage_path(storage_path)
    try:
        stat = path.stat()
        text_parts = []
        with pdfplumber.open(path) as pdf:
            for page in pdf.pages[:max_pages]:
                page_text = page.extract_text()
                if page_text:
                    text_parts.append(page_text)
    except Exception as e:
        raise RuntimeError(f"PDF extraction failed: {e}") from e

    metadata = {
        "size": stat.st_size,
        "contentType": "application/pdf",
        "generation": str(stat.st_mtime_ns),
    }
    return "\n\n".join(text_parts).strip(), metadata
