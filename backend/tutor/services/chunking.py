"""Fixed-window chunking of extracted lesson text.

Chunk indices are part of the citation id (``<docId>#<index>``), so the same
text must always split the same way.
"""

import re

_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[str]:
    """Split text into overlapping windows advancing by ``chunk_size - overlap``.

    The last window is clipped to the end of the text. Empty or
    whitespace-only input yields no chunks.
    """
    clean = normalize_whitespace(text)
    if not clean:
        return []

    step = max(chunk_size - overlap, 1)
    chunks = []
    start = 0
    while start < len(clean):
        end = min(start + chunk_size, len(clean))
        chunks.append(clean[start:end].strip())
        if end >= len(clean):
            break
        start += step
    return chunks


def chunk_id(document_id: str, index: int) -> str:
    return f"{document_id}#{index}"


def parse_chunk_id(value: str) -> tuple[str, int]:
    """Split ``<docId>#<index>``. Raises ValueError on malformed ids."""
    value = (value or "").strip()
    hash_index = value.rfind("#")
    if hash_index <= 0:
        raise ValueError("Citation id must look like <documentId>#<index>")
    document_id = value[:hash_index]
    index_str = value[hash_index + 1:]
    if not index_str.isdigit():
        raise ValueError("Citation index must be a non-negative integer")
    return document_id, int(index_str)
