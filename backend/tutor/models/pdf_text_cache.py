"""Extracted PDF text, cached per document id so PDFs are parsed once."""

from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Text, Integer

from tutor.database import Base


class PdfTextCache(Base):
    __tablename__ = "pdf_text_cache"

    id = Column(String(64), primary_key=True)  # document id
    text = Column(Text, nullable=False, default="")
    name = Column(String(255), nullable=True)
    storage_path = Column(Text, nullable=True)
    content_type = Column(String(100), nullable=True)
    size = Column(Integer, nullable=True)
    generation = Column(String(64), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
