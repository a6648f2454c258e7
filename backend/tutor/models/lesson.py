"""Lesson and LessonResource models: the tutoring scope and its attached files."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Integer
from sqlalchemy.orm import relationship

from tutor.database import Base


class Lesson(Base):
    __tablename__ = "lessons"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    course_id = Column(String(64), ForeignKey("courses.id"), nullable=True)
    type = Column(String(20), nullable=False, default="text")  # video | text | quiz | live
    title_en = Column(String(255), nullable=True)
    title_kz = Column(String(255), nullable=True)
    ai_context = Column(Text, nullable=True)   # JSON: {"en": "...", "kz": "..."}
    ai_policy = Column(Text, nullable=True)    # JSON, overrides the course policy
    attachments = Column(Text, nullable=True)  # JSON: [{"name": ..., "url": ...}]
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    # Relationships
    course = relationship("Course", back_populates="lessons")
    resources = relationship(
        "LessonResource",
        back_populates="lesson",
        cascade="all, delete-orphan",
        order_by="LessonResource.position",
    )


class LessonResource(Base):
    __tablename__ = "lesson_resources"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    lesson_id = Column(String(64), ForeignKey("lessons.id"), nullable=False)
    name = Column(String(255), nullable=True)
    storage_path = Column(Text, nullable=True)
    download_url = Column(Text, nullable=True)
    content_type = Column(String(100), nullable=True)
    position = Column(Integer, nullable=False, default=0)

    lesson = relationship("Lesson", back_populates="resources")
