"""Course model: bilingual course metadata plus its AI tutoring policy."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.orm import relationship

from tutor.database import Base


class Course(Base):
    __tablename__ = "courses"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    title_en = Column(String(255), nullable=True)
    title_kz = Column(String(255), nullable=True)
    description_en = Column(Text, nullable=True)
    description_kz = Column(Text, nullable=True)
    objectives_en = Column(Text, nullable=True)
    objectives_kz = Column(Text, nullable=True)
    syllabus_en = Column(Text, nullable=True)
    syllabus_kz = Column(Text, nullable=True)
    ai_policy = Column(Text, nullable=True)  # JSON: defaultMode, allowDirectAnswers, ...
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    lessons = relationship("Lesson", back_populates="course", cascade="all, delete-orphan")
