"""Daily tutoring analytics per (course, lesson-or-all, date)."""

from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Integer, Text, Index

from tutor.database import Base


class AnalyticsDaily(Base):
    __tablename__ = "ai_analytics_daily"
    __table_args__ = (
        Index("ix_ai_analytics_scope_date", "course_id", "lesson_id", "date"),
    )

    id = Column(String(200), primary_key=True)  # aiad_<courseId>_<lessonId|all>_<YYYY-MM-DD>
    course_id = Column(String(64), nullable=False)
    lesson_id = Column(String(64), nullable=True)  # NULL = course-wide record
    date = Column(String(10), nullable=False)
    total_requests = Column(Integer, nullable=False, default=0)
    by_mode = Column(Text, nullable=False, default="{}")
    by_outcome = Column(Text, nullable=False, default="{}")
    top_questions = Column(Text, nullable=False, default="[]")
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
