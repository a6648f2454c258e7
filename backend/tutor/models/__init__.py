"""SQLAlchemy ORM models."""

from tutor.models.course import Course
from tutor.models.lesson import Lesson, LessonResource
from tutor.models.pdf_text_cache import PdfTextCache
from tutor.models.thread import Thread, Message
from tutor.models.usage import UsageDaily, UsageMonthly
from tutor.models.analytics_daily import AnalyticsDaily

__all__ = [
    "Course",
    "Lesson",
    "LessonResource",
    "PdfTextCache",
    "Thread",
    "Message",
    "UsageDaily",
    "UsageMonthly",
    "AnalyticsDaily",
]
