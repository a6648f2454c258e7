"""Teacher analytics router: tutoring usage for a course or lesson."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tutor.database import get_db
from tutor.errors import InputError
from tutor.middleware.auth import CurrentUser, get_trace, require_teacher
from tutor.schemas.analytics import AnalyticsResponse
from tutor.services.analytics import aggregate, clamp_days
from tutor.services.trace import RequestTrace

router = APIRouter(prefix="/api/teacher", tags=["analytics"])


@router.get("/ai-analytics", response_model=AnalyticsResponse)
def get_ai_analytics(
    course_id: str = Query("", alias="courseId"),
    lesson_id: str = Query("", alias="lessonId"),
    days: str = Query(""),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
    trace: RequestTrace = Depends(get_trace),
):
    """Totals, mode/outcome breakdowns and top questions over the last N days.

    ``days`` is clamped to 1..60 (default 14). Without ``lessonId`` the
    course-wide records are summed.
    """
    if not course_id:
        raise trace.at("req:parse").fail(InputError, "missing_course_id", "courseId is required.")
    today = datetime.now(timezone.utc).date()
    return aggregate(db, course_id, lesson_id, clamp_days(days), today, trace)
