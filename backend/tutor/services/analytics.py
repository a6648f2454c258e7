"""Daily tutoring analytics: per-turn merge and the teacher-facing rollup."""

import json
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tutor.errors import DependencyError
from tutor.models.analytics_daily import AnalyticsDaily
from tutor.services.detectors import normalize_question, question_hash
from tutor.services.trace import RequestTrace

TOP_QUESTIONS_LIMIT = 20
EXAMPLE_MAX_CHARS = 80
DEFAULT_DAYS = 14
MAX_DAYS = 60
WRITE_ATTEMPTS = 3


def analytics_doc_id(course_id: str, lesson_id: Optional[str], day: str) -> str:
    return f"aiad_{course_id}_{lesson_id or 'all'}_{day}"


def _rank_questions(questions: list[dict]) -> list[dict]:
    ordered = sorted(
        questions,
        key=lambda q: (q.get("count", 0), q.get("lastSeenAt") or ""),
        reverse=True,
    )
    return ordered[:TOP_QUESTIONS_LIMIT]


def merge_payload(
    current: dict,
    *,
    mode: str,
    outcome: str,
    q_hash: str,
    example: str,
    now: datetime,
) -> dict:
    """Fold one turn into a daily record's counters and top-question list.

    ``current`` holds totalRequests, byMode, byOutcome and topQuestions (any
    of them may be missing). Returns a new dict; ``current`` is not modified.
    """
    by_mode = dict(current.get("byMode") or {})
    by_mode[mode] = by_mode.get(mode, 0) + 1
    by_outcome = dict(current.get("byOutcome") or {})
    by_outcome[outcome] = by_outcome.get(outcome, 0) + 1

    seen_at = now.isoformat()
    questions = [dict(q) for q in current.get("topQuestions") or []]
    for q in questions:
        if q.get("qHash") == q_hash:
            q["count"] = q.get("count", 0) + 1
            q["lastSeenAt"] = seen_at
            break
    else:
        questions.append({"qHash": q_hash, "exampleTruncated": example, "count": 1, "lastSeenAt": seen_at})

    return {
        "totalRequests": (current.get("totalRequests") or 0) + 1,
        "byMode": by_mode,
        "byOutcome": by_outcome,
        "topQuestions": _rank_questions(questions),
    }


def _row_payload(row: AnalyticsDaily) -> dict:
    return {
        "totalRequests": row.total_requests,
        "byMode": json.loads(row.by_mode or "{}"),
        "byOutcome": json.loads(row.by_outcome or "{}"),
        "topQuestions": json.loads(row.top_questions or "[]"),
    }


def _merge_row(db: Session, course_id: str, lesson_id: Optional[str], day: str, now: datetime, **turn) -> None:
    doc_id = analytics_doc_id(course_id, lesson_id, day)
    row = db.query(AnalyticsDaily).filter(AnalyticsDaily.id == doc_id).with_for_update().first()
    if row is None:
        row = AnalyticsDaily(id=doc_id, course_id=course_id, lesson_id=lesson_id, date=day, total_requests=0)
        db.add(row)
        current: dict = {}
    else:
        current = _row_payload(row)

    merged = merge_payload(current, now=now, **turn)
    row.total_requests = merged["totalRequests"]
    row.by_mode = json.dumps(merged["byMode"])
    row.by_outcome = json.dumps(merged["byOutcome"])
    row.top_questions = json.dumps(merged["topQuestions"], ensure_ascii=False)
    row.updated_at = now


def record_turn(
    db: Session,
    *,
    course_id: str,
    lesson_id: Optional[str],
    mode: str,
    outcome: str,
    message: str,
    now: datetime,
    trace: RequestTrace,
) -> bool:
    """Merge a finished turn into the lesson record and the course-wide record.

    Failures are logged and swallowed; the turn itself is already committed.
    """
    trace = trace.at("analytics:write").info(outcome=outcome)
    normalized = normalize_question(message)
    turn = {
        "mode": mode,
        "outcome": outcome,
        "q_hash": question_hash(normalized),
        "example": normalized[:EXAMPLE_MAX_CHARS],
    }
    course_id = course_id or "unknown"
    day = now.strftime("%Y-%m-%d")
    for attempt in range(1, WRITE_ATTEMPTS + 1):
        try:
            if lesson_id:
                _merge_row(db, course_id, lesson_id, day, now, **turn)
            _merge_row(db, course_id, None, day, now, **turn)
            db.commit()
            return True
        except IntegrityError as e:
            # another turn created the day's record first; merge into it
            db.rollback()
            if attempt == WRITE_ATTEMPTS:
                trace.warn(code="analytics_write_failed", message=str(e))
        except SQLAlchemyError as e:
            db.rollback()
            trace.warn(code="analytics_write_failed", message=str(e))
            return False
    return False


# ── Rollup ───────────────────────────────────────────────────────────────────

def clamp_days(raw) -> int:
    try:
        days = int(raw) if raw not in (None, "") else DEFAULT_DAYS
    except (TypeError, ValueError):
        days = DEFAULT_DAYS
    return min(max(days, 1), MAX_DAYS)


def date_window(days: int, today: date) -> list[str]:
    start = today - timedelta(days=days - 1)
    return [(start + timedelta(days=i)).isoformat() for i in range(days)]


def aggregate(db: Session, course_id: str, lesson_id: str, days: int, today: date, trace: RequestTrace) -> dict:
    """Sum the daily records of one scope over the last ``days`` UTC dates."""
    scope = "lesson" if lesson_id else "course"
    trace = trace.at(f"analytics:read:{scope}").info()
    doc_ids = [analytics_doc_id(course_id, lesson_id or None, day) for day in date_window(days, today)]
    try:
        rows = db.query(AnalyticsDaily).filter(AnalyticsDaily.id.in_(doc_ids)).all()
    except SQLAlchemyError as e:
        raise trace.fail(DependencyError, "analytics_read_failed", "Failed to load analytics.", str(e)) from e

    trace.at("analytics:aggregate").info(docs=len(rows))
    total = 0
    by_mode: dict = {}
    by_outcome: dict = {}
    questions: dict = {}
    for row in rows:
        payload = _row_payload(row)
        total += payload["totalRequests"] or 0
        for key, count in payload["byMode"].items():
            by_mode[key] = by_mode.get(key, 0) + count
        for key, count in payload["byOutcome"].items():
            by_outcome[key] = by_outcome.get(key, 0) + count
        for q in payload["topQuestions"]:
            q_hash = q.get("qHash")
            if not q_hash:
                continue
            prev = questions.get(q_hash)
            if prev is None:
                questions[q_hash] = {
                    "qHash": q_hash,
                    "exampleTruncated": q.get("exampleTruncated", ""),
                    "count": q.get("count", 0),
                    "lastSeenAt": q.get("lastSeenAt"),
                }
            else:
                prev["count"] += q.get("count", 0)
                prev["lastSeenAt"] = max(prev["lastSeenAt"] or "", q.get("lastSeenAt") or "") or None

    unsupported = by_outcome.get("unsupported", 0) + by_outcome.get("policy_refusal", 0)
    return {
        "ok": True,
        "courseId": course_id,
        "lessonId": lesson_id or None,
        "scope": scope,
        "days": days,
        "totals": {"totalRequests": total},
        "byMode": by_mode,
        "byOutcome": by_outcome,
        "unsupportedRate": int(unsupported * 100 / total + 0.5) if total else 0,
        "topQuestions": _rank_questions(list(questions.values())),
    }
