"""Quota counters, thread resolution and the atomic per-turn write.

Everything a turn persists (both usage counters, the user and assistant
messages, the thread bump, and the thread itself when it is new) goes into one
session and one commit. A failed commit leaves no trace of the turn.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tutor.config import settings
from tutor.errors import (
    DependencyError,
    ForbiddenError,
    MissingIndexError,
    NotFoundError,
    QuotaExceededError,
    is_missing_index,
)
from tutor.models.thread import Message, Thread
from tutor.models.usage import UsageDaily, UsageMonthly
from tutor.services.trace import RequestTrace

HISTORY_LIMIT = 10
THREAD_LIST_LIMIT = 10
THREAD_MESSAGES_LIMIT = 30
THREAD_TITLE_MAX = 60
DEFAULT_THREAD_TITLE = "Lesson chat"
WRITE_ATTEMPTS = 3

_MISSING_INDEX_DETAIL = "Create the ai_threads index on (user_id, course_id, lesson_id, updated_at)."


def date_key(now: datetime) -> str:
    return now.strftime("%Y%m%d")


def month_key(now: datetime) -> str:
    return now.strftime("%Y%m")


# ── Quota ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class QuotaSnapshot:
    daily_count: int
    monthly_tokens: int

    def remaining(self) -> dict:
        return {
            "dailyMessagesLeft": max(settings.DAILY_MESSAGE_LIMIT - self.daily_count, 0),
            "monthlyTokensLeft": max(settings.MONTHLY_TOKEN_LIMIT - self.monthly_tokens, 0),
        }


def read_quota(db: Session, user_id: str, now: datetime, trace: RequestTrace) -> QuotaSnapshot:
    trace = trace.at("quota:read").info()
    try:
        daily = db.get(UsageDaily, f"{user_id}_{date_key(now)}")
        monthly = db.get(UsageMonthly, f"{user_id}_{month_key(now)}")
    except SQLAlchemyError as e:
        raise trace.fail(DependencyError, "quota_read_failed", "Failed to read quota.", str(e)) from e
    return QuotaSnapshot(
        daily_count=daily.count if daily else 0,
        monthly_tokens=monthly.tokens_used if monthly else 0,
    )


def enforce_quota(snapshot: QuotaSnapshot, trace: RequestTrace) -> None:
    trace = trace.at("quota:read")
    if snapshot.daily_count >= settings.DAILY_MESSAGE_LIMIT:
        raise trace.fail(QuotaExceededError, "daily_limit", "Daily quota exceeded.")
    if snapshot.monthly_tokens >= settings.MONTHLY_TOKEN_LIMIT:
        raise trace.fail(QuotaExceededError, "monthly_limit", "Monthly quota exceeded.")


# ── Threads ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ResolvedThread:
    id: str
    is_new: bool = False


def _missing_index_error(trace: RequestTrace):
    return trace.fail(
        MissingIndexError, "missing_index", "Thread query requires an index.", _MISSING_INDEX_DETAIL
    )


def scope_threads(db: Session, user_id: str, course_id: str, lesson_id: str):
    """The user's threads for one course/lesson, most recently updated first."""
    return (
        db.query(Thread)
        .filter(
            Thread.user_id == user_id,
            Thread.course_id == course_id,
            Thread.lesson_id == lesson_id,
        )
        .order_by(Thread.updated_at.desc())
    )


def resolve_thread(
    db: Session,
    user_id: str,
    course_id: str,
    lesson_id: str,
    thread_id: Optional[str],
    new_thread: bool,
    trace: RequestTrace,
) -> ResolvedThread:
    """Pick the thread this turn belongs to. New threads are only inserted by commit_turn."""
    trace = trace.at("threads:read").info()
    thread_id = (thread_id or "").strip()
    try:
        if thread_id:
            existing = db.get(Thread, thread_id)
            if existing is None or existing.user_id != user_id:
                raise trace.fail(ForbiddenError, "forbidden", "Thread does not belong to user.")
            return ResolvedThread(existing.id)

        if not new_thread:
            latest = scope_threads(db, user_id, course_id, lesson_id).first()
            if latest is not None:
                return ResolvedThread(latest.id)
    except SQLAlchemyError as e:
        if is_missing_index(e):
            raise _missing_index_error(trace) from e
        raise trace.fail(DependencyError, "threads_read_failed", "Failed to load threads.", str(e)) from e

    return ResolvedThread(str(uuid.uuid4()), is_new=True)


def find_replay(db: Session, thread: ResolvedThread, client_request_id: str, trace: RequestTrace) -> Optional[Message]:
    """The stored assistant reply for a retried request, if there is one."""
    if not client_request_id or thread.is_new:
        return None
    trace = trace.at("chat:dedupe")
    try:
        stored = db.get(Message, (thread.id, f"a_{client_request_id}"))
    except SQLAlchemyError as e:
        trace.warn(code="dedupe_check_failed", message=str(e))
        return None
    if stored is not None:
        trace.info(status="duplicate")
    return stored


def load_history(db: Session, thread: ResolvedThread, trace: RequestTrace) -> list[dict]:
    """Last HISTORY_LIMIT messages of the thread, oldest first."""
    if thread.is_new:
        return []
    trace = trace.at("threads:history")
    try:
        recent = (
            db.query(Message)
            .filter(Message.thread_id == thread.id)
            .order_by(Message.seq.desc())
            .limit(HISTORY_LIMIT)
            .all()
        )
    except SQLAlchemyError as e:
        raise trace.fail(DependencyError, "threads_read_failed", "Failed to load thread history.", str(e)) from e
    return [{"role": m.role, "content": m.content} for m in reversed(recent)]


def list_threads(db: Session, user_id: str, course_id: str, lesson_id: str, trace: RequestTrace) -> list[Thread]:
    trace = trace.at("threads:read").info()
    try:
        return scope_threads(db, user_id, course_id, lesson_id).limit(THREAD_LIST_LIMIT).all()
    except SQLAlchemyError as e:
        if is_missing_index(e):
            raise _missing_index_error(trace) from e
        raise trace.fail(DependencyError, "threads_read_failed", "Failed to load threads.", str(e)) from e


def get_owned_thread(db: Session, thread_id: str, user_id: str, trace: RequestTrace) -> Thread:
    trace = trace.at("threads:read").info()
    try:
        thread = db.get(Thread, thread_id)
    except SQLAlchemyError as e:
        raise trace.fail(DependencyError, "threads_read_failed", "Failed to load thread.", str(e)) from e
    if thread is None:
        raise trace.fail(NotFoundError, "thread_not_found", "Thread not found.")
    if thread.user_id != user_id:
        raise trace.fail(ForbiddenError, "forbidden_thread_access", "Thread does not belong to user.")
    return thread


def thread_messages(db: Session, thread: Thread) -> list[Message]:
    return (
        db.query(Message)
        .filter(Message.thread_id == thread.id)
        .order_by(Message.seq.asc())
        .limit(THREAD_MESSAGES_LIMIT)
        .all()
    )


def rename_thread(db: Session, thread: Thread, title: str, trace: RequestTrace) -> Thread:
    trace = trace.at("threads:write").info()
    thread.title = title.strip()[:THREAD_TITLE_MAX]
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise trace.fail(DependencyError, "threads_write_failed", "Failed to update thread.", str(e)) from e
    db.refresh(thread)
    return thread


def delete_thread(db: Session, thread: Thread, trace: RequestTrace) -> None:
    trace = trace.at("threads:delete").info()
    try:
        db.delete(thread)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise trace.fail(DependencyError, "threads_write_failed", "Failed to delete thread.", str(e)) from e


# ── Turn write ───────────────────────────────────────────────────────────────

@dataclass
class AssistantTurn:
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    sources: list = field(default_factory=list)
    citations: list = field(default_factory=list)
    citation_meta: list = field(default_factory=list)
    mode: str = "lesson"
    policy_applied: dict = field(default_factory=dict)
    confidence: Optional[str] = None
    needs_more_context: Optional[bool] = None
    clarifying_question: Optional[str] = None
    pdf_unreadable: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ConcurrentDuplicate(Exception):
    """Another request with the same client request id committed first."""

    def __init__(self, stored: Message):
        super().__init__(stored.id)
        self.stored = stored


def _locked_usage(db: Session, model, key: str, **defaults):
    row = db.query(model).filter(model.id == key).with_for_update().first()
    if row is None:
        row = model(id=key, **defaults)
        db.add(row)
    return row


def _apply_turn(
    db: Session,
    *,
    user_id: str,
    course_id: str,
    lesson_id: str,
    thread: ResolvedThread,
    client_request_id: str,
    user_message: str,
    reply: AssistantTurn,
    now: datetime,
) -> QuotaSnapshot:
    daily = _locked_usage(db, UsageDaily, f"{user_id}_{date_key(now)}", user_id=user_id, date=date_key(now), count=0)
    monthly = _locked_usage(db, UsageMonthly, f"{user_id}_{month_key(now)}", user_id=user_id, month=month_key(now), tokens_used=0)
    daily.count = (daily.count or 0) + 1
    daily.updated_at = now
    monthly.tokens_used = (monthly.tokens_used or 0) + reply.total_tokens
    monthly.updated_at = now

    if thread.is_new:
        row = Thread(
            id=thread.id,
            user_id=user_id,
            course_id=course_id,
            lesson_id=lesson_id,
            title=DEFAULT_THREAD_TITLE,
            message_count=0,
            created_at=now,
        )
        db.add(row)
    else:
        row = db.query(Thread).filter(Thread.id == thread.id).with_for_update().one()

    seq = row.message_count or 0
    user_suffix = client_request_id or uuid.uuid4().hex
    assistant_suffix = client_request_id or uuid.uuid4().hex
    db.add(Message(
        thread_id=thread.id,
        id=f"u_{user_suffix}",
        seq=seq + 1,
        role="user",
        content=user_message,
        user_id=user_id,
        course_id=course_id,
        lesson_id=lesson_id,
        created_at=now,
    ))
    db.add(Message(
        thread_id=thread.id,
        id=f"a_{assistant_suffix}",
        seq=seq + 2,
        role="assistant",
        content=reply.content,
        user_id=user_id,
        course_id=course_id,
        lesson_id=lesson_id,
        created_at=now,
        model=reply.model or None,
        input_tokens=reply.input_tokens,
        output_tokens=reply.output_tokens,
        total_tokens=reply.total_tokens,
        sources=json.dumps(reply.sources),
        citations=json.dumps(reply.citations),
        citation_meta=json.dumps(reply.citation_meta),
        mode=reply.mode,
        policy_applied=json.dumps(reply.policy_applied),
        confidence=reply.confidence,
        needs_more_context=reply.needs_more_context,
        clarifying_question=reply.clarifying_question,
        pdf_unreadable=reply.pdf_unreadable,
    ))
    row.message_count = seq + 2
    row.updated_at = now
    row.last_message_at = now

    db.commit()
    return QuotaSnapshot(daily_count=daily.count, monthly_tokens=monthly.tokens_used)


def commit_turn(
    db: Session,
    *,
    user_id: str,
    course_id: str,
    lesson_id: str,
    thread: ResolvedThread,
    client_request_id: str,
    user_message: str,
    reply: AssistantTurn,
    now: datetime,
    trace: RequestTrace,
) -> QuotaSnapshot:
    """Apply the whole turn in one commit and return the counters after it.

    Two first turns of a day (or month) can both try to insert the counter
    row. The loser rolls back and runs the turn again against the row the
    winner created, so every committed turn is counted once.
    """
    trace = trace.at("quota:write").info()
    for attempt in range(1, WRITE_ATTEMPTS + 1):
        try:
            return _apply_turn(
                db,
                user_id=user_id,
                course_id=course_id,
                lesson_id=lesson_id,
                thread=thread,
                client_request_id=client_request_id,
                user_message=user_message,
                reply=reply,
                now=now,
            )
        except IntegrityError as e:
            db.rollback()
            stored = db.get(Message, (thread.id, f"a_{client_request_id}")) if client_request_id else None
            if stored is not None:
                trace.warn(code="duplicate_turn", threadId=thread.id)
                raise ConcurrentDuplicate(stored) from e
            if attempt == WRITE_ATTEMPTS:
                raise trace.fail(DependencyError, "quota_write_failed", "Failed to write quota.", str(e)) from e
            trace.warn(code="quota_write_retry", attempt=attempt)
        except SQLAlchemyError as e:
            db.rollback()
            raise trace.fail(DependencyError, "quota_write_failed", "Failed to write quota.", str(e)) from e
