"""Threads router: list, read, rename and delete a user's chat threads."""

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from tutor.database import get_db
from tutor.errors import InputError
from tutor.middleware.auth import CurrentUser, get_current_user, get_trace
from tutor.schemas.threads import (
    MessageOut,
    ThreadDetailResponse,
    ThreadListResponse,
    ThreadOut,
    ThreadRenameRequest,
)
from tutor.services import ledger
from tutor.services.trace import RequestTrace

router = APIRouter(prefix="/api/ai/threads", tags=["threads"])


@router.get("", response_model=ThreadListResponse)
def list_threads(
    course_id: str = Query("", alias="courseId"),
    lesson_id: str = Query("", alias="lessonId"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    trace: RequestTrace = Depends(get_trace),
):
    """The caller's most recently updated threads for one course/lesson."""
    threads = ledger.list_threads(db, current_user.id, course_id, lesson_id, trace)
    return ThreadListResponse(threads=[ThreadOut.model_validate(t) for t in threads])


@router.get("/{thread_id}", response_model=ThreadDetailResponse)
def get_thread(
    thread_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    trace: RequestTrace = Depends(get_trace),
):
    thread = ledger.get_owned_thread(db, thread_id.strip(), current_user.id, trace)
    messages = ledger.thread_messages(db, thread)
    return ThreadDetailResponse(
        thread=ThreadOut.model_validate(thread),
        messages=[MessageOut.model_validate(m) for m in messages],
    )


@router.patch("/{thread_id}", response_model=ThreadOut)
async def rename_thread(
    thread_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    trace: RequestTrace = Depends(get_trace),
):
    try:
        body = ThreadRenameRequest.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        raise trace.at("req:validate").fail(InputError, "invalid_body", "Title is required.", str(e)) from e
    if not body.title.strip():
        raise trace.at("req:validate").fail(InputError, "invalid_body", "Title is required.")

    thread = ledger.get_owned_thread(db, thread_id.strip(), current_user.id, trace)
    return ThreadOut.model_validate(ledger.rename_thread(db, thread, body.title, trace))


@router.delete("/{thread_id}")
def delete_thread(
    thread_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    trace: RequestTrace = Depends(get_trace),
):
    thread = ledger.get_owned_thread(db, thread_id.strip(), current_user.id, trace)
    ledger.delete_thread(db, thread, trace)
    return {"ok": True, "threadId": thread_id}
