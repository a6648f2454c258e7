"""Chat router: the tutoring endpoint."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from tutor.database import get_db
from tutor.errors import InputError
from tutor.middleware.auth import CurrentUser, get_current_user, get_trace
from tutor.schemas.chat import ChatRequest
from tutor.services.trace import RequestTrace
from tutor.services.tutor_pipeline import run_chat

router = APIRouter(prefix="/api/ai", tags=["chat"])


async def _parse_body(request: Request, trace: RequestTrace) -> ChatRequest:
    trace = trace.at("req:parse").info()
    try:
        body = await request.json()
    except ValueError as e:
        raise trace.fail(InputError, "invalid_json", "Invalid JSON body.", str(e)) from e
    if not isinstance(body, dict):
        raise trace.fail(InputError, "invalid_json", "Invalid JSON body.")

    message = body.get("message")
    if not isinstance(message, str) or not message:
        raise trace.fail(InputError, "invalid_message", "Message is required.")
    try:
        return ChatRequest.model_validate(body)
    except ValidationError as e:
        raise trace.fail(InputError, "invalid_body", "Invalid request body.", str(e)) from e


@router.post("/chat")
async def chat(
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    trace: RequestTrace = Depends(get_trace),
):
    """Answer a student question grounded in the lesson's materials."""
    body = await _parse_body(request, trace)
    response = await run_chat(
        db,
        current_user.id,
        body,
        trace,
        cookie_lang=request.cookies.get("lang", ""),
        accept_language=request.headers.get("accept-language", ""),
    )
    return JSONResponse(content=response.model_dump(by_alias=True, exclude_none=True))
