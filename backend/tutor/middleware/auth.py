"""Bearer-token authentication dependencies (HS256 JWT via python-jose)."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from jose import JWTError, jwt

from tutor.config import settings
from tutor.errors import AuthError, ForbiddenError
from tutor.services.trace import RequestTrace

TEACHER_ROLES = ("teacher", "admin")


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str = "student"


def verify_token(token: str, trace: RequestTrace) -> CurrentUser:
    trace = trace.at("auth:verify").info()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise trace.fail(AuthError, "invalid_token", "Invalid or expired token.", str(e)) from e
    user_id = payload.get("sub")
    if not user_id:
        raise trace.fail(AuthError, "invalid_token", "Invalid or expired token.", "Token has no subject.")
    return CurrentUser(id=str(user_id), role=str(payload.get("role") or "student"))


def get_trace(request: Request) -> RequestTrace:
    """The request's trace, created by the request-id middleware in main.py."""
    trace: Optional[RequestTrace] = getattr(request.state, "trace", None)
    return trace or RequestTrace.start(request.headers.get("x-request-id"))


def get_current_user(request: Request, trace: RequestTrace = Depends(get_trace)) -> CurrentUser:
    header = request.headers.get("authorization") or ""
    token = header[7:].strip() if header.startswith("Bearer ") else ""
    if not token:
        raise trace.at("auth:header").fail(AuthError, "missing_auth", "Missing Authorization header.")
    return verify_token(token, trace)


def require_teacher(
    current_user: CurrentUser = Depends(get_current_user),
    trace: RequestTrace = Depends(get_trace),
) -> CurrentUser:
    if current_user.role not in TEACHER_ROLES:
        raise trace.at("auth:authorize").fail(ForbiddenError, "forbidden", "Access denied.")
    return current_user
