"""Error taxonomy for the tutoring API.

Each error knows its HTTP status, the pipeline stage that raised it and a
stable ``code`` clients can branch on. ``main.py`` renders them as
``{ok: false, stage, code, message, detail, requestId}``.
"""

from typing import Optional


class TutorError(Exception):
    status = 500

    def __init__(
        self,
        stage: str,
        code: str,
        message: str,
        detail: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.code = code
        self.message = message
        self.detail = detail
        if status is not None:
            self.status = status

    def to_dict(self, request_id: str) -> dict:
        return {
            "ok": False,
            "stage": self.stage,
            "code": self.code,
            "message": self.message,
            "detail": self.detail,
            "requestId": request_id,
        }


class InputError(TutorError):
    status = 400


class AuthError(TutorError):
    status = 401


class ForbiddenError(TutorError):
    status = 403


class NotFoundError(TutorError):
    status = 404


class MissingIndexError(TutorError):
    status = 409


class QuotaExceededError(TutorError):
    status = 429


class DependencyError(TutorError):
    status = 500


class UpstreamModelError(TutorError):
    status = 502


def is_missing_index(exc: BaseException) -> bool:
    """True when a database error reports a query that needs an index that does not exist."""
    text = str(getattr(exc, "orig", None) or exc).lower()
    return "requires an index" in text or "no such index" in text
