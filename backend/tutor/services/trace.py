"""Per-request trace: request id plus the pipeline stage currently running.

A trace is immutable: ``trace.at("pdf:rank")`` hands back a new trace for the
next stage, so each stage logs and fails under its own tag.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Optional

from tutor.errors import TutorError

logger = logging.getLogger("tutor.ai")


@dataclass(frozen=True)
class RequestTrace:
    request_id: str
    stage: str = "unhandled"

    @classmethod
    def start(cls, request_id: Optional[str] = None) -> "RequestTrace":
        return cls(request_id=request_id or str(uuid.uuid4()))

    def at(self, stage: str) -> "RequestTrace":
        return replace(self, stage=stage)

    def _payload(self, data: dict) -> dict:
        return {"requestId": self.request_id, "stage": self.stage, **data}

    def info(self, **data) -> "RequestTrace":
        logger.info("[ai] %s", self._payload(data))
        return self

    def warn(self, **data) -> "RequestTrace":
        logger.warning("[ai] %s", self._payload(data))
        return self

    def error(self, **data) -> "RequestTrace":
        logger.error("[ai] %s", self._payload(data))
        return self

    def fail(
        self,
        error_cls: type[TutorError],
        code: str,
        message: str,
        detail: Optional[str] = None,
    ) -> TutorError:
        """Build an error stamped with this stage. Server-side failures are logged as errors."""
        err = error_cls(self.stage, code, message, detail)
        if err.status >= 500:
            self.error(code=code, message=detail or message)
        else:
            self.warn(code=code)
        return err
