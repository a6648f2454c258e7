"""Chat request / response schemas. The wire format is camelCase."""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class ChatRequest(BaseModel):
    message: str
    course_id: str = Field("", alias="courseId")
    lesson_id: str = Field("", alias="lessonId")
    thread_id: str = Field("", alias="threadId")
    new_thread: bool = Field(False, alias="newThread")
    lang: Optional[str] = None
    mode: Optional[str] = None
    context_type: Optional[str] = Field(None, alias="contextType")
    path: str = ""
    client_request_id: str = Field("", alias="clientRequestId")

    @field_validator("course_id", "lesson_id", "thread_id", "path", "client_request_id", mode="before")
    @classmethod
    def _as_trimmed_str(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("lang", "mode", "context_type", mode="before")
    @classmethod
    def _only_strings(cls, value: Any) -> Optional[str]:
        # Unknown values are ignored downstream; non-strings are dropped here.
        return value if isinstance(value, str) else None

    @field_validator("new_thread", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> bool:
        return bool(value)

    class Config:
        populate_by_name = True


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class Remaining(BaseModel):
    daily_messages_left: int = Field(alias="dailyMessagesLeft")
    monthly_tokens_left: int = Field(alias="monthlyTokensLeft")

    class Config:
        populate_by_name = True


class ChatResponse(BaseModel):
    answer: str
    thread_id: str = Field(alias="threadId")
    usage: Usage
    sources: list[dict] = []
    citations: list[str] = []
    citation_meta: list[dict] = Field(default_factory=list, alias="citationMeta")
    pdf_unreadable: Optional[bool] = Field(None, alias="pdfUnreadable")
    confidence: Optional[str] = None
    needs_more_context: Optional[bool] = Field(None, alias="needsMoreContext")
    clarifying_question: Optional[str] = Field(None, alias="clarifyingQuestion")
    mode: Optional[str] = None
    policy_applied: Optional[dict] = Field(None, alias="policyApplied")
    remaining: Remaining

    class Config:
        populate_by_name = True
