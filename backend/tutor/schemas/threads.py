"""Thread listing / detail schemas."""

import json
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ThreadOut(BaseModel):
    id: str
    course_id: str = Field(alias="courseId")
    lesson_id: str = Field(alias="lessonId")
    title: str
    message_count: int = Field(alias="messageCount")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    last_message_at: datetime = Field(alias="lastMessageAt")

    class Config:
        from_attributes = True
        populate_by_name = True


class MessageOut(BaseModel):
    id: str
    role: str
    content: str
    created_at: datetime = Field(alias="createdAt")
    model: Optional[str] = None
    input_tokens: Optional[int] = Field(None, alias="inputTokens")
    output_tokens: Optional[int] = Field(None, alias="outputTokens")
    sources: Optional[list] = None
    citations: Optional[list] = None
    citation_meta: Optional[list] = Field(None, alias="citationMeta")
    mode: Optional[str] = None
    policy_applied: Optional[dict] = Field(None, alias="policyApplied")
    confidence: Optional[str] = None
    needs_more_context: Optional[bool] = Field(None, alias="needsMoreContext")
    clarifying_question: Optional[str] = Field(None, alias="clarifyingQuestion")

    @field_validator("sources", "citations", "citation_meta", "policy_applied", mode="before")
    @classmethod
    def _decode_json(cls, value):
        if isinstance(value, str):
            return json.loads(value)
        return value

    class Config:
        from_attributes = True
        populate_by_name = True


class ThreadListResponse(BaseModel):
    threads: list[ThreadOut]


class ThreadDetailResponse(BaseModel):
    thread: ThreadOut
    messages: list[MessageOut]


class ThreadRenameRequest(BaseModel):
    title: str
