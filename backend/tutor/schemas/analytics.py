"""Teacher analytics schemas."""

from typing import Optional

from pydantic import BaseModel, Field


class TopQuestion(BaseModel):
    q_hash: str = Field(alias="qHash")
    example_truncated: str = Field(alias="exampleTruncated")
    count: int
    last_seen_at: Optional[str] = Field(None, alias="lastSeenAt")

    class Config:
        populate_by_name = True


class AnalyticsTotals(BaseModel):
    total_requests: int = Field(alias="totalRequests")

    class Config:
        populate_by_name = True


class AnalyticsResponse(BaseModel):
    ok: bool = True
    course_id: str = Field(alias="courseId")
    lesson_id: Optional[str] = Field(None, alias="lessonId")
    scope: str  # lesson | course
    days: int
    totals: AnalyticsTotals
    by_mode: dict[str, int] = Field(alias="byMode")
    by_outcome: dict[str, int] = Field(alias="byOutcome")
    unsupported_rate: int = Field(alias="unsupportedRate")
    top_questions: list[TopQuestion] = Field(alias="topQuestions")

    class Config:
        populate_by_name = True
