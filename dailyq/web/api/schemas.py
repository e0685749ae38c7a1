"""Request and response schemas shared across routers."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    code: str
    message: str
    field: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope returned for every handled error."""

    detail: str
    type: str
    timestamp: datetime
    request_id: Optional[str] = None


class ValidationErrorResponse(ErrorResponse):
    type: str = "validation_error"
    errors: List[ErrorDetail] = Field(default_factory=list)


class AnswerSubmission(BaseModel):
    question_id: UUID
    text: str


class PushTokenRegistration(BaseModel):
    token: str = Field(min_length=1, max_length=255)
    platform: Literal["ios", "android"]


class QuestionCreate(BaseModel):
    text: str = Field(min_length=1, max_length=500)
    category: Optional[str] = Field(default=None, max_length=50)
    status: Literal["approved", "admin", "pending", "rejected"] = "admin"


class DailyQuestionOverride(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    active_date: date = Field(alias="date")
    question_id: UUID
    scheduled_publish_time: Optional[time] = None


class BannedTermCreate(BaseModel):
    term: str = Field(min_length=1, max_length=100)


class QuestionSubmissionCreate(BaseModel):
    text: str = Field(min_length=1, max_length=500)
    category: Optional[str] = Field(default=None, max_length=50)


class SubmissionReview(BaseModel):
    status: Literal["approved", "rejected"]
    text: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, max_length=50)


class FlaggedAnswerReview(BaseModel):
    status: Literal["approved", "removed"]
