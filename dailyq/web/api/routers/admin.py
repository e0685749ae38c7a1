"""Administrative endpoints: question bank and submissions, daily overrides,
banned terms, flagged-answer review and manual scheduler runs. Every route
requires the admin API key.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dailyq.scheduler.jobs import SchedulingError, check_and_publish, select_and_schedule
from dailyq.scheduler.push_client import PushGatewayClient
from dailyq.shared.config import Settings
from dailyq.shared.database import get_db_session
from dailyq.web.api.dependencies import get_app_settings, get_push_client, verify_api_key
from dailyq.web.api.schemas import (
    BannedTermCreate,
    DailyQuestionOverride,
    FlaggedAnswerReview,
    QuestionCreate,
    SubmissionReview,
)
from dailyq.web.crud import (
    AnswerOperations,
    BannedTermOperations,
    ConflictError,
    DailyQuestionOperations,
    QuestionOperations,
    UserOperations,
)
from dailyq.web.models import Answer, DailyQuestion, Question, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", dependencies=[Depends(verify_api_key)])


def question_admin_data(question: Question) -> Dict[str, Any]:
    return {
        "id": str(question.id),
        "text": question.text,
        "category": question.category,
        "status": question.status,
        "last_used_on": question.last_used_on.isoformat() if question.last_used_on else None,
        "submitted_by": question.submitted_by,
        "created_at": question.created_at.isoformat(),
    }


def flagged_answer_data(answer: Answer, author: Optional[User]) -> Dict[str, Any]:
    return {
        "answer_id": str(answer.id),
        "user_id": answer.user_id,
        "username": author.username if author is not None else None,
        "date": answer.active_date.isoformat(),
        "text": answer.raw_text,
        "rendered_text": answer.rendered_text,
        "flag_reason": answer.flag_reason,
        "status": answer.flag_status or "pending",
        "is_deleted": answer.is_deleted,
        "created_at": answer.created_at.isoformat(),
        "reviewed_at": answer.reviewed_at.isoformat() if answer.reviewed_at else None,
    }


def daily_admin_data(daily: DailyQuestion) -> Dict[str, Any]:
    return {
        "date": daily.active_date.isoformat(),
        "question_id": str(daily.question_id),
        "question_text": daily.question.text,
        "scheduled_publish_time": daily.scheduled_publish_time.strftime("%H:%M"),
        "published_at": daily.published_at.isoformat() if daily.published_at else None,
        "is_manual": daily.is_manual,
    }


@router.post("/questions", status_code=status.HTTP_201_CREATED)
async def create_question(
    payload: QuestionCreate,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    question = await QuestionOperations(session).create_question(
        text=payload.text, category=payload.category, status=payload.status
    )
    logger.info(f"Question {question.id} added with status {question.status}")
    return {"question": question_admin_data(question)}


@router.get("/questions")
async def list_questions(
    question_status: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    questions = await QuestionOperations(session).list_questions(status=question_status, limit=limit)
    return {"questions": [question_admin_data(q) for q in questions]}


@router.get("/question-submissions")
async def list_question_submissions(
    submission_status: Literal["pending", "approved", "rejected", "all"] = Query(
        default="pending", alias="status"
    ),
    limit: int = Query(default=50, ge=1, le=100),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    submissions = await QuestionOperations(session).list_submissions(
        status=None if submission_status == "all" else submission_status,
        limit=limit,
    )
    return {"submissions": [question_admin_data(q) for q in submissions]}


@router.post("/question-submissions/{question_id}/review")
async def review_question_submission(
    question_id: UUID,
    payload: SubmissionReview,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Approve a submission into the question pool, or reject it."""
    question = await QuestionOperations(session).review_submission(
        question_id,
        decision=payload.status,
        text=payload.text,
        category=payload.category,
    )
    logger.info(f"Question submission {question_id} {question.status}")
    return {"question": question_admin_data(question)}


@router.get("/flagged-answers")
async def list_flagged_answers(
    review_status: Optional[Literal["pending", "approved", "removed"]] = Query(
        default=None, alias="status"
    ),
    limit: int = Query(default=50, ge=1, le=100),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    answers = await AnswerOperations(session, settings).list_flagged_answers(
        status=review_status, limit=limit
    )
    authors = await UserOperations(session).get_users(answer.user_id for answer in answers)
    return {"items": [flagged_answer_data(a, authors.get(a.user_id)) for a in answers]}


@router.post("/flagged-answers/{answer_id}/review")
async def review_flagged_answer(
    answer_id: UUID,
    payload: FlaggedAnswerReview,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Keep a flagged answer visible, or remove it for good."""
    answer = await AnswerOperations(session, settings).review_flagged_answer(
        answer_id, decision=payload.status
    )
    author = (await UserOperations(session).get_users([answer.user_id])).get(answer.user_id)
    return {"item": flagged_answer_data(answer, author)}


@router.post("/daily-questions", status_code=status.HTTP_201_CREATED)
async def set_daily_question(
    payload: DailyQuestionOverride,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Pick the question for a day that has none yet (409 otherwise)."""
    daily = await DailyQuestionOperations(session, settings).set_daily_question(
        active_date=payload.active_date,
        question_id=payload.question_id,
        scheduled_publish_time=payload.scheduled_publish_time,
    )
    logger.info(f"Question {daily.question_id} manually set for {daily.active_date}")
    return {"daily_question": daily_admin_data(daily)}


@router.get("/banned-terms")
async def list_banned_terms(
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    return {"terms": await BannedTermOperations(session).list_terms()}


@router.post("/banned-terms", status_code=status.HTTP_201_CREATED)
async def add_banned_term(
    payload: BannedTermCreate,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    term = await BannedTermOperations(session).add_term(payload.term)
    return {"term": term}


@router.delete("/banned-terms/{term}")
async def remove_banned_term(
    term: str,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    await BannedTermOperations(session).remove_term(term)
    return {"term": term.strip().lower(), "status": "deleted"}


@router.post("/scheduler/select")
async def run_select_and_schedule(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    try:
        daily, created = await select_and_schedule(session, settings)
    except SchedulingError as e:
        raise ConflictError(str(e), code="scheduling_error") from e

    return {"created": created, "daily_question": daily_admin_data(daily)}


@router.post("/scheduler/publish")
async def run_check_and_publish(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    push_client: PushGatewayClient = Depends(get_push_client),
) -> Dict[str, Any]:
    outcome = await check_and_publish(session, settings, push_client)

    response: Dict[str, Any] = {
        "status": outcome.status,
        "date": outcome.active_date.isoformat(),
    }
    if outcome.fan_out is not None:
        response["fan_out"] = {
            "total": outcome.fan_out.total,
            "sent": outcome.fan_out.sent,
            "failed_batches": outcome.fan_out.failed_batches,
        }
    return response
