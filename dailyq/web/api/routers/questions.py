"""Today's question, the archive of past questions and user submissions."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dailyq.shared.clock import local_today
from dailyq.shared.config import Settings
from dailyq.shared.database import get_db_session
from dailyq.web.api.dependencies import get_app_settings, get_current_user_id
from dailyq.web.api.routers.answers import own_answer_data
from dailyq.web.api.schemas import QuestionSubmissionCreate
from dailyq.web.crud import AnswerOperations, DailyQuestionOperations, QuestionOperations
from dailyq.web.models import DailyQuestion

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/questions")


def question_data(daily: DailyQuestion) -> Dict[str, Any]:
    return {
        "question_id": str(daily.question_id),
        "text": daily.question.text,
        "category": daily.question.category,
    }


@router.get("/today")
async def get_today_question(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Today's question once published, with the caller's answer if any.

    Before publication the question itself is withheld.
    """
    today = local_today(settings.tz)
    daily = await DailyQuestionOperations(session, settings).get_daily_question(today)

    if daily is None or not daily.is_published:
        return {
            "date": today.isoformat(),
            "is_published": False,
            "published_at": None,
            "question": None,
            "has_answered": False,
            "user_answer": None,
        }

    answer = await AnswerOperations(session, settings).find_user_answer(user_id, daily.question_id)

    return {
        "date": today.isoformat(),
        "is_published": True,
        "published_at": daily.published_at.isoformat(),
        "question": question_data(daily),
        "has_answered": answer is not None,
        "user_answer": own_answer_data(answer) if answer is not None else None,
    }


@router.get("/past")
async def get_past_questions(
    before: Optional[date] = Query(default=None, description="Defaults to today (exclusive)"),
    limit: int = Query(default=30, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    if before is None:
        before = local_today(settings.tz)

    days = await DailyQuestionOperations(session, settings).list_published(before, limit=limit)
    return {
        "questions": [
            {
                "date": daily.active_date.isoformat(),
                "published_at": daily.published_at.isoformat(),
                **question_data(daily),
            }
            for daily in days
        ]
    }


@router.post("/submissions", status_code=status.HTTP_201_CREATED)
async def submit_question(
    payload: QuestionSubmissionCreate,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Propose a question for the bank; an admin approves or rejects it."""
    question = await QuestionOperations(session).submit_question(
        user_id=user_id,
        text=payload.text,
        category=payload.category,
        max_length=settings.max_question_length,
    )
    logger.info(f"User {user_id} submitted question {question.id}")
    return {
        "submission_id": str(question.id),
        "text": question.text,
        "category": question.category,
        "status": question.status,
    }
