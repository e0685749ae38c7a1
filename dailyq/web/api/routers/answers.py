"""Answer submission, history, soft delete and restore."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dailyq.shared.config import Settings
from dailyq.shared.database import get_db_session
from dailyq.web.api.dependencies import get_app_settings, get_current_user_id
from dailyq.web.api.schemas import AnswerSubmission
from dailyq.web.crud import AnswerOperations
from dailyq.web.models import Answer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/answers")


def public_answer_data(answer: Answer, question_text: Optional[str] = None) -> Dict[str, Any]:
    """Answer as shown to anyone other than its author."""
    data = {
        "answer_id": str(answer.id),
        "question_id": str(answer.question_id),
        "date": answer.active_date.isoformat(),
        "rendered_text": answer.rendered_text,
        "is_on_time": answer.is_on_time,
        "late_minutes": answer.late_minutes,
        "reaction_count": answer.reaction_count,
        "created_at": answer.created_at.isoformat(),
    }
    if question_text is not None:
        data["question_text"] = question_text
    return data


def own_answer_data(answer: Answer, question_text: Optional[str] = None) -> Dict[str, Any]:
    """Answer as shown to its author, including moderation and deletion state."""
    data = public_answer_data(answer, question_text)
    data.update(
        {
            "text": answer.raw_text,
            "is_flagged": answer.is_flagged,
            "is_deleted": answer.is_deleted,
            "is_removed": answer.flag_status == "removed",
            "deleted_at": answer.deleted_at.isoformat() if answer.deleted_at else None,
        }
    )
    return data


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_answer(
    submission: AnswerSubmission,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Answer today's published question.

    Errors: 400 ``validation_error``, 403 ``wrong_question``,
    409 ``already_answered`` or ``deleted_exists``.
    """
    answer = await AnswerOperations(session, settings).submit_answer(
        user_id=user_id,
        question_id=submission.question_id,
        text=submission.text,
    )

    logger.info(f"Answer {answer.id} submitted by {user_id} for {answer.active_date}")

    return {
        "answer_id": str(answer.id),
        "date": answer.active_date.isoformat(),
        "is_on_time": answer.is_on_time,
        "late_minutes": answer.late_minutes,
        "created_at": answer.created_at.isoformat(),
        "rendered_text": answer.rendered_text,
        "is_flagged": answer.is_flagged,
    }


@router.get("/me")
async def get_my_answers(
    before: Optional[date] = Query(default=None, description="Only days strictly before this one"),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    history = await AnswerOperations(session, settings).get_answer_history(
        user_id, before=before, limit=limit, include_deleted=True
    )
    return {"answers": [own_answer_data(answer, text) for answer, text in history]}


@router.delete("/{answer_id}")
async def delete_answer(
    answer_id: UUID,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    answer = await AnswerOperations(session, settings).soft_delete_answer(
        answer_id=answer_id, user_id=user_id
    )
    logger.info(f"Answer {answer_id} deleted by its owner")
    return {"answer": own_answer_data(answer)}


@router.post("/{answer_id}/restore")
async def restore_answer(
    answer_id: UUID,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    answer = await AnswerOperations(session, settings).restore_answer(
        answer_id=answer_id, user_id=user_id
    )
    logger.info(f"Answer {answer_id} restored by its owner")
    return {"answer": own_answer_data(answer)}
