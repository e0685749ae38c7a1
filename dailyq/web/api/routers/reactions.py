"""Reactions on answers."""

from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dailyq.shared.database import get_db_session
from dailyq.web.api.dependencies import get_current_user_id
from dailyq.web.crud import ReactionOperations

router = APIRouter(prefix="/answers/{answer_id}/reaction")


@router.put("")
async def add_reaction(
    answer_id: UUID,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """React to an answer.

    Errors: 404 for missing, deleted or block-hidden answers,
    400 ``self_reaction``, 409 ``duplicate_reaction``.
    """
    answer = await ReactionOperations(session).add_reaction(answer_id=answer_id, reactor_id=user_id)
    return {
        "answer_id": str(answer_id),
        "has_reacted": True,
        "reaction_count": answer.reaction_count,
    }


@router.delete("")
async def remove_reaction(
    answer_id: UUID,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    await ReactionOperations(session).remove_reaction(answer_id=answer_id, reactor_id=user_id)
    return {"answer_id": str(answer_id), "has_reacted": False}
