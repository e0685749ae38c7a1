"""The per-viewer answer feed."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dailyq.shared.config import Settings
from dailyq.web.api.dependencies import get_app_settings, get_current_user_id, get_session_factory
from dailyq.web.crud import TimelineEntry, TimelineOperations

router = APIRouter(prefix="/timeline")


def entry_data(entry: TimelineEntry) -> Dict[str, Any]:
    answer = entry.answer
    return {
        "answer_id": str(answer.id),
        "rendered_text": answer.rendered_text,
        "is_on_time": answer.is_on_time,
        "late_minutes": answer.late_minutes,
        "reaction_count": answer.reaction_count,
        "has_reacted": entry.has_reacted,
        "author": entry.author.snippet() if entry.author else None,
        "created_at": answer.created_at.isoformat(),
        "is_own": entry.is_own,
    }


@router.get("")
async def get_timeline(
    day: Optional[date] = Query(default=None, alias="date"),
    limit: Optional[int] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Answers for a day from the caller and the people they follow.

    On-time answers come first, then oldest first. ``limit`` is clamped to
    the configured maximum.
    """
    page = await TimelineOperations(session_factory, settings).get_timeline(
        user_id, active_date=day, limit=limit
    )

    question = None
    if page.question is not None:
        question = {"question_id": str(page.question.id), "text": page.question.text}

    return {
        "date": page.active_date.isoformat(),
        "question": question,
        "items": [entry_data(entry) for entry in page.entries],
    }
