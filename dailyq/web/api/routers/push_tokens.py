"""Device registration for daily question notifications."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dailyq.shared.database import get_db_session
from dailyq.web.api.dependencies import get_current_user_id
from dailyq.web.api.schemas import PushTokenRegistration
from dailyq.web.crud import PushDestinationOperations

router = APIRouter(prefix="/push-tokens")


@router.put("")
async def register_push_token(
    registration: PushTokenRegistration,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    destination = await PushDestinationOperations(session).register(
        user_id=user_id,
        token=registration.token,
        platform=registration.platform,
    )
    return {"token": destination.token, "platform": destination.platform}


@router.delete("/{token}")
async def unregister_push_token(
    token: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    await PushDestinationOperations(session).unregister(user_id=user_id, token=token)
    return {"token": token, "status": "deleted"}
