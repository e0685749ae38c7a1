"""Profiles, answer history of other users, follows and blocks.

A block in either direction makes the other user look nonexistent: every
endpoint here answers 404 exactly as it would for an unknown user ID.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dailyq.shared.database import get_db_session
from dailyq.web.api.dependencies import get_current_user_id
from dailyq.web.api.routers.answers import own_answer_data, public_answer_data
from dailyq.web.crud import SocialGraphOperations, UserOperations
from dailyq.web.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users")


def user_list(users: List[User]) -> List[Dict[str, Any]]:
    return [user.snippet() for user in users]


@router.get("/me/blocks")
async def list_my_blocks(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    blocked = await SocialGraphOperations(session).list_blocked_users(user_id)
    return {"users": user_list(blocked)}


@router.get("/{target_id}")
async def get_profile(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    user = await UserOperations(session).get_visible_user(user_id, target_id)

    graph = SocialGraphOperations(session)
    follower_count, following_count = await graph.count_edges(target_id)
    is_own = user_id == target_id

    return {
        **user.snippet(),
        "bio": user.bio,
        "is_private": user.is_private,
        "follower_count": follower_count,
        "following_count": following_count,
        "is_following": False if is_own else await graph.is_following(user_id, target_id),
        "is_own": is_own,
    }


@router.get("/{target_id}/answers")
async def get_user_answers(
    target_id: str,
    before: Optional[date] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Another user's answers; 403 ``private_account`` unless followed."""
    history = await UserOperations(session).get_visible_answers(
        user_id, target_id, before=before, limit=limit
    )
    serialize = own_answer_data if user_id == target_id else public_answer_data
    return {"answers": [serialize(answer, text) for answer, text in history]}


@router.get("/{target_id}/followers")
async def list_followers(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    await UserOperations(session).get_visible_user(user_id, target_id)
    followers = await SocialGraphOperations(session).list_followers(target_id)
    return {"users": user_list(followers)}


@router.get("/{target_id}/following")
async def list_following(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    await UserOperations(session).get_visible_user(user_id, target_id)
    following = await SocialGraphOperations(session).list_following(target_id)
    return {"users": user_list(following)}


@router.post("/{target_id}/follow", status_code=status.HTTP_201_CREATED)
async def follow_user(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    await SocialGraphOperations(session).follow(user_id, target_id)
    logger.info(f"{user_id} followed {target_id}")
    return {"user_id": target_id, "is_following": True}


@router.delete("/{target_id}/follow")
async def unfollow_user(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    await SocialGraphOperations(session).unfollow(user_id, target_id)
    return {"user_id": target_id, "is_following": False}


@router.post("/{target_id}/block", status_code=status.HTTP_201_CREATED)
async def block_user(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    await SocialGraphOperations(session).block(user_id, target_id)
    return {"user_id": target_id, "is_blocked": True}


@router.delete("/{target_id}/block")
async def unblock_user(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    await SocialGraphOperations(session).unblock(user_id, target_id)
    return {"user_id": target_id, "is_blocked": False}
