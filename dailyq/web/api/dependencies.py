"""FastAPI dependencies: caller identity, admin authentication and shared resources."""

from __future__ import annotations

import logging
import secrets
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dailyq.scheduler.push_client import PushGatewayClient
from dailyq.shared.config import Settings, get_settings
from dailyq.shared.database import get_session_maker

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings() -> Settings:
    return get_settings()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for operations that open several sessions concurrently."""
    return get_session_maker()


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> str:
    """Identity of the caller, as asserted by the authenticating gateway."""
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity (X-User-Id header)",
        )
    return x_user_id.strip()


async def verify_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_app_settings),
) -> str:
    """Require the configured admin API key as a bearer token."""
    if settings.admin_api_key is None:
        logger.warning("Admin request rejected: no admin API key configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin API is disabled",
        )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    expected = settings.admin_api_key.get_secret_value()
    if not secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
        logger.warning("Admin request rejected: invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


async def get_push_client(
    settings: Settings = Depends(get_app_settings),
) -> AsyncGenerator[PushGatewayClient, None]:
    async with PushGatewayClient(settings) as client:
        yield client
