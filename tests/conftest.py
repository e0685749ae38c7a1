"""Shared fixtures: a file-backed SQLite database per test and seeding helpers."""

from __future__ import annotations

import json
from datetime import date, datetime, time

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from dailyq.scheduler.push_client import PushGatewayClient
from dailyq.shared.config import Settings
from dailyq.shared.database import Base
from dailyq.web import models  # noqa: F401
from dailyq.web.crud import DailyQuestionOperations, QuestionOperations, UserOperations


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        database_url="sqlite+aiosqlite://",
        admin_api_key="test-admin-key",
        home_timezone="Asia/Tokyo",
        push_gateway_url="https://push.test/send",
    )


@pytest.fixture
async def engine(tmp_path):
    # Separate connections per session, so the timeline's concurrent reads work
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dailyq.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway_calls():
    """Every batch the mock push gateway received, decoded."""
    return []


@pytest.fixture
async def push_client(settings, gateway_calls):
    def handler(request: httpx.Request) -> httpx.Response:
        gateway_calls.append(json.loads(request.content))
        return httpx.Response(200, json={"data": [{"status": "ok"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield PushGatewayClient(settings, client=client)


@pytest.fixture
def make_user(session):
    async def _make_user(user_id: str, *, is_private: bool = False):
        return await UserOperations(session).create_user(
            user_id=user_id,
            username=f"{user_id}_handle",
            display_name=user_id.title(),
            is_private=is_private,
        )

    return _make_user


@pytest.fixture
def make_question(session):
    async def _make_question(text: str = "What made you smile today?", **kwargs):
        return await QuestionOperations(session).create_question(text=text, **kwargs)

    return _make_question


@pytest.fixture
def publish_question(session, settings):
    """Schedule ``question`` for ``day`` and optionally mark it published."""

    async def _publish(question, day: date, published_at: datetime | None, publish_time: time = time(10, 0)):
        ops = DailyQuestionOperations(session, settings)
        daily, _ = await ops.create_daily_question(
            active_date=day,
            question=question,
            scheduled_publish_time=publish_time,
        )
        if published_at is not None:
            assert await ops.mark_published(day, published_at)
            await session.refresh(daily, attribute_names=["published_at", "updated_at"])
        return daily

    return _publish
