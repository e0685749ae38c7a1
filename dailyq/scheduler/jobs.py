"""The two scheduler jobs.

``select_and_schedule`` picks the day's question and its publish time;
``check_and_publish`` flips the day to published once that time has passed
and triggers the notification fan-out. The jobs never talk to each other
directly; they only share the ``daily_questions`` row, and both are safe to
run repeatedly or concurrently.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from dailyq.scheduler.notifications import FanOutResult, fan_out
from dailyq.scheduler.push_client import PushGatewayClient
from dailyq.shared.clock import local_now, local_today, minutes_of_day, utcnow
from dailyq.shared.config import Settings
from dailyq.web.crud import DailyQuestionOperations, QuestionOperations
from dailyq.web.models import DailyQuestion

logger = logging.getLogger(__name__)

PUBLISHED = "published"
NO_QUESTION = "no_question"
ALREADY_PUBLISHED = "already_published"
NOT_YET_DUE = "not_yet_due"
LOST_RACE = "lost_race"


class SchedulingError(Exception):
    """Raised when no question can be scheduled for a day."""


@dataclass
class PublishOutcome:
    status: str
    active_date: date
    fan_out: Optional[FanOutResult] = None

    @property
    def published(self) -> bool:
        return self.status == PUBLISHED


def pick_publish_time(start: time, end: time, rng: random.Random) -> time:
    """Uniform minute in ``[start, end)``."""
    start_minute, end_minute = minutes_of_day(start), minutes_of_day(end)
    if end_minute <= start_minute:
        return time(start.hour, start.minute)
    minute = rng.randrange(start_minute, end_minute)
    return time(minute // 60, minute % 60)


async def select_and_schedule(
    session: AsyncSession,
    settings: Settings,
    today: Optional[date] = None,
    rng: Optional[random.Random] = None,
) -> Tuple[DailyQuestion, bool]:
    """Ensure the day has a question.

    Returns:
        (daily_question, created). ``created`` is False when the day was
        already scheduled, including when a concurrent run won the insert.

    Raises:
        SchedulingError: the question bank has nothing selectable
    """
    if today is None:
        today = local_today(settings.tz)
    rng = rng or random.Random()

    daily_ops = DailyQuestionOperations(session, settings)

    existing = await daily_ops.get_daily_question(today)
    if existing is not None:
        logger.info(f"Question for {today} already scheduled; nothing to do")
        return existing, False

    pool = await QuestionOperations(session).get_selectable_questions()
    if not pool:
        raise SchedulingError(f"No approved questions available to schedule for {today}")

    cutoff = today - timedelta(days=settings.question_reuse_days)
    fresh = [q for q in pool if q.last_used_on is None or q.last_used_on < cutoff]
    if not fresh:
        logger.warning(
            f"Every question was used in the last {settings.question_reuse_days} days; "
            f"falling back to the full pool of {len(pool)}"
        )

    question = rng.choice(fresh or pool)
    publish_time = pick_publish_time(
        settings.publish_window_start, settings.publish_window_end, rng
    )

    daily, created = await daily_ops.create_daily_question(
        active_date=today,
        question=question,
        scheduled_publish_time=publish_time,
    )
    if created:
        logger.info(f"Scheduled question {question.id} for {today} at {publish_time:%H:%M}")
    return daily, created


async def check_and_publish(
    session: AsyncSession,
    settings: Settings,
    push_client: PushGatewayClient,
    now: Optional[datetime] = None,
) -> PublishOutcome:
    """Publish today's question if its time has come.

    Only the caller whose conditional update flips ``published_at`` runs
    the fan-out; every other path is a no-op.
    """
    now = now or utcnow()
    local = local_now(settings.tz, now)
    today = local.date()

    daily_ops = DailyQuestionOperations(session, settings)
    daily = await daily_ops.get_daily_question(today)

    if daily is None:
        logger.info(f"No question scheduled for {today}")
        return PublishOutcome(NO_QUESTION, today)

    if daily.is_published:
        return PublishOutcome(ALREADY_PUBLISHED, today)

    if minutes_of_day(local.time()) < minutes_of_day(daily.scheduled_publish_time):
        logger.debug(
            f"Question for {today} due at {daily.scheduled_publish_time:%H:%M}, "
            f"now {local:%H:%M}"
        )
        return PublishOutcome(NOT_YET_DUE, today)

    if not await daily_ops.mark_published(today, now):
        logger.info(f"Question for {today} was published by another run")
        return PublishOutcome(LOST_RACE, today)

    await session.refresh(daily, attribute_names=["published_at", "updated_at"])
    logger.info(f"Published question {daily.question_id} for {today}")

    result = await fan_out(session, settings, push_client, daily)
    return PublishOutcome(PUBLISHED, today, fan_out=result)
