"""Daily question notification fan-out."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from dailyq.scheduler.push_client import PushGatewayClient, PushGatewayError
from dailyq.shared.config import Settings
from dailyq.web.crud import PushDestinationOperations
from dailyq.web.models import DailyQuestion, PushDestination

logger = logging.getLogger(__name__)


@dataclass
class FanOutResult:
    total: int
    sent: int
    failed_batches: int


def build_messages(
    destinations: Sequence[PushDestination],
    daily: DailyQuestion,
    title: str,
) -> List[Dict[str, Any]]:
    return [
        {
            "to": destination.token,
            "sound": "default",
            "title": title,
            "body": daily.question.text,
            "data": {
                "type": "daily_question",
                "question_id": str(daily.question_id),
                "date": daily.active_date.isoformat(),
            },
        }
        for destination in destinations
    ]


def chunk(messages: List[Dict[str, Any]], size: int) -> List[List[Dict[str, Any]]]:
    return [messages[i:i + size] for i in range(0, len(messages), size)]


async def fan_out(
    session: AsyncSession,
    settings: Settings,
    push_client: PushGatewayClient,
    daily: DailyQuestion,
) -> FanOutResult:
    """Notify every registered device that ``daily`` is live.

    Batches are dispatched with bounded parallelism. A batch that fails is
    logged and counted; it never stops the others.
    """
    destinations = await PushDestinationOperations(session).list_all()
    if not destinations:
        logger.info(f"No push destinations registered; skipping fan-out for {daily.active_date}")
        return FanOutResult(total=0, sent=0, failed_batches=0)

    messages = build_messages(destinations, daily, settings.push_title)
    batches = chunk(messages, settings.push_batch_size)
    semaphore = asyncio.Semaphore(settings.push_max_concurrency)

    async def dispatch(index: int, batch: List[Dict[str, Any]]) -> bool:
        async with semaphore:
            try:
                await push_client.send_batch(batch)
                logger.debug(f"Push batch {index + 1}/{len(batches)} sent ({len(batch)} messages)")
                return True
            except PushGatewayError as e:
                logger.error(f"Push batch {index + 1}/{len(batches)} failed: {e}")
                return False
            except Exception as e:
                logger.exception(f"Push batch {index + 1}/{len(batches)} failed unexpectedly: {e}")
                return False

    outcomes = await asyncio.gather(*(dispatch(i, batch) for i, batch in enumerate(batches)))

    sent = sum(len(batch) for batch, ok in zip(batches, outcomes) if ok)
    failed = sum(1 for ok in outcomes if not ok)

    logger.info(
        f"Fan-out for {daily.active_date}: {sent}/{len(messages)} messages sent, "
        f"{failed} failed batches"
    )
    return FanOutResult(total=len(messages), sent=sent, failed_batches=failed)
