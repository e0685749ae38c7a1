"""Long-running scheduler process with one loop per job."""

from __future__ import annotations

import asyncio
import logging

from dailyq.scheduler.jobs import check_and_publish, select_and_schedule
from dailyq.scheduler.push_client import PushGatewayClient
from dailyq.shared.clock import is_within_window, local_now, seconds_until_next_midnight
from dailyq.shared.config import Settings, get_settings
from dailyq.shared.database import close_database, get_session_maker, init_database
from dailyq.shared.log_config import configure_logging

logger = logging.getLogger(__name__)


async def run_select_loop(settings: Settings) -> None:
    """Schedule today's question at startup, then once after every local midnight."""
    while True:
        try:
            async with get_session_maker()() as session:
                await select_and_schedule(session, settings)
        except Exception as e:
            logger.error(f"Select-and-schedule run failed: {e}")

        # Land just past midnight so local_today() has rolled over
        await asyncio.sleep(seconds_until_next_midnight(settings.tz) + 1)


async def run_publish_loop(settings: Settings, push_client: PushGatewayClient) -> None:
    """Check for a due question every interval while inside the publish window."""
    while True:
        local = local_now(settings.tz)
        if is_within_window(local.time(), settings.publish_window_start, settings.publish_window_end):
            try:
                async with get_session_maker()() as session:
                    outcome = await check_and_publish(session, settings, push_client)
                logger.debug(f"Check-and-publish: {outcome.status}")
            except Exception as e:
                logger.error(f"Check-and-publish run failed: {e}")

        await asyncio.sleep(settings.publish_check_interval_seconds)


async def run_scheduler(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    configure_logging(settings)

    await init_database(settings)
    logger.info(
        f"Scheduler started (timezone {settings.home_timezone}, window "
        f"{settings.publish_window_start:%H:%M}-{settings.publish_window_end:%H:%M})"
    )

    try:
        async with PushGatewayClient(settings) as push_client:
            await asyncio.gather(
                run_select_loop(settings),
                run_publish_loop(settings, push_client),
            )
    finally:
        await close_database()
        logger.info("Scheduler stopped")
