import asyncio

from dailyq.scheduler.runner import run_scheduler


if __name__ == "__main__":
    try:
        asyncio.run(run_scheduler())
    except KeyboardInterrupt:
        pass
