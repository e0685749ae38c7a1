"""Logging configuration shared by the API and the scheduler."""

from __future__ import annotations

import logging.config

from dailyq.shared.config import Settings


def configure_logging(settings: Settings) -> None:
    level = settings.log_level.upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "dailyq": {"level": level},
                "httpx": {"level": "WARNING"},
                "sqlalchemy.engine": {"level": "WARNING"},
                "uvicorn": {"level": "INFO"},
            },
            "root": {"level": "WARNING", "handlers": ["console"]},
        }
    )
