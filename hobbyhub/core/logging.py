from __future__ import annotations

import logging
import logging.config

from hobbyhub.core.config import settings


def configure_logging(level: str | None = None) -> None:
    resolved = (level or settings.log_level or "INFO").upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
            },
            "handlers": {
                "stream": {"class": "logging.StreamHandler", "formatter": "default"},
            },
            "root": {"level": resolved, "handlers": ["stream"]},
            "loggers": {
                "uvicorn": {"level": resolved, "handlers": ["stream"], "propagate": False},
                "uvicorn.access": {"level": resolved, "handlers": ["stream"], "propagate": False},
                "sqlalchemy.engine": {"level": "WARNING"},
            },
        }
    )
