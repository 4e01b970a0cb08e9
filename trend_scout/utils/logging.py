"""Logging setup for the API, the CLI and background callbacks."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Literal

from trend_scout.config import get_settings

# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "urllib3")

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def setup_logging(
    level: str | None = None,
    format_type: Literal["json", "text"] | None = None,
) -> None:
    """
    Route all logging to stdout in the configured format.

    Args:
        level: Log level name; defaults to ``settings.log_level``
        format_type: ``json`` for one object per line, ``text`` for humans;
            defaults to ``settings.log_format``
    """
    settings = get_settings()
    log_level = logging.getLevelName((level or settings.log_level).upper())
    format_type = format_type or settings.log_format

    handler = logging.StreamHandler(sys.stdout)
    if format_type == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


class JsonFormatter(logging.Formatter):
    """One JSON object per record, including anything passed via ``extra=``."""

    _RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in self._RESERVED and not key.startswith("_")
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)
