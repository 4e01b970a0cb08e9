"""Shared utilities."""

from trend_scout.utils.logging import JsonFormatter, setup_logging
from trend_scout.utils.time import ensure_utc, parse_datetime, utcnow

__all__ = ["JsonFormatter", "setup_logging", "ensure_utc", "parse_datetime", "utcnow"]
