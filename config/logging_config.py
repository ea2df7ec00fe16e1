"""Centralized logging config. Logs go to stderr with UTC ISO-8601 timestamps."""
import logging
import sys
from datetime import datetime, timezone

from config.settings import LOG_LEVEL

LOG_FORMAT = "%(asctime)s.%(msecs)03dZ [%(levelname)s] %(name)s: %(message)s"
DATE_FMT = "%Y-%m-%dT%H:%M:%S"


class UTCTimeFormatter(logging.Formatter):
    """Use UTC for log timestamps."""

    def formatTime(self, record, datefmt=None):
        ct = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return ct.strftime(datefmt or self.default_time_format)


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger. Call once at startup."""
    level = level or LOG_LEVEL
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        h = logging.StreamHandler(sys.stderr)
        h.setFormatter(UTCTimeFormatter(LOG_FORMAT, datefmt=DATE_FMT))
        root.addHandler(h)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    # requests are logged by RequestLoggingMiddleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
