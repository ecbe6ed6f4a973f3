"""Structured logging shared by the engine and the replay harness.

COMPASS_LOG_FORMAT selects "json" (default) or "text". Engine modules pass
context through ``extra={"compass_<name>": ...}``; the JSON formatter
collects those keys under ``context`` with the prefix stripped.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone

from .errors import CompassError

CONTEXT_PREFIX = "compass_"
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {
            key[len(CONTEXT_PREFIX):]: value
            for key, value in record.__dict__.items()
            if key.startswith(CONTEXT_PREFIX)
        }
        if context:
            entry["context"] = context

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
            entry["error_class"] = exc.error_class if isinstance(exc, CompassError) else type(exc).__name__

        return json.dumps(entry, default=str, sort_keys=True)


def setup_logging(log_format: str, level: int | str = logging.INFO) -> None:
    """Point the root logger at stderr; replaces handlers from earlier calls."""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
