"""Per-module loggers writing JSON lines (default) or rich console output.

Every JSON line carries the current job context and any ``extra=`` fields.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from rich.logging import RichHandler

from lipsync_dispatch.main.config import get_loglevel
from lipsync_dispatch.main.request_context import get_request_context

JSON_LOGS_ENABLED = os.getenv("JSON_LOGS", "true").lower() in {"1", "true", "yes", "on"}

# Attributes of a bare record; anything else arrived through extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "taskName",
}


class ContextJSONFormatter(logging.Formatter):
    """One JSON object per record: base fields, job context, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        log: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in get_request_context().items():
            if value is not None:
                log.setdefault(key, value)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_") or value is None:
                continue
            log.setdefault(key, value)

        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)

        return json.dumps(log, default=str)


# Keep third-party chatter down unless we are debugging
for logger_name in ("aiohttp.access", "aiohttp.client", "asyncio", "redis"):
    logging.getLogger(logger_name).setLevel(
        logging.INFO if get_loglevel() <= logging.DEBUG else logging.WARNING
    )


class SimpleLogger(logging.Logger):
    def __init__(self, name: str, level: int = logging.WARNING):
        logging.Logger.__init__(self, name, level)

        handler: logging.Handler
        if JSON_LOGS_ENABLED:
            handler = logging.StreamHandler(stream=sys.stdout)
            handler.setFormatter(ContextJSONFormatter())
        else:
            # RichHandler does its own formatting
            handler = RichHandler(rich_tracebacks=True, markup=False, show_path=True)
        handler.setLevel(level)
        self.addHandler(handler)


def get_logger(module_name: str):
    # If we don't add a handler manually one will be created for us
    return SimpleLogger(name=module_name, level=get_loglevel())
