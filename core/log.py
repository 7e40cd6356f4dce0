"""
core/log.py -- Logging setup shared by the API and the migration runner.

Development (DEBUG=true) gets the same human-readable line format the API has
always used. Production gets one JSON object per line so the hosting
platform's log drain can index fields without regex parsing.

Context fields are attached with the standard `extra=` argument:

    logger.info("post created", extra={"post_id": post.id, "user_id": uid})

Anything in `extra` that is not a built-in LogRecord attribute is copied into
the JSON object. Never pass passwords, tokens, or hashes through `extra`.
"""

import json
import logging
from datetime import datetime, timezone

# LogRecord attributes that are not user-supplied context.
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_TEXT_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Render a LogRecord as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def configure_logging(debug: bool, level: int = logging.INFO) -> None:
    """Install the root handler. Safe to call more than once (force=True)."""
    handler = logging.StreamHandler()
    if debug:
        handler.setFormatter(logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT))
    else:
        handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
