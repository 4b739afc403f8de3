# toolguard/utils/logging.py
"""Log formatting for guard decisions.

Records emitted while the pipeline evaluates one tool call carry that call's
invocation id, so a block can be traced across every guard that saw it.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from typing import Any

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Set by GuardPipeline for the duration of one evaluation
invocation_id_var: ContextVar[str] = ContextVar("invocation_id", default="")


def new_invocation_id() -> str:
    return uuid.uuid4().hex[:12]


def get_invocation_id() -> str:
    """Invocation id of the evaluation in progress, or "" outside of one."""
    return invocation_id_var.get()


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with the invocation id when one is set."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        invocation_id = get_invocation_id()
        if invocation_id:
            entry["invocation_id"] = invocation_id
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level: int | str = logging.INFO, structured: bool = False) -> None:
    """Attach a stderr handler to the root logger.

    Does nothing if the host already configured root handlers.

    Args:
        level: Logging level name or number.
        structured: Emit JSON lines via StructuredFormatter instead of plain text.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if structured else logging.Formatter(PLAIN_FORMAT))
    logging.basicConfig(level=level, handlers=[handler])
