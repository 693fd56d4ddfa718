from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

_EXTRA_FIELDS = (
    "trace_id",
    "session_id",
    "chat_id",
    "chat_type",
    "pending_id",
    "tool_name",
    "duration_ms",
    "outcome",
    "reason",
    "path",
    "status",
    "method",
    "pid",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname.lower(),
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def _configure(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


def get_runtime_logger() -> logging.Logger:
    return _configure("sandbox_agent.runtime")


def get_security_logger() -> logging.Logger:
    return _configure("sandbox_agent.security")
