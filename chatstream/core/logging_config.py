"""Structured logging for encoder and decoder. No secrets in log output."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

SERVICE_NAME = "chatstream"

_SECRET_MARKERS = ("api_key", "password", "secret", "bearer", "authorization")

# LogRecord attributes that are not user-supplied context
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _redact(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_redact(v) for v in obj]
    if isinstance(obj, str) and any(s in obj.lower() for s in _SECRET_MARKERS):
        return "[REDACTED]"
    return obj


class StructuredFormatter(logging.Formatter):
    """JSON or key=value lines tagged with service and module; redacts secrets in extra context."""

    def __init__(self, use_json: bool = True) -> None:
        super().__init__()
        self.use_json = use_json

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "module": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_dict[key] = _redact(value)
        if self.use_json:
            return json.dumps(log_dict, default=str, ensure_ascii=False)
        return " ".join(f"{k}={v!r}" for k, v in log_dict.items())


def setup_logging(level: str = "INFO", use_json: bool = True) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(StructuredFormatter(use_json=use_json))
        root.addHandler(handler)
