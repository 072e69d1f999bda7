"""
logging_config.py

Purpose:
  Process-wide logging setup for the API.

Handlers:
  - Console handler (human readable) at `LOG_LEVEL`.
  - When `LOG_DIR` is set, a JSON-lines file handler writing `backend.jsonl`
    so operators can tail structured records.
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

LOG_FILE_NAME = "backend.jsonl"

_CONSOLE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED = set(logging.makeLogRecord({}).__dict__.keys()) | {"message", "asctime"}


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    root = logging.getLogger()
    root.setLevel(level)

    # Idempotent: app factory may run more than once (tests, reload).
    for h in list(root.handlers):
        if getattr(h, "_gridmon", False):
            root.removeHandler(h)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    console._gridmon = True  # type: ignore[attr-defined]
    root.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        fh = logging.FileHandler(os.path.join(log_dir, LOG_FILE_NAME), encoding="utf-8")
        fh.setFormatter(JsonLineFormatter())
        fh._gridmon = True  # type: ignore[attr-defined]
        root.addHandler(fh)
