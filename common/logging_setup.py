from __future__ import annotations

import logging
import os
import sys
import json
import time
from typing import IO, Optional

# Root attribute marking that setup_logging() already ran
_MARK = "_dis_configured"


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "t": 1729333200000, "lvl": "INFO", "name": "dynamic_image_style.generator",
        "msg": "Derivative generated", "extra": {"style": "dynamic_w200", "ms": 12.3} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(record.created * 1000) if record.created else int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        # Structured context travels as extra={"extra": {...}}
        ctx = getattr(record, "extra", None)
        if isinstance(ctx, dict):
            payload["extra"] = ctx
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: Optional[str] = None, stream: Optional[IO[str]] = None, force: bool = False) -> None:
    """
    Send every record through one JSON handler on the root logger.

    Level: `level` argument, else env LOG_LEVEL, else INFO (unknown names → INFO).
    Later calls do nothing unless `force=True`, so libraries and the server
    entrypoint can both call it safely.
    """
    root = logging.getLogger()
    if getattr(root, _MARK, False) and not force:
        return

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_resolve_level(level))
    setattr(root, _MARK, True)


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)
