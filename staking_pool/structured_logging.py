import json
import logging
import os
import time
from typing import Any, Optional


def _now_ms() -> int:
    return int(time.time() * 1000)


def configure_structured_logging(level_name: Optional[str] = None) -> None:
    """Configure stdlib logging for JSON-lines output on stdout.

    Level comes from the argument, then STAKING_POOL_LOG_LEVEL, then INFO.
    Safe to call more than once.
    """
    level_name = (level_name or os.getenv("STAKING_POOL_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if getattr(root, "_staking_pool_configured", False):
        root.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root.handlers = [handler]
    root.setLevel(level)
    setattr(root, "_staking_pool_configured", True)


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    payload: dict[str, Any] = {"ts_ms": _now_ms(), "event": event}
    payload.update(fields)
    logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))
