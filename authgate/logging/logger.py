from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

logger = logging.getLogger("authgate.auth")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"authgate.{name}")


def log_auth_event(
    flow: str,
    outcome: str,
    uid: str | None = None,
    reason: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> None:
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "flow": flow,
        "outcome": outcome,
        "uid": uid,
        "reason": reason,
        "metadata": dict(metadata) if metadata else {},
    }
    level = logging.WARNING if outcome == "rejected" else logging.INFO
    logger.log(level, json.dumps(entry, default=str))
