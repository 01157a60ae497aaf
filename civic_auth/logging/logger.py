from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

logger = logging.getLogger("civic_auth.decisions")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"civic_auth.{name}")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def log_security_decision(
    action: str,
    identifier: str,
    decision: str,
    reason: str,
    metadata: Mapping[str, Any] | None = None,
) -> None:
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "identifier": identifier,
        "decision": decision,
        "reason": reason,
        "metadata": dict(metadata) if metadata else {},
    }
    logger.info(json.dumps(entry, default=str))
