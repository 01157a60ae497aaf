from .logger import configure_logging, get_logger, log_security_decision
from .security import (
    DEFAULT_RULES,
    ActivityFinding,
    DetectionRule,
    LogResult,
    SecurityMonitor,
    multiple_failed_logins,
)

__all__ = [
    "DEFAULT_RULES",
    "ActivityFinding",
    "DetectionRule",
    "LogResult",
    "SecurityMonitor",
    "configure_logging",
    "get_logger",
    "log_security_decision",
    "multiple_failed_logins",
]
