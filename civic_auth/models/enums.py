from __future__ import annotations

from enum import Enum


class SecurityEventType(Enum):
    ACCOUNT_CREATED = "account_created"
    LOGIN = "login"
    FAILED_LOGIN = "failed_login"
    LOGOUT = "logout"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET = "password_reset"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    EMAIL_VERIFIED = "email_verified"
    SECURITY_QUESTIONS_UPDATED = "security_questions_updated"
    USERNAME_RECOVERED = "username_recovered"
    PROFILE_UPDATED = "profile_updated"


class ActivityType(Enum):
    MULTIPLE_FAILED_LOGINS = "multiple_failed_logins"
    UNUSUAL_LOCATION = "unusual_location"
    PASSWORD_SPRAY = "password_spray"
    ACCOUNT_ENUMERATION = "account_enumeration"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RateLimitType(Enum):
    GENERAL = "general"
    LOGIN = "login"
    PASSWORD_RESET = "password_reset"
    USERNAME_RECOVERY = "username_recovery"


class RevocationReason(Enum):
    LOGOUT = "logout"
    SECURITY_LOGOUT = "security_logout"
    EXPIRED = "expired"


class TokenKind(Enum):
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


def enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]
