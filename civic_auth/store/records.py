"""Plain value objects handed across the store boundary.

ORM rows never leave a database session; every read returns one of these frozen
records and every write takes one of the ``New*`` inputs or a ``UserUpdate``.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from civic_auth.models import (
    ActivityType,
    RevocationReason,
    SecurityEventType,
    Severity,
    TokenKind,
    as_utc,
    utcnow,
)


class _Unset:
    _instance: "_Unset | None" = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class EventContext:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class SessionRecord:
    session_token: str
    user_email: str
    device_info: str | None
    ip_address: str | None
    user_agent: str | None
    created_at: datetime
    last_active_at: datetime
    expires_at: datetime
    is_active: bool
    revoked_at: datetime | None = None
    revoked_reason: RevocationReason | None = None

    def is_usable(self, now: datetime | None = None) -> bool:
        moment = now or utcnow()
        return self.is_active and as_utc(self.expires_at) > moment


@dataclass(frozen=True)
class SecurityEventRecord:
    id: int
    email: str | None
    event_type: SecurityEventType
    timestamp: datetime
    ip_address: str | None
    user_agent: str | None
    details: str | None
    risk_level: Severity


@dataclass(frozen=True)
class SuspiciousActivityRecord:
    id: int
    email: str | None
    activity_type: ActivityType
    severity: Severity
    timestamp: datetime
    details: str
    ip_address: str | None
    investigated: bool = False
    investigated_at: datetime | None = None
    investigated_by: str | None = None
    resolution: str | None = None


@dataclass(frozen=True)
class TokenRecord:
    kind: TokenKind
    email: str
    token: str
    created_at: datetime
    expires_at: datetime
    consumed: bool
    consumed_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        moment = now or utcnow()
        return not moment < as_utc(self.expires_at)

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.consumed and not self.is_expired(now)


@dataclass(frozen=True)
class UserRecord:
    id: int
    email: str
    password_hash: str
    zip_code: str
    first_name: str | None
    last_name: str | None
    email_verified: bool
    email_verification_token: str | None
    email_verification_expires: datetime | None
    password_reset_token: str | None
    password_reset_expires: datetime | None
    failed_login_attempts: int
    account_locked_until: datetime | None
    security_question_1: str | None
    security_answer_1_hash: str | None
    security_question_2: str | None
    security_answer_2_hash: str | None
    created_at: datetime
    updated_at: datetime
    profile_updated_at: datetime | None
    last_login_at: datetime | None
    active_sessions: tuple[SessionRecord, ...] = ()
    last_security_event: SecurityEventRecord | None = None
    suspicious_activity: tuple[SuspiciousActivityRecord, ...] = ()

    def is_locked(self, now: datetime | None = None) -> bool:
        moment = now or utcnow()
        locked_until = as_utc(self.account_locked_until)
        return locked_until is not None and locked_until > moment

    @property
    def has_security_questions(self) -> bool:
        return bool(
            self.security_question_1
            and self.security_answer_1_hash
            and self.security_question_2
            and self.security_answer_2_hash
        )


@dataclass(frozen=True)
class NewSession:
    session_token: str
    expires_at: datetime
    device_info: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class NewUser:
    email: str
    password_hash: str
    zip_code: str
    first_name: str | None = None
    last_name: str | None = None
    email_verified: bool = False
    initial_sessions: tuple[NewSession, ...] = ()


@dataclass(frozen=True)
class NewSecurityEvent:
    event_type: SecurityEventType
    details: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    risk_level: Severity = Severity.LOW
    timestamp: datetime | None = None

    @classmethod
    def from_context(
        cls,
        event_type: SecurityEventType,
        details: str | None = None,
        context: EventContext | None = None,
        risk_level: Severity = Severity.LOW,
    ) -> "NewSecurityEvent":
        context = context or EventContext()
        return cls(
            event_type=event_type,
            details=details,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            risk_level=risk_level,
        )


PROFILE_FIELDS = frozenset({"first_name", "last_name", "zip_code"})


@dataclass(frozen=True)
class UserUpdate:
    """Field-level patch for a user row.

    Fields left at ``UNSET`` are not written. ``None`` is a real value and clears
    the column, which is how a lock or a reset token is removed.
    """

    password_hash: Any = UNSET
    zip_code: Any = UNSET
    first_name: Any = UNSET
    last_name: Any = UNSET
    email_verified: Any = UNSET
    email_verification_token: Any = UNSET
    email_verification_expires: Any = UNSET
    password_reset_token: Any = UNSET
    password_reset_expires: Any = UNSET
    failed_login_attempts: Any = UNSET
    account_locked_until: Any = UNSET
    security_question_1: Any = UNSET
    security_answer_1_hash: Any = UNSET
    security_question_2: Any = UNSET
    security_answer_2_hash: Any = UNSET
    last_login_at: Any = UNSET

    def changes(self) -> dict[str, Any]:
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not UNSET
        }

    def touches_profile(self) -> bool:
        return bool(PROFILE_FIELDS & self.changes().keys())

    def security_event_types(self) -> list[SecurityEventType]:
        changes = self.changes()
        events: list[SecurityEventType] = []
        if "password_hash" in changes:
            events.append(SecurityEventType.PASSWORD_CHANGE)
        if changes.get("email_verified") is True:
            events.append(SecurityEventType.EMAIL_VERIFIED)
        if "account_locked_until" in changes:
            if changes["account_locked_until"] is None:
                events.append(SecurityEventType.ACCOUNT_UNLOCKED)
            else:
                events.append(SecurityEventType.ACCOUNT_LOCKED)
        return events

    def merged(self, other: "UserUpdate") -> "UserUpdate":
        return UserUpdate(**{**self.changes(), **other.changes()})

    @classmethod
    def set_password_hash(cls, password_hash: str) -> "UserUpdate":
        return cls(password_hash=password_hash)

    @classmethod
    def mark_email_verified(cls) -> "UserUpdate":
        return cls(email_verified=True, email_verification_token=None, email_verification_expires=None)

    @classmethod
    def lock_account(cls, until: datetime, failed_attempts: int | None = None) -> "UserUpdate":
        if failed_attempts is None:
            return cls(account_locked_until=until)
        return cls(account_locked_until=until, failed_login_attempts=failed_attempts)

    @classmethod
    def unlock_account(cls) -> "UserUpdate":
        return cls(account_locked_until=None, failed_login_attempts=0)

    @classmethod
    def record_failed_login(cls, failed_attempts: int) -> "UserUpdate":
        return cls(failed_login_attempts=failed_attempts)

    @classmethod
    def record_login(cls, at: datetime) -> "UserUpdate":
        return cls(last_login_at=at, failed_login_attempts=0)

    @classmethod
    def set_password_reset(cls, token: str | None, expires: datetime | None) -> "UserUpdate":
        return cls(password_reset_token=token, password_reset_expires=expires)

    @classmethod
    def set_email_verification(cls, token: str | None, expires: datetime | None) -> "UserUpdate":
        return cls(email_verification_token=token, email_verification_expires=expires)

    @classmethod
    def set_security_questions(
        cls,
        question_1: str,
        answer_1_hash: str,
        question_2: str,
        answer_2_hash: str,
    ) -> "UserUpdate":
        return cls(
            security_question_1=question_1,
            security_answer_1_hash=answer_1_hash,
            security_question_2=question_2,
            security_answer_2_hash=answer_2_hash,
        )

    @classmethod
    def update_profile(
        cls,
        first_name: Any = UNSET,
        last_name: Any = UNSET,
        zip_code: Any = UNSET,
    ) -> "UserUpdate":
        return cls(first_name=first_name, last_name=last_name, zip_code=zip_code)
