"""Append-only security event log and suspicious-activity detection.

Writing to the log is best effort: a failure is reported through ``LogResult``
and the operational logger, and never propagates into the calling flow.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from civic_auth.models import (
    ActivityType,
    RateLimit,
    RateLimitType,
    SecurityEvent,
    SecurityEventType,
    Severity,
    SuspiciousActivity,
    User,
    as_utc,
    utcnow,
)
from civic_auth.store.database import Database
from civic_auth.store.errors import StoreError
from civic_auth.store.records import (
    EventContext,
    NewSecurityEvent,
    SecurityEventRecord,
    SuspiciousActivityRecord,
)
from civic_auth.store.users import security_event_record, suspicious_activity_record
from civic_auth.utils.validation import normalize_email

FAILED_LOGIN_THRESHOLD = 3


@dataclass(frozen=True)
class LogResult:
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class ActivityFinding:
    activity_type: ActivityType
    severity: Severity
    details: str
    auto_blocked: bool = False
    manual_review_required: bool = False


DetectionRule = Callable[[Sequence[SecurityEventRecord]], ActivityFinding | None]


def multiple_failed_logins(events: Sequence[SecurityEventRecord]) -> ActivityFinding | None:
    failures = [item for item in events if item.event_type is SecurityEventType.FAILED_LOGIN]
    if len(failures) < FAILED_LOGIN_THRESHOLD:
        return None
    return ActivityFinding(
        activity_type=ActivityType.MULTIPLE_FAILED_LOGINS,
        severity=Severity.HIGH,
        details=f"{len(failures)} failed login attempts in the last {len(events)} events",
        manual_review_required=True,
    )


DEFAULT_RULES: tuple[DetectionRule, ...] = (multiple_failed_logins,)


class SecurityMonitor:
    LOOKBACK_EVENTS = 10

    def __init__(
        self,
        database: Database,
        rules: Sequence[DetectionRule] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.database = database
        self.rules = tuple(rules) if rules is not None else DEFAULT_RULES
        self.logger = logger or logging.getLogger("civic_auth.security")

    async def log_security_event(
        self,
        email: str | None,
        event: NewSecurityEvent,
        now: datetime | None = None,
    ) -> LogResult:
        normalized = normalize_email(email) if email else None
        entry = SecurityEvent(
            email=normalized,
            event_type=event.event_type,
            timestamp=event.timestamp or now or utcnow(),
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            details=event.details,
            risk_level=event.risk_level,
        )
        try:
            async with self.database.session() as session:
                entry.user_id = await self._user_id(session, normalized)
                session.add(entry)
                await session.flush()
                record = security_event_record(entry)
        except (StoreError, SQLAlchemyError) as exc:
            self.logger.warning(
                "security event not recorded",
                extra={"event_type": event.event_type.value, "error": str(exc)},
            )
            return LogResult(ok=False, error=str(exc))
        self._echo("security_event", record)
        return LogResult(ok=True)

    async def check_suspicious_activity(
        self,
        email: str,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> list[SuspiciousActivityRecord]:
        """Run every rule over the most recent events for ``email`` and persist findings."""
        normalized = normalize_email(email)
        context = context or EventContext()
        try:
            events = await self.get_security_events(normalized, limit=self.LOOKBACK_EVENTS)
            findings = [finding for finding in (rule(events) for rule in self.rules) if finding is not None]
            if not findings:
                return []
            return await self._persist_findings(normalized, findings, context, now or utcnow())
        except (StoreError, SQLAlchemyError) as exc:
            self.logger.warning("suspicious activity check failed", extra={"error": str(exc)})
            return []

    async def _persist_findings(
        self,
        email: str,
        findings: Sequence[ActivityFinding],
        context: EventContext,
        moment: datetime,
    ) -> list[SuspiciousActivityRecord]:
        async with self.database.session() as session:
            user_id = await self._user_id(session, email)
            rows = [
                SuspiciousActivity(
                    user_id=user_id,
                    email=email,
                    activity_type=finding.activity_type,
                    severity=finding.severity,
                    timestamp=moment,
                    details=finding.details,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    auto_blocked=finding.auto_blocked,
                    manual_review_required=finding.manual_review_required,
                )
                for finding in findings
            ]
            session.add_all(rows)
            await session.flush()
            records = [suspicious_activity_record(row) for row in rows]
        for record in records:
            self._echo("suspicious_activity", record)
        return records

    async def should_block_request(
        self,
        identifier: str,
        limit_type: RateLimitType = RateLimitType.GENERAL,
        now: datetime | None = None,
    ) -> bool:
        moment = now or utcnow()
        stmt = select(RateLimit).where(
            RateLimit.identifier == identifier,
            RateLimit.rate_limit_type == limit_type,
        )
        try:
            async with self.database.session() as session:
                row = await session.scalar(stmt)
        except StoreError as exc:
            self.logger.warning("block check unavailable, allowing request", extra={"error": str(exc)})
            return False
        if row is None or not row.blocked:
            return False
        blocked_until = as_utc(row.blocked_until)
        return blocked_until is not None and moment < blocked_until

    async def get_security_events(self, email: str, limit: int = 50, offset: int = 0) -> list[SecurityEventRecord]:
        stmt = (
            select(SecurityEvent)
            .where(SecurityEvent.email == normalize_email(email))
            .order_by(SecurityEvent.timestamp.desc(), SecurityEvent.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return await self._events(stmt)

    async def get_security_events_by_time_range(
        self,
        start: datetime,
        end: datetime,
        limit: int = 1000,
    ) -> list[SecurityEventRecord]:
        stmt = (
            select(SecurityEvent)
            .where(SecurityEvent.timestamp >= start, SecurityEvent.timestamp <= end)
            .order_by(SecurityEvent.timestamp.desc(), SecurityEvent.id.desc())
            .limit(limit)
        )
        return await self._events(stmt)

    async def get_security_events_by_type(
        self,
        event_type: SecurityEventType,
        limit: int = 100,
    ) -> list[SecurityEventRecord]:
        stmt = (
            select(SecurityEvent)
            .where(SecurityEvent.event_type == event_type)
            .order_by(SecurityEvent.timestamp.desc(), SecurityEvent.id.desc())
            .limit(limit)
        )
        return await self._events(stmt)

    async def get_suspicious_activity(
        self,
        window: timedelta = timedelta(hours=24),
        now: datetime | None = None,
    ) -> list[SuspiciousActivityRecord]:
        since = (now or utcnow()) - window
        stmt = (
            select(SuspiciousActivity)
            .where(SuspiciousActivity.timestamp >= since)
            .order_by(SuspiciousActivity.timestamp.desc(), SuspiciousActivity.id.desc())
        )
        return await self._activities(stmt)

    async def get_suspicious_activity_by_email(self, email: str, limit: int = 50) -> list[SuspiciousActivityRecord]:
        stmt = (
            select(SuspiciousActivity)
            .where(SuspiciousActivity.email == normalize_email(email))
            .order_by(SuspiciousActivity.timestamp.desc(), SuspiciousActivity.id.desc())
            .limit(limit)
        )
        return await self._activities(stmt)

    async def get_suspicious_activity_by_ip(self, ip_address: str, limit: int = 50) -> list[SuspiciousActivityRecord]:
        stmt = (
            select(SuspiciousActivity)
            .where(SuspiciousActivity.ip_address == ip_address)
            .order_by(SuspiciousActivity.timestamp.desc(), SuspiciousActivity.id.desc())
            .limit(limit)
        )
        return await self._activities(stmt)

    async def resolve_activity(
        self,
        activity_id: int,
        investigated_by: str,
        resolution: str,
        now: datetime | None = None,
    ) -> bool:
        stmt = (
            update(SuspiciousActivity)
            .where(SuspiciousActivity.id == activity_id)
            .values(
                investigated=True,
                investigated_at=now or utcnow(),
                investigated_by=investigated_by,
                resolution=resolution,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
        if result.rowcount:
            self.logger.info(
                "suspicious activity resolved",
                extra={"activity_id": activity_id, "investigated_by": investigated_by},
            )
        return result.rowcount > 0

    async def purge_security_events(self, older_than: datetime) -> int:
        stmt = (
            delete(SecurityEvent)
            .where(SecurityEvent.timestamp < older_than)
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
        if result.rowcount:
            self.logger.info("security events purged", extra={"count": result.rowcount})
        return result.rowcount

    async def _events(self, stmt) -> list[SecurityEventRecord]:
        async with self.database.session() as session:
            rows = (await session.scalars(stmt)).all()
        return [security_event_record(row) for row in rows]

    async def _activities(self, stmt) -> list[SuspiciousActivityRecord]:
        async with self.database.session() as session:
            rows = (await session.scalars(stmt)).all()
        return [suspicious_activity_record(row) for row in rows]

    @staticmethod
    async def _user_id(session, email: str | None) -> int | None:
        if not email:
            return None
        return await session.scalar(select(User.id).where(User.email == email))

    def _echo(self, category: str, record: SecurityEventRecord | SuspiciousActivityRecord) -> None:
        payload = {"category": category}
        for name, value in vars(record).items():
            payload[name] = value.value if hasattr(value, "value") else value
        self.logger.info(json.dumps(payload, default=str))
