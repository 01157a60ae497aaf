from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError

from civic_auth.logging.logger import log_security_decision
from civic_auth.models import RateLimit, RateLimitType, as_utc, utcnow
from civic_auth.store.database import Database
from civic_auth.store.errors import StoreError

STALE_AFTER = timedelta(hours=24)


@dataclass(frozen=True)
class RateLimitPolicy:
    max_attempts: int
    window_ms: int

    @property
    def window(self) -> timedelta:
        return timedelta(milliseconds=self.window_ms)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining_attempts: int
    reset_time: datetime


class RateLimiter:
    """Fixed-window attempt counter keyed by ``(identifier, limit_type)``.

    The counter lives in the ``rate_limits`` table. When the store cannot be
    reached the limiter fails open and logs a warning.
    """

    def __init__(self, database: Database, logger: logging.Logger | None = None) -> None:
        self.database = database
        self.logger = logger or logging.getLogger("civic_auth.rate_limit")

    async def check(
        self,
        identifier: str,
        policy: RateLimitPolicy,
        limit_type: RateLimitType = RateLimitType.GENERAL,
        now: datetime | None = None,
    ) -> RateLimitResult:
        return await self.check_rate_limit(identifier, policy.max_attempts, policy.window_ms, limit_type, now)

    async def check_rate_limit(
        self,
        identifier: str,
        max_attempts: int,
        window_ms: int,
        limit_type: RateLimitType = RateLimitType.GENERAL,
        now: datetime | None = None,
    ) -> RateLimitResult:
        moment = now or utcnow()
        window = timedelta(milliseconds=window_ms)
        try:
            try:
                result = await self._record_attempt(identifier, max_attempts, window, limit_type, moment)
            except IntegrityError:
                # A concurrent first attempt created the row; count against it.
                result = await self._record_attempt(identifier, max_attempts, window, limit_type, moment)
        except (StoreError, IntegrityError) as exc:
            self.logger.warning(
                "rate limit store unavailable, failing open",
                extra={"identifier": identifier, "limit_type": limit_type.value, "error": str(exc)},
            )
            return RateLimitResult(allowed=True, remaining_attempts=max_attempts, reset_time=moment + window)

        if not result.allowed:
            log_security_decision(
                action=limit_type.value,
                identifier=identifier,
                decision="deny",
                reason="rate_limited",
                metadata={"reset_time": result.reset_time.isoformat()},
            )
        return result

    async def _record_attempt(
        self,
        identifier: str,
        max_attempts: int,
        window: timedelta,
        limit_type: RateLimitType,
        moment: datetime,
    ) -> RateLimitResult:
        stmt = (
            select(RateLimit)
            .where(RateLimit.identifier == identifier, RateLimit.rate_limit_type == limit_type)
            .with_for_update()
        )
        async with self.database.session() as session:
            row = await session.scalar(stmt)
            if row is None:
                session.add(
                    RateLimit(
                        identifier=identifier,
                        rate_limit_type=limit_type,
                        attempts=1,
                        window_start=moment,
                        blocked=False,
                        created_at=moment,
                        updated_at=moment,
                    )
                )
                await session.flush()
                return RateLimitResult(True, max(max_attempts - 1, 0), moment + window)

            window_start = as_utc(row.window_start)
            row.updated_at = moment
            if moment - window_start > window:
                row.attempts = 1
                row.window_start = moment
                row.blocked = False
                row.blocked_until = None
                return RateLimitResult(True, max(max_attempts - 1, 0), moment + window)

            blocked_until = as_utc(row.blocked_until)
            if row.blocked and blocked_until is not None and moment < blocked_until:
                return RateLimitResult(False, 0, blocked_until)

            row.attempts += 1
            if row.attempts >= max_attempts:
                row.blocked = True
                row.blocked_until = moment + window
                return RateLimitResult(False, 0, row.blocked_until)
            return RateLimitResult(True, max_attempts - row.attempts, window_start + window)

    async def reset(self, identifier: str, limit_type: RateLimitType = RateLimitType.GENERAL) -> bool:
        stmt = (
            delete(RateLimit)
            .where(RateLimit.identifier == identifier, RateLimit.rate_limit_type == limit_type)
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def cleanup_expired(self, now: datetime | None = None, stale_after: timedelta = STALE_AFTER) -> int:
        moment = now or utcnow()
        stmt = (
            delete(RateLimit)
            .where(
                RateLimit.updated_at < moment - stale_after,
                or_(RateLimit.blocked.is_(False), RateLimit.blocked_until < moment),
            )
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
        if result.rowcount:
            self.logger.info("stale rate limits removed", extra={"count": result.rowcount})
        return result.rowcount
