"""Periodic cleanup sweep for expired tokens, sessions, rate limits and old events."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from civic_auth.auth.rate_limit import RateLimiter
from civic_auth.config import Settings, load_settings
from civic_auth.logging import SecurityMonitor, configure_logging, log_security_decision
from civic_auth.models import utcnow
from civic_auth.store import Database, EmailVerificationTokenStore, PasswordResetTokenStore, SessionManager, StoreError

logger = logging.getLogger("civic_auth.maintenance")


@dataclass(frozen=True)
class CleanupReport:
    password_reset_tokens: int
    email_verification_tokens: int
    sessions: int
    rate_limits: int
    security_events: int


async def run_cleanup(database: Database, settings: Settings, now: datetime | None = None) -> CleanupReport:
    moment = now or utcnow()
    retention = timedelta(days=settings.security_event_retention_days)
    report = CleanupReport(
        password_reset_tokens=await PasswordResetTokenStore(database).cleanup_expired(moment),
        email_verification_tokens=await EmailVerificationTokenStore(database).cleanup_expired(moment),
        sessions=await SessionManager(database).cleanup_expired(moment),
        rate_limits=await RateLimiter(database).cleanup_expired(moment),
        security_events=await SecurityMonitor(database).purge_security_events(moment - retention),
    )
    logger.info("cleanup finished", extra=asdict(report))
    return report


def _read_flag(value: str | None) -> bool:
    return str(value or "false").strip().lower() in ("1", "true", "yes")


async def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    poll_seconds = int(os.environ.get("MAINTENANCE_POLL_INTERVAL", "3600"))
    run_once = _read_flag(os.environ.get("MAINTENANCE_RUN_ONCE"))
    database = Database.from_settings(settings)

    try:
        while True:
            try:
                await run_cleanup(database, settings)
            except StoreError as exc:
                log_security_decision("maintenance", "system", "error", str(exc))
            if run_once:
                break
            await asyncio.sleep(poll_seconds)
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(main())
