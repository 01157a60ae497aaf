from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from civic_auth.utils.passwords import generate_secure_token
from civic_auth.models import RevocationReason, User, UserSession, as_utc, utcnow
from civic_auth.utils.validation import normalize_email

from .database import Database
from .errors import StoreError, UnknownUser
from .records import NewSession, SessionRecord

logger = logging.getLogger("civic_auth.sessions")

DEFAULT_SESSION_TTL_SECONDS = 7 * 24 * 60 * 60


def build_session_row(user_id: int, new_session: NewSession, now: datetime) -> UserSession:
    return UserSession(
        user_id=user_id,
        session_token=new_session.session_token,
        device_info=new_session.device_info,
        ip_address=new_session.ip_address,
        user_agent=new_session.user_agent,
        created_at=now,
        last_active_at=now,
        expires_at=new_session.expires_at,
        is_active=True,
    )


def session_record(row: UserSession, email: str) -> SessionRecord:
    return SessionRecord(
        session_token=row.session_token,
        user_email=email,
        device_info=row.device_info,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=as_utc(row.created_at),
        last_active_at=as_utc(row.last_active_at),
        expires_at=as_utc(row.expires_at),
        is_active=row.is_active,
        revoked_at=as_utc(row.revoked_at),
        revoked_reason=row.revoked_reason,
    )


async def load_active_sessions(session: AsyncSession, user_id: int, email: str, now: datetime) -> tuple[SessionRecord, ...]:
    stmt = (
        select(UserSession)
        .where(
            UserSession.user_id == user_id,
            UserSession.is_active.is_(True),
            UserSession.expires_at > now,
        )
        .order_by(UserSession.created_at.desc(), UserSession.id.desc())
    )
    rows = (await session.scalars(stmt)).all()
    return tuple(session_record(row, email) for row in rows)


class SessionManager:
    """Issues and revokes login sessions.

    Expiry is absolute: activity refreshes ``last_active_at`` but never moves
    ``expires_at``. Revocation is soft so rows remain for audit.
    """

    def __init__(self, database: Database, session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS) -> None:
        self.database = database
        self.session_ttl_seconds = session_ttl_seconds

    async def create_session(
        self,
        email: str,
        session_token: str | None = None,
        device_info: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        ttl_seconds: int | None = None,
        now: datetime | None = None,
    ) -> SessionRecord:
        moment = now or utcnow()
        normalized_email = normalize_email(email)
        ttl = ttl_seconds if ttl_seconds is not None else self.session_ttl_seconds
        new_session = NewSession(
            session_token=session_token or generate_secure_token(),
            expires_at=moment + timedelta(seconds=ttl),
            device_info=device_info,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            async with self.database.session() as session:
                user_id = await session.scalar(select(User.id).where(User.email == normalized_email))
                if user_id is None:
                    raise UnknownUser(normalized_email)
                row = build_session_row(user_id, new_session, moment)
                session.add(row)
                await session.flush()
                record = session_record(row, normalized_email)
        except IntegrityError as exc:
            raise StoreError("session token already issued") from exc
        logger.info("session created", extra={"email": normalized_email, "expires_at": record.expires_at.isoformat()})
        return record

    async def get_session(self, session_token: str, now: datetime | None = None) -> SessionRecord | None:
        moment = now or utcnow()
        stmt = (
            select(UserSession, User.email)
            .join(User, UserSession.user_id == User.id)
            .where(
                UserSession.session_token == session_token,
                UserSession.is_active.is_(True),
                UserSession.expires_at > moment,
            )
        )
        async with self.database.session() as session:
            result = (await session.execute(stmt)).first()
        if result is None:
            return None
        row, email = result
        return session_record(row, email)

    async def update_session(
        self,
        session_token: str,
        last_active_at: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        moment = now or utcnow()
        stmt = (
            update(UserSession)
            .where(
                UserSession.session_token == session_token,
                UserSession.is_active.is_(True),
                UserSession.expires_at > moment,
            )
            .values(last_active_at=last_active_at or moment)
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def delete_session(
        self,
        session_token: str,
        reason: RevocationReason = RevocationReason.LOGOUT,
        now: datetime | None = None,
    ) -> bool:
        moment = now or utcnow()
        stmt = (
            update(UserSession)
            .where(UserSession.session_token == session_token, UserSession.is_active.is_(True))
            .values(is_active=False, revoked_at=moment, revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def delete_all_user_sessions(
        self,
        email: str,
        reason: RevocationReason = RevocationReason.SECURITY_LOGOUT,
        now: datetime | None = None,
    ) -> int:
        moment = now or utcnow()
        user_ids = select(User.id).where(User.email == normalize_email(email)).scalar_subquery()
        stmt = (
            update(UserSession)
            .where(UserSession.user_id == user_ids, UserSession.is_active.is_(True))
            .values(is_active=False, revoked_at=moment, revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
        return result.rowcount

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        moment = now or utcnow()
        stmt = (
            update(UserSession)
            .where(UserSession.expires_at < moment, UserSession.is_active.is_(True))
            .values(is_active=False, revoked_at=moment, revoked_reason=RevocationReason.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
        if result.rowcount:
            logger.info("expired sessions revoked", extra={"count": result.rowcount})
        return result.rowcount
