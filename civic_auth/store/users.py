from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from civic_auth.models import (
    EmailVerificationToken,
    PasswordResetToken,
    SecurityEvent,
    SecurityEventType,
    SuspiciousActivity,
    User,
    UserSession,
    as_utc,
    utcnow,
)
from civic_auth.utils.validation import normalize_email

from .database import Database
from .errors import DuplicateUser, StoreError
from .records import (
    EventContext,
    NewSecurityEvent,
    NewUser,
    SecurityEventRecord,
    SuspiciousActivityRecord,
    UserRecord,
    UserUpdate,
)
from .sessions import build_session_row, load_active_sessions

if TYPE_CHECKING:
    from civic_auth.logging.security import SecurityMonitor

logger = logging.getLogger("civic_auth.users")

RECENT_ACTIVITY_LIMIT = 10
SEARCH_LIMIT = 100


def security_event_record(row: SecurityEvent) -> SecurityEventRecord:
    return SecurityEventRecord(
        id=row.id,
        email=row.email,
        event_type=row.event_type,
        timestamp=as_utc(row.timestamp),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        details=row.details,
        risk_level=row.risk_level,
    )


def suspicious_activity_record(row: SuspiciousActivity) -> SuspiciousActivityRecord:
    return SuspiciousActivityRecord(
        id=row.id,
        email=row.email,
        activity_type=row.activity_type,
        severity=row.severity,
        timestamp=as_utc(row.timestamp),
        details=row.details,
        ip_address=row.ip_address,
        investigated=row.investigated,
        investigated_at=as_utc(row.investigated_at),
        investigated_by=row.investigated_by,
        resolution=row.resolution,
    )


def _like_pattern(value: str) -> str:
    escaped = value.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class UserStore:
    """CRUD over user rows.

    Emails are normalised before every lookup or write. Security-relevant writes
    are echoed to the monitor when one is attached.
    """

    def __init__(self, database: Database, monitor: "SecurityMonitor | None" = None) -> None:
        self.database = database
        self.monitor = monitor

    async def create_user(
        self,
        new_user: NewUser,
        now: datetime | None = None,
        context: EventContext | None = None,
    ) -> UserRecord:
        moment = now or utcnow()
        email = normalize_email(new_user.email)
        row = User(
            email=email,
            password_hash=new_user.password_hash,
            zip_code=new_user.zip_code.strip(),
            first_name=new_user.first_name,
            last_name=new_user.last_name,
            email_verified=new_user.email_verified,
            failed_login_attempts=0,
            created_at=moment,
            updated_at=moment,
        )
        try:
            async with self.database.session() as session:
                session.add(row)
                await session.flush()
                for new_session in new_user.initial_sessions:
                    session.add(build_session_row(row.id, new_session, moment))
        except IntegrityError as exc:
            if await self._email_exists(email):
                raise DuplicateUser(email) from exc
            raise StoreError(f"could not create user: {exc.orig}") from exc

        logger.info("user created", extra={"user_id": row.id})
        await self._log(email, SecurityEventType.ACCOUNT_CREATED, "Account registered", context)
        record = await self.get_user(email, now=moment)
        if record is None:
            raise StoreError(f"user vanished after creation: {email}")
        return record

    async def _email_exists(self, email: str) -> bool:
        async with self.database.session() as session:
            found = await session.scalar(select(User.id).where(User.email == email))
        return found is not None

    async def get_user(self, email: str, now: datetime | None = None) -> UserRecord | None:
        moment = now or utcnow()
        normalized = normalize_email(email)
        async with self.database.session() as session:
            row = await session.scalar(select(User).where(User.email == normalized))
            if row is None:
                return None
            sessions = await load_active_sessions(session, row.id, normalized, moment)
            last_event = await session.scalar(
                select(SecurityEvent)
                .where(or_(SecurityEvent.user_id == row.id, SecurityEvent.email == normalized))
                .order_by(SecurityEvent.timestamp.desc(), SecurityEvent.id.desc())
                .limit(1)
            )
            activities = (
                await session.scalars(
                    select(SuspiciousActivity)
                    .where(or_(SuspiciousActivity.user_id == row.id, SuspiciousActivity.email == normalized))
                    .order_by(SuspiciousActivity.timestamp.desc(), SuspiciousActivity.id.desc())
                    .limit(RECENT_ACTIVITY_LIMIT)
                )
            ).all()
            return self._record(
                row,
                sessions=sessions,
                last_event=security_event_record(last_event) if last_event is not None else None,
                activities=tuple(suspicious_activity_record(item) for item in activities),
            )

    async def update_user(
        self,
        email: str,
        patch: UserUpdate,
        now: datetime | None = None,
        context: EventContext | None = None,
    ) -> bool:
        """Apply the fields set on ``patch``. Returns False when the user is unknown."""
        changes = patch.changes()
        if not changes:
            return False
        moment = now or utcnow()
        normalized = normalize_email(email)
        values = dict(changes)
        if "zip_code" in values and isinstance(values["zip_code"], str):
            values["zip_code"] = values["zip_code"].strip()
        values["updated_at"] = moment
        if patch.touches_profile():
            values["profile_updated_at"] = moment
        stmt = (
            update(User)
            .where(User.email == normalized)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
        if not result.rowcount:
            return False
        for event_type in patch.security_event_types():
            await self._log(normalized, event_type, None, context)
        return True

    async def delete_user(self, email: str) -> bool:
        normalized = normalize_email(email)
        async with self.database.session() as session:
            user_id = await session.scalar(select(User.id).where(User.email == normalized))
            if user_id is None:
                return False
            await self._delete_dependents(session, user_id, normalized)
            await session.execute(
                delete(User).where(User.id == user_id).execution_options(synchronize_session=False)
            )
        logger.info("user deleted", extra={"user_id": user_id})
        return True

    async def _delete_dependents(self, session: AsyncSession, user_id: int, email: str) -> None:
        # Order matters for databases without ON DELETE support on every key.
        statements = (
            delete(UserSession).where(UserSession.user_id == user_id),
            delete(SecurityEvent).where(or_(SecurityEvent.user_id == user_id, SecurityEvent.email == email)),
            delete(SuspiciousActivity).where(
                or_(SuspiciousActivity.user_id == user_id, SuspiciousActivity.email == email)
            ),
            delete(PasswordResetToken).where(PasswordResetToken.email == email),
            delete(EmailVerificationToken).where(EmailVerificationToken.email == email),
        )
        for stmt in statements:
            await session.execute(stmt.execution_options(synchronize_session=False))

    async def get_users_by_zip_code(self, zip_code: str) -> list[UserRecord]:
        stmt = select(User).where(User.zip_code == zip_code.strip()).order_by(User.created_at.desc(), User.id.desc())
        async with self.database.session() as session:
            rows = (await session.scalars(stmt)).all()
        return [self._record(row) for row in rows]

    async def search_users_by_name(
        self,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> list[UserRecord]:
        filters = []
        if first_name and first_name.strip():
            filters.append(User.first_name.ilike(_like_pattern(first_name), escape="\\"))
        if last_name and last_name.strip():
            filters.append(User.last_name.ilike(_like_pattern(last_name), escape="\\"))
        if not filters:
            return []
        stmt = select(User).where(*filters).order_by(User.created_at.desc(), User.id.desc()).limit(SEARCH_LIMIT)
        async with self.database.session() as session:
            rows = (await session.scalars(stmt)).all()
        return [self._record(row) for row in rows]

    async def _log(
        self,
        email: str,
        event_type: SecurityEventType,
        details: str | None,
        context: EventContext | None,
    ) -> None:
        if self.monitor is None:
            return
        await self.monitor.log_security_event(email, NewSecurityEvent.from_context(event_type, details, context))

    @staticmethod
    def _record(
        row: User,
        sessions: tuple = (),
        last_event: SecurityEventRecord | None = None,
        activities: tuple = (),
    ) -> UserRecord:
        return UserRecord(
            id=row.id,
            email=row.email,
            password_hash=row.password_hash,
            zip_code=row.zip_code,
            first_name=row.first_name,
            last_name=row.last_name,
            email_verified=row.email_verified,
            email_verification_token=row.email_verification_token,
            email_verification_expires=as_utc(row.email_verification_expires),
            password_reset_token=row.password_reset_token,
            password_reset_expires=as_utc(row.password_reset_expires),
            failed_login_attempts=row.failed_login_attempts,
            account_locked_until=as_utc(row.account_locked_until),
            security_question_1=row.security_question_1,
            security_answer_1_hash=row.security_answer_1_hash,
            security_question_2=row.security_question_2,
            security_answer_2_hash=row.security_answer_2_hash,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
            profile_updated_at=as_utc(row.profile_updated_at),
            last_login_at=as_utc(row.last_login_at),
            active_sessions=sessions,
            last_security_event=last_event,
            suspicious_activity=activities,
        )
