from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from civic_auth.models import EmailVerificationToken, PasswordResetToken, TokenKind, as_utc, utcnow
from civic_auth.utils.passwords import generate_secure_token
from civic_auth.utils.validation import normalize_email

from .database import Database
from .errors import StoreError
from .records import TokenRecord

logger = logging.getLogger("civic_auth.tokens")


class _TokenStore:
    """Single-use, time-boxed tokens.

    Reads never filter on expiry or consumption; callers decide whether a token
    is usable via ``TokenRecord.is_valid``.
    """

    model: type[PasswordResetToken] | type[EmailVerificationToken]
    kind: TokenKind
    flag_column: str
    flag_at_column: str
    default_ttl_seconds: int

    def __init__(self, database: Database, ttl_seconds: int | None = None) -> None:
        self.database = database
        self.ttl_seconds = ttl_seconds or self.default_ttl_seconds

    async def create(
        self,
        email: str,
        token: str | None = None,
        ttl_seconds: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> TokenRecord:
        moment = now or utcnow()
        row = self.model(
            email=normalize_email(email),
            token=token or generate_secure_token(),
            created_at=moment,
            expires_at=moment + timedelta(seconds=ttl_seconds or self.ttl_seconds),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        setattr(row, self.flag_column, False)
        try:
            async with self.database.session() as session:
                session.add(row)
        except IntegrityError as exc:
            raise StoreError(f"{self.kind.value} token already exists") from exc
        logger.info("%s token created", self.kind.value, extra={"email": row.email})
        return self._record(row)

    async def get(self, token: str) -> TokenRecord | None:
        async with self.database.session() as session:
            row = await session.scalar(select(self.model).where(self.model.token == token))
        if row is None:
            return None
        return self._record(row)

    async def _mark_consumed(self, token: str, now: datetime | None = None) -> bool:
        moment = now or utcnow()
        flag = getattr(self.model, self.flag_column)
        stmt = (
            update(self.model)
            .where(self.model.token == token, flag.is_(False))
            .values({self.flag_column: True, self.flag_at_column: moment})
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def delete(self, token: str) -> bool:
        stmt = delete(self.model).where(self.model.token == token).execution_options(synchronize_session=False)
        async with self.database.session() as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        moment = now or utcnow()
        stmt = delete(self.model).where(self.model.expires_at < moment).execution_options(synchronize_session=False)
        async with self.database.session() as session:
            result = await session.execute(stmt)
        if result.rowcount:
            logger.info("expired %s tokens removed", self.kind.value, extra={"count": result.rowcount})
        return result.rowcount

    def _record(self, row) -> TokenRecord:
        return TokenRecord(
            kind=self.kind,
            email=row.email,
            token=row.token,
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
            consumed=bool(getattr(row, self.flag_column)),
            consumed_at=as_utc(getattr(row, self.flag_at_column)),
            ip_address=row.ip_address,
            user_agent=row.user_agent,
        )


class PasswordResetTokenStore(_TokenStore):
    model = PasswordResetToken
    kind = TokenKind.PASSWORD_RESET
    flag_column = "used"
    flag_at_column = "used_at"
    default_ttl_seconds = 60 * 60

    async def mark_used(self, token: str, now: datetime | None = None) -> bool:
        """Mark the token used. Returns False when it was already used or is unknown."""
        return await self._mark_consumed(token, now)


class EmailVerificationTokenStore(_TokenStore):
    model = EmailVerificationToken
    kind = TokenKind.EMAIL_VERIFICATION
    flag_column = "verified"
    flag_at_column = "verified_at"
    default_ttl_seconds = 24 * 60 * 60

    async def mark_verified(self, token: str, now: datetime | None = None) -> bool:
        return await self._mark_consumed(token, now)
