"""Persistence boundary: engine, transactions and health checks."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, AsyncIterator

from sqlalchemy import event, func, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeout
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from civic_auth.models import Base, PasswordResetToken, User, UserSession, utcnow

from .errors import StoreError, StoreUnavailable

if TYPE_CHECKING:
    from civic_auth.config import Settings

logger = logging.getLogger("civic_auth.database")


@dataclass(frozen=True)
class ConnectionHealth:
    healthy: bool
    latency_ms: float | None = None
    error: str | None = None


@dataclass(frozen=True)
class IntegrityReport:
    healthy: bool
    issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class DatabaseHealth:
    healthy: bool
    connection: ConnectionHealth
    integrity: IntegrityReport


def async_database_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def _engine_options(url: str, pool_size: int, timeout_seconds: float) -> dict:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        options: dict = {"connect_args": {"timeout": timeout_seconds}}
        if parsed.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
            options["connect_args"]["check_same_thread"] = False
        return options
    return {
        "pool_size": pool_size,
        "max_overflow": pool_size * 2,
        "pool_timeout": timeout_seconds,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "connect_args": {"timeout": timeout_seconds, "command_timeout": timeout_seconds},
    }


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    def __init__(
        self,
        url: str,
        pool_size: int = 10,
        timeout_seconds: float = 5.0,
        health_check_timeout_seconds: float = 3.0,
        echo: bool = False,
    ) -> None:
        self.url = async_database_url(url)
        self.health_check_timeout_seconds = health_check_timeout_seconds
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=echo,
            **_engine_options(self.url, pool_size, timeout_seconds),
        )
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.sessionmaker = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Database":
        return cls(
            settings.database_url,
            pool_size=settings.db_pool_size,
            timeout_seconds=settings.db_timeout_seconds,
            health_check_timeout_seconds=settings.health_check_timeout_seconds,
            echo=settings.app_env == "development" and settings.log_level == "DEBUG",
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session wrapped in one transaction.

        Commits on clean exit and rolls back on any exception. Integrity violations
        are re-raised untouched so callers can map them to domain errors; driver
        and pool failures become ``StoreUnavailable``.
        """
        async with self.sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise
            except (OperationalError, InterfaceError, PoolTimeout, OSError) as exc:
                await self._safe_rollback(session)
                raise StoreUnavailable(str(exc)) from exc
            except SQLAlchemyError as exc:
                await self._safe_rollback(session)
                raise StoreError(str(exc)) from exc
            except BaseException:
                await self._safe_rollback(session)
                raise

    async def _safe_rollback(self, session: AsyncSession) -> None:
        try:
            await session.rollback()
        except (SQLAlchemyError, OSError):
            logger.warning("rollback failed after database error", exc_info=True)

    async def create_schema(self) -> None:
        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    async def drop_schema(self) -> None:
        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def check_connection(self, timeout: float | None = None) -> ConnectionHealth:
        budget = timeout if timeout is not None else self.health_check_timeout_seconds
        start = time.perf_counter()
        try:
            await asyncio.wait_for(self._ping(), timeout=budget)
        except asyncio.TimeoutError:
            return ConnectionHealth(healthy=False, error=f"timed out after {budget}s")
        except (SQLAlchemyError, OSError) as exc:
            return ConnectionHealth(healthy=False, error=str(exc))
        latency_ms = (time.perf_counter() - start) * 1000
        return ConnectionHealth(healthy=True, latency_ms=round(latency_ms, 2))

    async def _ping(self) -> None:
        async with self.engine.connect() as connection:
            await connection.execute(text("select 1"))

    async def validate_integrity(self, now: datetime | None = None) -> IntegrityReport:
        moment = now or utcnow()
        issues: list[str] = []
        try:
            async with self.session() as session:
                orphaned = await session.scalar(
                    select(func.count(UserSession.id))
                    .select_from(UserSession)
                    .outerjoin(User, UserSession.user_id == User.id)
                    .where(User.id.is_(None))
                )
                expired = await session.scalar(
                    select(func.count(PasswordResetToken.id)).where(
                        PasswordResetToken.expires_at < moment,
                        PasswordResetToken.used.is_(False),
                    )
                )
        except StoreError as exc:
            return IntegrityReport(healthy=False, issues=(f"Database integrity check failed: {exc}",))
        if orphaned:
            issues.append(f"Found {orphaned} orphaned user sessions")
        if expired:
            issues.append(f"Found {expired} expired password reset tokens")
        return IntegrityReport(healthy=not issues, issues=tuple(issues))

    async def check_health(self, timeout: float | None = None) -> DatabaseHealth:
        connection = await self.check_connection(timeout)
        if not connection.healthy:
            integrity = IntegrityReport(healthy=False, issues=("connection unavailable",))
        else:
            integrity = await self.validate_integrity()
        return DatabaseHealth(
            healthy=connection.healthy and integrity.healthy,
            connection=connection,
            integrity=integrity,
        )
