from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Mapping, Protocol

from civic_auth.logging.logger import log_security_decision
from civic_auth.logging.security import SecurityMonitor
from civic_auth.models import RateLimitType, RevocationReason, SecurityEventType, Severity, utcnow
from civic_auth.store import (
    UNSET,
    DuplicateUser,
    EmailVerificationTokenStore,
    EventContext,
    NewSecurityEvent,
    NewUser,
    PasswordResetTokenStore,
    SessionManager,
    SessionRecord,
    StoreError,
    TokenRecord,
    UserRecord,
    UserStore,
    UserUpdate,
)
from civic_auth.utils.passwords import (
    HashingError,
    hash_password,
    hash_security_answer,
    verify_password,
    verify_security_answer,
)
from civic_auth.utils.validation import (
    collect,
    mask_email,
    normalize_email,
    validate_email,
    validate_password,
    validate_registration,
    validate_zip_code,
)

from .notifier import HttpAccountNotifier
from .rate_limit import RateLimiter, RateLimitPolicy, RateLimitResult

if TYPE_CHECKING:
    from civic_auth.config import Settings
    from civic_auth.store import Database

logger = logging.getLogger("civic_auth.auth")

PASSWORD_RESET_MESSAGE = "If an account exists for that email, a password reset link has been sent."


class AuthError(Exception):
    def __init__(
        self,
        code: str,
        fields: Mapping[str, str] | None = None,
        retry_at: datetime | None = None,
    ) -> None:
        super().__init__(code)
        self.code = code
        self.fields = dict(fields) if fields else {}
        self.retry_at = retry_at


class AccountNotifier(Protocol):
    async def send_password_reset(self, email: str, first_name: str | None, token: str, expires_at: datetime) -> bool: ...

    async def send_email_verification(
        self, email: str, first_name: str | None, token: str, expires_at: datetime
    ) -> bool: ...


@dataclass(frozen=True)
class RegistrationResult:
    user: UserRecord
    session: SessionRecord
    verification_token: TokenRecord


@dataclass(frozen=True)
class LoginResult:
    user: UserRecord
    session: SessionRecord


class AuthService:
    """Account flows composed from the stores, the rate limiter and the monitor."""

    def __init__(
        self,
        users: UserStore,
        sessions: SessionManager,
        reset_tokens: PasswordResetTokenStore,
        verification_tokens: EmailVerificationTokenStore,
        rate_limiter: RateLimiter,
        monitor: SecurityMonitor,
        login_policy: RateLimitPolicy = RateLimitPolicy(5, 15 * 60 * 1000),
        password_reset_policy: RateLimitPolicy = RateLimitPolicy(3, 60 * 60 * 1000),
        username_recovery_policy: RateLimitPolicy = RateLimitPolicy(3, 60 * 60 * 1000),
        max_failed_attempts: int = 5,
        lockout_minutes: int = 30,
        notifier: AccountNotifier | None = None,
        owns_notifier: bool = False,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.reset_tokens = reset_tokens
        self.verification_tokens = verification_tokens
        self.rate_limiter = rate_limiter
        self.monitor = monitor
        self.login_policy = login_policy
        self.password_reset_policy = password_reset_policy
        self.username_recovery_policy = username_recovery_policy
        self.max_failed_attempts = max_failed_attempts
        self.lockout_minutes = lockout_minutes
        self.notifier = notifier
        self._owns_notifier = owns_notifier

    async def aclose(self) -> None:
        if self._owns_notifier and self.notifier is not None:
            await self.notifier.aclose()

    async def register(
        self,
        email: str,
        password: str,
        zip_code: str,
        first_name: str | None = None,
        last_name: str | None = None,
        device_info: str | None = None,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> RegistrationResult:
        moment = now or utcnow()
        context = context or EventContext()
        validation = validate_registration(email, password, zip_code)
        if not validation.passed:
            raise AuthError("validation_failed", fields=validation.errors)

        password_hash = await self._hash(hash_password, password)
        try:
            user = await self.users.create_user(
                NewUser(
                    email=email,
                    password_hash=password_hash,
                    zip_code=zip_code,
                    first_name=first_name,
                    last_name=last_name,
                ),
                now=moment,
                context=context,
            )
        except DuplicateUser as exc:
            raise AuthError("user_exists") from exc

        session = await self.sessions.create_session(
            user.email,
            device_info=device_info,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            now=moment,
        )
        verification = await self.issue_email_verification(user.email, context=context, now=moment)
        refreshed = await self.users.get_user(user.email, now=moment)
        return RegistrationResult(user=refreshed or user, session=session, verification_token=verification)

    async def login(
        self,
        email: str,
        password: str,
        device_info: str | None = None,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> LoginResult:
        moment = now or utcnow()
        context = context or EventContext()
        normalized = normalize_email(email or "")

        if context.ip_address:
            await self._enforce(context.ip_address, self.login_policy, RateLimitType.LOGIN, moment)
        if validate_email(normalized) is not None or not password:
            raise AuthError("invalid_credentials")
        await self._enforce(normalized, self.login_policy, RateLimitType.LOGIN, moment)

        user = await self.users.get_user(normalized, now=moment)
        if user is None:
            await self._record_failed_login(normalized, "unknown account", context, moment)
            raise AuthError("invalid_credentials")
        if user.is_locked(moment):
            await self._record_failed_login(normalized, "account locked", context, moment)
            raise AuthError("account_locked", retry_at=user.account_locked_until)

        if not await self._matches(verify_password, password, user.password_hash):
            await self._register_failure(user, context, moment)
            raise AuthError("invalid_credentials")

        patch = UserUpdate.record_login(moment)
        if user.account_locked_until is not None:
            patch = patch.merged(UserUpdate.unlock_account())
        await self.users.update_user(normalized, patch, now=moment, context=context)
        session = await self.sessions.create_session(
            normalized,
            device_info=device_info,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            now=moment,
        )
        try:
            await self.rate_limiter.reset(normalized, RateLimitType.LOGIN)
        except StoreError as exc:
            logger.warning("login rate limit not reset", extra={"user_id": user.id, "error": str(exc)})
        await self.monitor.log_security_event(
            normalized,
            NewSecurityEvent.from_context(SecurityEventType.LOGIN, "Successful login", context),
            now=moment,
        )
        refreshed = await self.users.get_user(normalized, now=moment)
        return LoginResult(user=refreshed or user, session=session)

    async def logout(self, session_token: str, context: EventContext | None = None) -> bool:
        session = await self.sessions.get_session(session_token)
        revoked = await self.sessions.delete_session(session_token, RevocationReason.LOGOUT)
        if session is not None and revoked:
            await self.monitor.log_security_event(
                session.user_email,
                NewSecurityEvent.from_context(SecurityEventType.LOGOUT, None, context),
            )
        return revoked

    async def authenticate_session(self, session_token: str, now: datetime | None = None) -> SessionRecord:
        moment = now or utcnow()
        session = await self.sessions.get_session(session_token, now=moment)
        if session is None:
            raise AuthError("invalid_session")
        await self.sessions.update_session(session_token, now=moment)
        return session

    async def request_password_reset(
        self,
        email: str,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> str:
        """Start a reset. The return value never reveals whether the account exists."""
        moment = now or utcnow()
        context = context or EventContext()
        normalized = normalize_email(email or "")
        if validate_email(normalized) is not None:
            return PASSWORD_RESET_MESSAGE

        if await self.monitor.should_block_request(normalized, RateLimitType.PASSWORD_RESET, now=moment):
            raise AuthError("rate_limited")
        await self._enforce(normalized, self.password_reset_policy, RateLimitType.PASSWORD_RESET, moment)

        user = await self.users.get_user(normalized, now=moment)
        if user is None:
            log_security_decision("password_reset", normalized, "ignore", "unknown_account")
            return PASSWORD_RESET_MESSAGE

        token = await self.reset_tokens.create(
            normalized,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            now=moment,
        )
        await self.users.update_user(
            normalized,
            UserUpdate.set_password_reset(token.token, token.expires_at),
            now=moment,
        )
        await self.monitor.log_security_event(
            normalized,
            NewSecurityEvent.from_context(SecurityEventType.PASSWORD_RESET_REQUESTED, None, context),
            now=moment,
        )
        if self.notifier is not None:
            sent = await self.notifier.send_password_reset(normalized, user.first_name, token.token, token.expires_at)
            if not sent:
                logger.warning("password reset email not delivered", extra={"user_id": user.id})
        return PASSWORD_RESET_MESSAGE

    async def reset_password(
        self,
        token: str,
        new_password: str,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> UserRecord:
        moment = now or utcnow()
        problem = validate_password(new_password)
        if problem:
            raise AuthError("validation_failed", fields={"password": problem})

        record = await self.reset_tokens.get(token)
        self._require_usable(record, moment)
        user = await self.users.get_user(record.email, now=moment)
        if user is None:
            raise AuthError("invalid_token")
        password_hash = await self._hash(hash_password, new_password)
        if not await self.reset_tokens.mark_used(token, now=moment):
            raise AuthError("token_used")

        patch = UserUpdate.set_password_hash(password_hash).merged(UserUpdate.set_password_reset(None, None))
        if user.account_locked_until is not None:
            patch = patch.merged(UserUpdate.unlock_account())
        elif user.failed_login_attempts:
            patch = patch.merged(UserUpdate.record_failed_login(0))
        await self.users.update_user(user.email, patch, now=moment, context=context)
        revoked = await self.sessions.delete_all_user_sessions(user.email, RevocationReason.SECURITY_LOGOUT, now=moment)
        await self.monitor.log_security_event(
            user.email,
            NewSecurityEvent.from_context(
                SecurityEventType.PASSWORD_RESET,
                f"Password reset via token; {revoked} sessions revoked",
                context,
                Severity.MEDIUM,
            ),
            now=moment,
        )
        return await self.users.get_user(user.email, now=moment) or user

    async def change_password(
        self,
        email: str,
        current_password: str,
        new_password: str,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> None:
        moment = now or utcnow()
        problem = validate_password(new_password)
        if problem:
            raise AuthError("validation_failed", fields={"new_password": problem})
        normalized = normalize_email(email or "")
        if validate_email(normalized) is not None:
            raise AuthError("invalid_credentials")
        user = await self.users.get_user(normalized, now=moment)
        if user is None or not await self._matches(verify_password, current_password, user.password_hash):
            raise AuthError("invalid_credentials")
        if await self._matches(verify_password, new_password, user.password_hash):
            raise AuthError("password_reuse")
        password_hash = await self._hash(hash_password, new_password)
        await self.users.update_user(user.email, UserUpdate.set_password_hash(password_hash), now=moment, context=context)

    async def update_profile(
        self,
        email: str,
        first_name: str | None = UNSET,
        last_name: str | None = UNSET,
        zip_code: str = UNSET,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> UserRecord:
        """Write only the profile fields that were passed."""
        moment = now or utcnow()
        if zip_code is not UNSET:
            problem = validate_zip_code(zip_code)
            if problem:
                raise AuthError("validation_failed", fields={"zip_code": problem})
        user = await self.users.get_user(email or "", now=moment)
        if user is None:
            raise AuthError("user_not_found")

        patch = UserUpdate.update_profile(first_name=first_name, last_name=last_name, zip_code=zip_code)
        if not patch.changes():
            return user
        await self.users.update_user(user.email, patch, now=moment)
        await self.monitor.log_security_event(
            user.email,
            NewSecurityEvent.from_context(SecurityEventType.PROFILE_UPDATED, "Profile updated", context),
            now=moment,
        )
        return await self.users.get_user(user.email, now=moment) or user

    async def setup_security_questions(
        self,
        email: str,
        question_1: str,
        answer_1: str,
        question_2: str,
        answer_2: str,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> None:
        moment = now or utcnow()
        validation = collect(
            question_1=None if (question_1 or "").strip() else "Security question is required",
            answer_1=None if (answer_1 or "").strip() else "Security answer is required",
            question_2=None if (question_2 or "").strip() else "Security question is required",
            answer_2=None if (answer_2 or "").strip() else "Security answer is required",
        )
        if not validation.passed:
            raise AuthError("validation_failed", fields=validation.errors)
        if question_1.strip().lower() == question_2.strip().lower():
            raise AuthError("validation_failed", fields={"question_2": "Security questions must differ"})
        user = await self.users.get_user(email, now=moment)
        if user is None:
            raise AuthError("user_not_found")

        answer_1_hash = await self._hash(hash_security_answer, answer_1)
        answer_2_hash = await self._hash(hash_security_answer, answer_2)
        await self.users.update_user(
            user.email,
            UserUpdate.set_security_questions(question_1.strip(), answer_1_hash, question_2.strip(), answer_2_hash),
            now=moment,
        )
        await self.monitor.log_security_event(
            user.email,
            NewSecurityEvent.from_context(SecurityEventType.SECURITY_QUESTIONS_UPDATED, None, context),
            now=moment,
        )

    async def issue_email_verification(
        self,
        email: str,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> TokenRecord:
        moment = now or utcnow()
        context = context or EventContext()
        user = await self.users.get_user(email, now=moment)
        if user is None:
            raise AuthError("user_not_found")
        if user.email_verified:
            raise AuthError("already_verified")
        token = await self.verification_tokens.create(
            user.email,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            now=moment,
        )
        await self.users.update_user(
            user.email,
            UserUpdate.set_email_verification(token.token, token.expires_at),
            now=moment,
        )
        if self.notifier is not None:
            sent = await self.notifier.send_email_verification(user.email, user.first_name, token.token, token.expires_at)
            if not sent:
                logger.warning("verification email not delivered", extra={"user_id": user.id})
        return token

    async def verify_email(
        self,
        token: str,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> UserRecord:
        moment = now or utcnow()
        record = await self.verification_tokens.get(token)
        self._require_usable(record, moment)
        if not await self.verification_tokens.mark_verified(token, now=moment):
            raise AuthError("token_used")
        if not await self.users.update_user(record.email, UserUpdate.mark_email_verified(), now=moment, context=context):
            raise AuthError("user_not_found")
        user = await self.users.get_user(record.email, now=moment)
        if user is None:
            raise AuthError("user_not_found")
        return user

    async def recover_username(
        self,
        zip_code: str,
        answer_1: str,
        answer_2: str,
        first_name: str | None = None,
        last_name: str | None = None,
        context: EventContext | None = None,
        now: datetime | None = None,
    ) -> str:
        """Return the masked email of the single account matching ZIP, name and both answers."""
        moment = now or utcnow()
        context = context or EventContext()
        problem = validate_zip_code(zip_code)
        if problem:
            raise AuthError("validation_failed", fields={"zip_code": problem})
        identifier = context.ip_address or zip_code.strip()
        await self._enforce(identifier, self.username_recovery_policy, RateLimitType.USERNAME_RECOVERY, moment)
        if not (answer_1 or "").strip() or not (answer_2 or "").strip():
            raise AuthError("recovery_failed")

        candidates = [
            user
            for user in await self.users.get_users_by_zip_code(zip_code)
            if user.has_security_questions
            and _name_matches(user.first_name, first_name)
            and _name_matches(user.last_name, last_name)
        ]
        matches = []
        for user in candidates:
            if await self._matches(verify_security_answer, answer_1, user.security_answer_1_hash) and await self._matches(
                verify_security_answer, answer_2, user.security_answer_2_hash
            ):
                matches.append(user)
        if len(matches) != 1:
            log_security_decision("username_recovery", identifier, "deny", "no_unique_match", {"candidates": len(candidates)})
            raise AuthError("recovery_failed")

        user = matches[0]
        await self.monitor.log_security_event(
            user.email,
            NewSecurityEvent.from_context(SecurityEventType.USERNAME_RECOVERED, None, context, Severity.MEDIUM),
            now=moment,
        )
        return mask_email(user.email)

    async def _enforce(
        self,
        identifier: str,
        policy: RateLimitPolicy,
        limit_type: RateLimitType,
        moment: datetime,
    ) -> RateLimitResult:
        result = await self.rate_limiter.check(identifier, policy, limit_type, now=moment)
        if not result.allowed:
            raise AuthError("rate_limited", retry_at=result.reset_time)
        return result

    async def _register_failure(self, user: UserRecord, context: EventContext, moment: datetime) -> None:
        attempts = user.failed_login_attempts + 1
        if attempts >= self.max_failed_attempts:
            until = moment + timedelta(minutes=self.lockout_minutes)
            await self.users.update_user(user.email, UserUpdate.lock_account(until, attempts), now=moment, context=context)
            log_security_decision("login", user.email, "lock", "too_many_failures", {"locked_until": until.isoformat()})
        else:
            await self.users.update_user(user.email, UserUpdate.record_failed_login(attempts), now=moment)
        await self._record_failed_login(user.email, "invalid password", context, moment)

    async def _record_failed_login(self, email: str, details: str, context: EventContext, moment: datetime) -> None:
        await self.monitor.log_security_event(
            email,
            NewSecurityEvent.from_context(SecurityEventType.FAILED_LOGIN, details, context, Severity.MEDIUM),
            now=moment,
        )
        await self.monitor.check_suspicious_activity(email, context, now=moment)

    async def _hash(self, hasher, value: str) -> str:
        try:
            return await asyncio.to_thread(hasher, value)
        except HashingError as exc:
            logger.error("hashing failed", exc_info=exc)
            raise AuthError("hashing_failed") from exc

    async def _matches(self, verifier, value: str, stored_hash: str | None) -> bool:
        if not value or not stored_hash:
            return False
        try:
            return await asyncio.to_thread(verifier, value, stored_hash)
        except HashingError as exc:
            logger.error("stored hash could not be verified", exc_info=exc)
            raise AuthError("hashing_failed") from exc

    @staticmethod
    def _require_usable(record: TokenRecord | None, moment: datetime) -> None:
        if record is None:
            raise AuthError("invalid_token")
        if record.consumed:
            raise AuthError("token_used")
        if record.is_expired(moment):
            raise AuthError("token_expired")


def _name_matches(stored: str | None, wanted: str | None) -> bool:
    if not wanted or not wanted.strip():
        return True
    return (stored or "").strip().lower() == wanted.strip().lower()


def build_auth_service(
    settings: "Settings",
    database: "Database",
    notifier: AccountNotifier | None = None,
) -> AuthService:
    monitor = SecurityMonitor(database)
    owns_notifier = notifier is None and bool(settings.mail_relay_url)
    if owns_notifier:
        notifier = HttpAccountNotifier(settings.mail_relay_url, api_key=settings.mail_relay_api_key)
    return AuthService(
        users=UserStore(database, monitor=monitor),
        sessions=SessionManager(database, session_ttl_seconds=settings.session_ttl_seconds),
        reset_tokens=PasswordResetTokenStore(database, ttl_seconds=settings.password_reset_token_ttl_seconds),
        verification_tokens=EmailVerificationTokenStore(
            database, ttl_seconds=settings.email_verification_token_ttl_seconds
        ),
        rate_limiter=RateLimiter(database),
        monitor=monitor,
        login_policy=RateLimitPolicy(settings.login_rate_limit_max_attempts, settings.login_rate_limit_window_ms),
        password_reset_policy=RateLimitPolicy(
            settings.password_reset_rate_limit_max_attempts, settings.password_reset_rate_limit_window_ms
        ),
        username_recovery_policy=RateLimitPolicy(
            settings.username_recovery_rate_limit_max_attempts, settings.username_recovery_rate_limit_window_ms
        ),
        max_failed_attempts=settings.max_failed_login_attempts,
        lockout_minutes=settings.account_lockout_minutes,
        notifier=notifier,
        owns_notifier=owns_notifier,
    )
