from .notifier import HttpAccountNotifier
from .rate_limit import RateLimiter, RateLimitPolicy, RateLimitResult
from .service import (
    PASSWORD_RESET_MESSAGE,
    AccountNotifier,
    AuthError,
    AuthService,
    LoginResult,
    RegistrationResult,
    build_auth_service,
)

__all__ = [
    "PASSWORD_RESET_MESSAGE",
    "AccountNotifier",
    "AuthError",
    "AuthService",
    "HttpAccountNotifier",
    "LoginResult",
    "RateLimitPolicy",
    "RateLimitResult",
    "RateLimiter",
    "RegistrationResult",
    "build_auth_service",
]
