from .db import Base, as_utc, utcnow
from .enums import ActivityType, RateLimitType, RevocationReason, SecurityEventType, Severity, TokenKind
from .rate_limit import RateLimit
from .security import SecurityEvent, SuspiciousActivity
from .session import UserSession
from .tokens import EmailVerificationToken, PasswordResetToken
from .user import User

__all__ = [
	"ActivityType",
	"Base",
	"EmailVerificationToken",
	"PasswordResetToken",
	"RateLimit",
	"RateLimitType",
	"RevocationReason",
	"SecurityEvent",
	"SecurityEventType",
	"Severity",
	"SuspiciousActivity",
	"TokenKind",
	"User",
	"UserSession",
	"as_utc",
	"utcnow",
]
