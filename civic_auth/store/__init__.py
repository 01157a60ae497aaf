from .errors import DuplicateUser, StoreError, StoreUnavailable, UnknownUser
from .records import (
	UNSET,
	EventContext,
	NewSecurityEvent,
	NewSession,
	NewUser,
	SecurityEventRecord,
	SessionRecord,
	SuspiciousActivityRecord,
	TokenRecord,
	UserRecord,
	UserUpdate,
)
from .database import ConnectionHealth, Database, DatabaseHealth, IntegrityReport, async_database_url
from .sessions import SessionManager
from .tokens import EmailVerificationTokenStore, PasswordResetTokenStore
from .users import UserStore, security_event_record, suspicious_activity_record

__all__ = [
	"ConnectionHealth",
	"Database",
	"DatabaseHealth",
	"DuplicateUser",
	"EmailVerificationTokenStore",
	"EventContext",
	"IntegrityReport",
	"NewSecurityEvent",
	"NewSession",
	"NewUser",
	"PasswordResetTokenStore",
	"SecurityEventRecord",
	"SessionManager",
	"SessionRecord",
	"StoreError",
	"StoreUnavailable",
	"SuspiciousActivityRecord",
	"TokenRecord",
	"UNSET",
	"UnknownUser",
	"UserRecord",
	"UserStore",
	"UserUpdate",
	"async_database_url",
	"security_event_record",
	"suspicious_activity_record",
]
