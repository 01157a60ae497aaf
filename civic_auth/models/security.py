from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text, event

from .db import Base, utcnow
from .enums import ActivityType, SecurityEventType, Severity, enum_values


class ImmutableLogMixin:
    @classmethod
    def __declare_last__(cls) -> None:
        event.listen(cls, "before_update", cls._deny_mutation)
        event.listen(cls, "before_delete", cls._deny_mutation)

    @staticmethod
    def _deny_mutation(mapper, connection, target) -> None:
        raise ValueError("Security events are immutable")


class SecurityEvent(ImmutableLogMixin, Base):
    __tablename__ = "security_events"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    email = Column(String(255), index=True)
    event_type = Column(
        Enum(SecurityEventType, native_enum=False, length=64, values_callable=enum_values),
        nullable=False,
        index=True,
    )
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    ip_address = Column(String(45), index=True)
    user_agent = Column(Text)
    details = Column(Text)
    risk_level = Column(
        Enum(Severity, native_enum=False, length=20, values_callable=enum_values),
        nullable=False,
        default=Severity.LOW,
    )


class SuspiciousActivity(Base):
    __tablename__ = "suspicious_activities"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    email = Column(String(255), index=True)
    activity_type = Column(
        Enum(ActivityType, native_enum=False, length=64, values_callable=enum_values),
        nullable=False,
    )
    severity = Column(
        Enum(Severity, native_enum=False, length=20, values_callable=enum_values),
        nullable=False,
    )
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    details = Column(Text, nullable=False)
    ip_address = Column(String(45), index=True)
    user_agent = Column(Text)
    investigated = Column(Boolean, nullable=False, default=False)
    investigated_at = Column(DateTime(timezone=True))
    investigated_by = Column(String(255))
    resolution = Column(Text)
    auto_blocked = Column(Boolean, nullable=False, default=False)
    manual_review_required = Column(Boolean, nullable=False, default=False)
