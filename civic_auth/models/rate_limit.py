from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, UniqueConstraint

from .db import Base, utcnow
from .enums import RateLimitType, enum_values


class RateLimit(Base):
    __tablename__ = "rate_limits"
    __table_args__ = (
        UniqueConstraint("identifier", "rate_limit_type", name="uq_rate_limits_identifier_type"),
    )

    id = Column(Integer, primary_key=True)
    identifier = Column(String(255), nullable=False)
    rate_limit_type = Column(
        Enum(RateLimitType, native_enum=False, length=50, values_callable=enum_values),
        nullable=False,
    )
    attempts = Column(Integer, nullable=False, default=0)
    window_start = Column(DateTime(timezone=True), nullable=False)
    blocked = Column(Boolean, nullable=False, default=False)
    blocked_until = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
