from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from .db import Base, utcnow


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False)
    password_hash = Column(Text, nullable=False)
    zip_code = Column(String(10), nullable=False, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))

    email_verified = Column(Boolean, nullable=False, default=False)
    email_verification_token = Column(String(255))
    email_verification_expires = Column(DateTime(timezone=True))

    password_reset_token = Column(String(255))
    password_reset_expires = Column(DateTime(timezone=True))

    failed_login_attempts = Column(Integer, nullable=False, default=0)
    account_locked_until = Column(DateTime(timezone=True))

    security_question_1 = Column(Text)
    security_answer_1_hash = Column(Text)
    security_question_2 = Column(Text)
    security_answer_2_hash = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    profile_updated_at = Column(DateTime(timezone=True))
    last_login_at = Column(DateTime(timezone=True))
