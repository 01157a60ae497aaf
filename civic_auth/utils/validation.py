from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ZIP_CODE_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")
MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class ValidationResult:
    passed: bool
    errors: Mapping[str, str] = field(default_factory=dict)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_email(email: str | None) -> str | None:
    if not email or not email.strip():
        return "Email is required"
    if not EMAIL_PATTERN.match(email.strip()):
        return "Invalid email format"
    return None


def validate_password(password: str | None) -> str | None:
    if not password:
        return "Password is required"
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"\d", password):
        return "Password must contain at least one number"
    return None


def validate_zip_code(zip_code: str | None) -> str | None:
    if not zip_code:
        return "ZIP code is required"
    if not ZIP_CODE_PATTERN.match(zip_code.strip()):
        return "ZIP code must be 5 digits"
    return None


def collect(**checks: str | None) -> ValidationResult:
    errors = {name: message for name, message in checks.items() if message}
    return ValidationResult(passed=not errors, errors=errors)


def validate_registration(email: str | None, password: str | None, zip_code: str | None) -> ValidationResult:
    return collect(
        email=validate_email(email),
        password=validate_password(password),
        zip_code=validate_zip_code(zip_code),
    )


def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}"
