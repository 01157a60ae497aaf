from .passwords import (
    HashingError,
    generate_secure_token,
    hash_password,
    hash_security_answer,
    verify_password,
    verify_security_answer,
)
from .validation import (
    ValidationResult,
    mask_email,
    normalize_email,
    validate_email,
    validate_password,
    validate_registration,
    validate_zip_code,
)

__all__ = [
    "HashingError",
    "ValidationResult",
    "generate_secure_token",
    "hash_password",
    "hash_security_answer",
    "mask_email",
    "normalize_email",
    "validate_email",
    "validate_password",
    "validate_registration",
    "validate_zip_code",
    "verify_password",
    "verify_security_answer",
]
