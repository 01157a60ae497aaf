"""Password hashing and opaque token helpers.

Hashing is Argon2id through passlib. Security answers go through the same hasher
after trimming and lowercasing so that "Fluffy " and "fluffy" verify alike.
"""

from __future__ import annotations

import secrets

from passlib.exc import MissingBackendError, PasslibSecurityError
from passlib.hash import argon2

TOKEN_BYTES = 32

_hasher = argon2.using(rounds=3, memory_cost=65536, parallelism=2)

_BACKEND_ERRORS = (MissingBackendError, PasslibSecurityError, TypeError, ValueError)


class HashingError(Exception):
    pass


def _require_secret(value: str) -> None:
    if not isinstance(value, str) or value == "":
        raise HashingError("secret must be a non-empty string")


def hash_password(plaintext: str) -> str:
    _require_secret(plaintext)
    try:
        return _hasher.hash(plaintext)
    except _BACKEND_ERRORS as exc:
        raise HashingError("hashing backend unavailable") from exc


def verify_password(plaintext: str, password_hash: str) -> bool:
    _require_secret(plaintext)
    if not password_hash:
        raise HashingError("stored hash is empty")
    try:
        return _hasher.verify(plaintext, password_hash)
    except _BACKEND_ERRORS as exc:
        raise HashingError("hashing backend unavailable") from exc


def normalize_security_answer(answer: str) -> str:
    return answer.strip().lower() if isinstance(answer, str) else answer


def hash_security_answer(answer: str) -> str:
    return hash_password(normalize_security_answer(answer))


def verify_security_answer(answer: str, answer_hash: str) -> bool:
    return verify_password(normalize_security_answer(answer), answer_hash)


def generate_secure_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)
