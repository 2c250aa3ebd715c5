"""Credential hashing with bcrypt."""

from __future__ import annotations

import bcrypt

# Compared against when the email is unknown so both failure paths cost one bcrypt check.
_DUMMY_HASH = bcrypt.hashpw(b"spacegate-dummy-password", bcrypt.gensalt()).decode("utf-8")

MIN_PASSWORD_LENGTH = 8

# bcrypt only reads the first 72 bytes; newer releases reject longer input.
_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    hashed = bcrypt.hashpw(_encode(password), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Verify a password against a stored hash.

    A missing hash still burns one bcrypt comparison and then fails.
    """
    if not plain_password:
        return False
    target = hashed_password or _DUMMY_HASH
    matched = bcrypt.checkpw(_encode(plain_password), target.encode("utf-8"))
    return matched and hashed_password is not None
