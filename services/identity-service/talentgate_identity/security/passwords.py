"""Password hashing and strength policy."""

from __future__ import annotations

import re

import bcrypt

from ..config import Settings, get_settings
from ..domain.errors import ValidationError

SPECIAL_CHARACTERS = "@$!%*?&"
# bcrypt only looks at the first 72 bytes and newer releases reject longer input
MAX_PASSWORD_BYTES = 72

_LOWER = re.compile(r"[a-z]")
_UPPER = re.compile(r"[A-Z]")
_DIGIT = re.compile(r"\d")
_SPECIAL = re.compile(f"[{re.escape(SPECIAL_CHARACTERS)}]")


def hash_password(password: str, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """Compare a candidate password with a stored bcrypt hash in constant time."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def password_policy_violations(password: str, settings: Settings | None = None) -> list[str]:
    """Return every rule the password breaks; an empty list means it is acceptable."""
    settings = settings or get_settings()
    errors: list[str] = []
    if len(password) < settings.password_min_length:
        errors.append(f"Password must be at least {settings.password_min_length} characters long")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    if not _LOWER.search(password):
        errors.append("Password must contain at least one lowercase letter")
    if not _UPPER.search(password):
        errors.append("Password must contain at least one uppercase letter")
    if not _DIGIT.search(password):
        errors.append("Password must contain at least one number")
    if not _SPECIAL.search(password):
        errors.append(f"Password must contain at least one special character ({SPECIAL_CHARACTERS})")
    return errors


def ensure_strong_password(password: str, settings: Settings | None = None) -> None:
    errors = password_policy_violations(password, settings)
    if errors:
        raise ValidationError("password validation failed", details={"errors": errors})
