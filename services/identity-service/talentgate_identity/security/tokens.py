"""Utilities for issuing and validating application JWTs and single-use tokens."""

from __future__ import annotations

import hashlib
import secrets
import time
from dataclasses import dataclass
from typing import Any

import jwt

from ..config import Settings, get_settings
from ..domain.account import Account, PermissionMatrix

SESSION_TOKEN_TYPE = "session"
VERIFICATION_TOKEN_TYPE = "email_verification"


@dataclass(frozen=True, slots=True)
class SessionClaims:
    """Decoded contents of a session token."""

    account_id: str
    tenant_id: str
    role: str
    permissions: PermissionMatrix
    expires_at: int


def describe_ttl(seconds: int) -> str:
    """Render a TTL the way the public contract advertises it (``7d``, ``12h``, ``90s``)."""
    if seconds % 86400 == 0:
        return f"{seconds // 86400}d"
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    return f"{seconds}s"


def _encode(payload: dict[str, Any], settings: Settings) -> str:
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def _decode(token: str, settings: Settings) -> dict[str, Any]:
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )


def issue_session_token(account: Account, settings: Settings | None = None) -> tuple[str, int]:
    """Create a signed JWT representing an authenticated account.

    Parameters
    ----------
    account:
        Account whose id, tenant and cached permission snapshot are embedded.
    settings:
        Optional settings override; defaults to the process settings.

    Returns
    -------
    tuple[str, int]
        A tuple containing the encoded JWT string and its TTL (in seconds).
    """

    settings = settings or get_settings()
    now = int(time.time())
    expires_in = settings.jwt_ttl_seconds
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "sub": account.account_id,
        "tenant_id": account.tenant_id,
        "role": account.role_name,
        "permissions": account.permissions,
        "typ": SESSION_TOKEN_TYPE,
        "iat": now,
        "exp": now + expires_in,
    }
    return _encode(payload, settings), expires_in


def decode_session_token(token: str, settings: Settings | None = None) -> SessionClaims:
    """Decode and verify a session JWT.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, signed by another issuer,
        or is not a session token.
    """

    settings = settings or get_settings()
    payload = _decode(token, settings)
    if payload.get("typ") != SESSION_TOKEN_TYPE:
        raise jwt.InvalidTokenError("not a session token")
    return SessionClaims(
        account_id=payload["sub"],
        tenant_id=payload["tenant_id"],
        role=payload.get("role", ""),
        permissions=payload.get("permissions") or {},
        expires_at=int(payload["exp"]),
    )


def issue_verification_token(account: Account, settings: Settings | None = None) -> str:
    """Create a short-lived token proving control of the account's mailbox."""
    settings = settings or get_settings()
    now = int(time.time())
    payload = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "sub": account.account_id,
        "tenant_id": account.tenant_id,
        "typ": VERIFICATION_TOKEN_TYPE,
        "iat": now,
        "exp": now + settings.verification_ttl_seconds,
    }
    return _encode(payload, settings)


def decode_verification_token(token: str, settings: Settings | None = None) -> tuple[str, str]:
    """Return ``(account_id, tenant_id)`` for a valid email verification token."""
    settings = settings or get_settings()
    payload = _decode(token, settings)
    if payload.get("typ") != VERIFICATION_TOKEN_TYPE:
        raise jwt.InvalidTokenError("not a verification token")
    return payload["sub"], payload["tenant_id"]


def generate_single_use_token() -> tuple[str, str]:
    """Generate an invitation/reset token string and its SHA-256 hash."""
    token = secrets.token_hex(32)
    return token, hash_single_use_token(token)


def hash_single_use_token(token: str) -> str:
    """Return the SHA-256 hex digest for a single-use token string."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
