"""FastAPI dependencies resolving services and the authenticated caller."""

from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..domain.account import Account
from ..domain.errors import AuthenticationError
from ..domain.service import IdentityService
from ..security.rate_limiter import RateLimiter

bearer_scheme = HTTPBearer(auto_error=False)


def get_service(request: Request) -> IdentityService:
    """Resolve the `IdentityService` stored on the FastAPI application state."""
    service: IdentityService = request.app.state.identity_service
    return service


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter: RateLimiter = request.app.state.rate_limiter
    return limiter


def get_current_account(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: IdentityService = Depends(get_service),
) -> Account:
    """Authenticate the bearer session token and load the caller's account."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("authentication required")
    return service.authenticate(credentials.credentials)


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"
