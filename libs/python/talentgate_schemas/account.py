"""Account-related DTOs shared across services."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, EmailStr


class AccountSummary(BaseModel):
    """Public projection of an account; never carries hashes or tokens."""

    account_id: str
    tenant_id: str
    email: EmailStr
    account_code: str
    role_id: str
    role: str
    permissions: dict[str, dict[str, bool]]
    first_name: str | None = None
    last_name: str | None = None
    department: str | None = None
    job_title: str | None = None
    is_active: bool
    is_email_verified: bool
    last_login: datetime | None = None
    created_at: datetime
