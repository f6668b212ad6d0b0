from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime

PermissionMatrix = dict[str, dict[str, bool]]


@dataclass(slots=True)
class Role:
    """Tenant-scoped named permission matrix."""

    role_id: str
    tenant_id: str
    name: str
    display_name: str
    permissions: PermissionMatrix
    description: str | None = None
    is_system: bool = False
    created_at: datetime | None = None

    def snapshot(self) -> PermissionMatrix:
        """Return a detached copy of the grants suitable for caching on an account."""
        return copy.deepcopy(self.permissions)


@dataclass(slots=True)
class Account:
    """Aggregate root for tenant-scoped user identity."""

    account_id: str
    tenant_id: str
    email: str
    role_id: str
    role_name: str
    permissions: PermissionMatrix
    account_code: str
    created_at: datetime
    password_hash: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    department: str | None = None
    job_title: str | None = None
    is_active: bool = True
    is_email_verified: bool = False
    is_deleted: bool = False
    failed_login_attempts: int = 0
    lockout_expires_at: datetime | None = None
    password_reset_token_hash: str | None = None
    password_reset_expires_at: datetime | None = None
    invite_token_hash: str | None = None
    invited_by: str | None = None
    invited_at: datetime | None = None
    invite_accepted_at: datetime | None = None
    last_login: datetime | None = None
    permissions_synced_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_invited(self) -> bool:
        return not self.is_active and self.invite_token_hash is not None
