"""Identity service facade wiring the workflows around one repository."""

from __future__ import annotations

import json
import logging
from base64 import urlsafe_b64decode, urlsafe_b64encode
from datetime import datetime, timedelta
from typing import Optional, Tuple

import jwt

from .account import Account
from .billing import SubscriptionActivator
from .clock import Clock, utc_now
from .credentials import CredentialVerifier, LoginResult
from .errors import AuthenticationError, NotFoundError, PaymentRequiredError, ValidationError
from .invitations import InvitationService
from .password_reset import PasswordResetService
from .permissions import require_permission
from .registration import TenantRegistrationService
from .subscription import evaluate_tenant_access
from ..config import Settings, get_settings
from ..gateway import PaymentGateway
from ..notifications import MailDispatcher
from ..repository import AuditLogRecord, IdentityRepository
from ..security.lockout import LoginAttemptTracker
from ..security.tokens import decode_session_token

logger = logging.getLogger(__name__)


class IdentityService:
    """Entry point used by the HTTP layer.

    Holds one instance of every workflow component, all sharing the same
    repository, mail dispatcher and clock.
    """

    def __init__(
        self,
        repository: IdentityRepository,
        gateway: PaymentGateway,
        mailer: MailDispatcher,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Construct the workflow components around shared collaborators."""
        self._repository = repository
        self._settings = settings or get_settings()
        self._clock = clock

        tracker = LoginAttemptTracker(
            repository,
            max_attempts=self._settings.max_failed_login_attempts,
            lockout_duration=timedelta(seconds=self._settings.lockout_seconds),
        )
        self.credentials = CredentialVerifier(repository, tracker, settings=self._settings, clock=clock)
        self.invitations = InvitationService(repository, mailer, settings=self._settings, clock=clock)
        self.password_reset = PasswordResetService(repository, mailer, settings=self._settings, clock=clock)
        self.billing = SubscriptionActivator(repository, gateway, mailer, settings=self._settings, clock=clock)
        self.registration = TenantRegistrationService(
            repository, self.billing, mailer, settings=self._settings, clock=clock
        )

    def login(self, email: str, password: str, tenant_id: str | None = None) -> LoginResult:
        return self.credentials.login(email, password, tenant_id)

    def authenticate(self, token: str) -> Account:
        """Resolve a bearer session token to its live, active account.

        The tenant is re-checked on every call, so a session issued before
        the tenant was deactivated or its subscription lapsed stops working
        with the same 402 reason a fresh login would get.
        """
        try:
            claims = decode_session_token(token, self._settings)
        except jwt.PyJWTError as exc:
            raise AuthenticationError("invalid or expired token") from exc
        account = self._repository.get_account(claims.account_id, claims.tenant_id)
        if account is None or not account.is_active:
            raise AuthenticationError("invalid or expired token")

        tenant = self._repository.get_tenant(account.tenant_id)
        if tenant is None:
            raise AuthenticationError("invalid or expired token")
        decision = evaluate_tenant_access(tenant, self._clock())
        if not decision.allowed:
            logger.info(
                "session rejected account_id=%s tenant_id=%s code=%s",
                account.account_id,
                account.tenant_id,
                decision.code,
            )
            raise PaymentRequiredError(decision.reason, details={"code": decision.code})
        return account

    def resync_role_permissions(self, actor: Account, role_id: str) -> int:
        """Copy a role's current grants onto every account holding it.

        Permission snapshots are never refreshed implicitly; this is the
        audited, explicit way to propagate a role edit.
        """
        require_permission(actor, "settings", "update")
        role = self._repository.get_role(role_id, actor.tenant_id)
        if role is None:
            raise NotFoundError("role not found", details={"role_id": role_id})

        now = self._clock()
        accounts = self._repository.list_accounts_by_role(role.role_id, actor.tenant_id)
        for account in accounts:
            self._repository.update_account(
                account.account_id,
                account.tenant_id,
                {"permissions": role.snapshot(), "permissions_synced_at": now},
            )
        logger.info(
            "role permissions resynced role=%s tenant_id=%s accounts=%d",
            role.name,
            actor.tenant_id,
            len(accounts),
        )
        self._repository.write_audit_event(
            account_id=actor.account_id,
            tenant_id=actor.tenant_id,
            event_type="role.permissions_resynced",
            actor=actor.account_id,
            metadata={"role_id": role.role_id, "role": role.name, "accounts": len(accounts)},
        )
        return len(accounts)

    def list_audit_events(
        self,
        actor: Account,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[AuditLogRecord], str | None]:
        """Return audit log records for the actor's tenant with optional filters and cursor pagination."""
        require_permission(actor, "settings", "read")
        decoded_cursor: Optional[Tuple[datetime, int]] = None
        if cursor:
            decoded_cursor = self._decode_cursor(cursor)
        records, next_cursor_tuple = self._repository.list_audit_events(
            tenant_id=actor.tenant_id,
            account_id=account_id,
            event_type=event_type,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            cursor=decoded_cursor,
        )
        next_cursor = self._encode_cursor(next_cursor_tuple) if next_cursor_tuple else None
        return records, next_cursor

    def _encode_cursor(self, cursor: Tuple[datetime, int] | None) -> str | None:
        if cursor is None:
            return None
        created_at, audit_id = cursor
        payload = json.dumps({"created_at": created_at.isoformat(), "audit_id": audit_id})
        return urlsafe_b64encode(payload.encode("utf-8")).decode("utf-8")

    def _decode_cursor(self, cursor: str) -> Tuple[datetime, int]:
        try:
            data = json.loads(urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8"))
            created_at = datetime.fromisoformat(data["created_at"])
            audit_id = int(data["audit_id"])
            return created_at, audit_id
        except (ValueError, KeyError, TypeError) as exc:
            raise ValidationError("invalid cursor") from exc
