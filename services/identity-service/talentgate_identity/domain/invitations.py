"""Invitation onboarding: issuing invited accounts and accepting invitations."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from .account import Account
from .account_codes import allocate_account_code
from .clock import Clock, utc_now
from .contracts import InviteAccountInput
from .credentials import LoginResult
from .errors import ConflictError, InvalidTokenError, NotFoundError, PaymentRequiredError
from .permissions import require_permission
from .subscription import evaluate_tenant_access
from ..config import Settings, get_settings
from ..metrics import MAIL_DISPATCHED
from ..notifications import MailDispatcher, invitation_message
from ..repository import IdentityRepository
from ..security.passwords import ensure_strong_password, hash_password
from ..security.tokens import generate_single_use_token, hash_single_use_token, issue_session_token

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InvitationIssued:
    """The invited account plus the raw token that was mailed to it."""

    account: Account
    token: str


class InvitationService:
    def __init__(
        self,
        repository: IdentityRepository,
        mailer: MailDispatcher,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._mailer = mailer
        self._settings = settings or get_settings()
        self._clock = clock

    def invite(self, inviter: Account, payload: InviteAccountInput) -> InvitationIssued:
        """Create an inactive account in the inviter's tenant bound to an existing role.

        Raises ``PermissionDeniedError`` unless the inviter may create employees,
        ``ConflictError`` when the email is already taken in the tenant and
        ``NotFoundError`` when the role does not exist in the tenant.
        """
        require_permission(inviter, "employees", "create")
        tenant_id = inviter.tenant_id
        email = payload.email.strip().lower()

        if self._repository.find_accounts_by_email(email, tenant_id):
            raise ConflictError("a user with this email already exists in your company", details={"email": email})

        role = self._repository.get_role(payload.role_id, tenant_id)
        if role is None:
            raise NotFoundError("role not found", details={"role_id": payload.role_id})

        tenant = self._repository.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError("company not found")

        now = self._clock()
        token, token_hash = generate_single_use_token()
        account = self._repository.create_account(
            Account(
                account_id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                email=email,
                role_id=role.role_id,
                role_name=role.name,
                permissions=role.snapshot(),
                account_code=allocate_account_code(self._repository, tenant, self._clock),
                created_at=now,
                first_name=payload.first_name,
                last_name=payload.last_name,
                department=payload.department,
                job_title=payload.job_title,
                is_active=False,
                is_email_verified=False,
                invite_token_hash=token_hash,
                invited_by=inviter.account_id,
                invited_at=now,
                permissions_synced_at=now,
            )
        )
        logger.info(
            "account invited account_id=%s tenant_id=%s role=%s invited_by=%s",
            account.account_id,
            tenant_id,
            role.name,
            inviter.account_id,
        )
        self._repository.write_audit_event(
            account_id=account.account_id,
            tenant_id=tenant_id,
            event_type="account.invited",
            actor=inviter.account_id,
            metadata={"role": role.name, "account_code": account.account_code},
        )

        inviter_name = " ".join(part for part in (inviter.first_name, inviter.last_name) if part) or inviter.email
        self._mailer.dispatch(
            invitation_message(
                to=email,
                company_name=tenant.name,
                inviter_name=inviter_name,
                role_name=role.display_name,
                token=token,
                frontend_url=self._settings.frontend_url,
            )
        )
        MAIL_DISPATCHED.labels(kind="invitation").inc()
        return InvitationIssued(account=account, token=token)

    def accept(self, token: str, new_password: str) -> LoginResult:
        """Activate an invited account; acceptance doubles as its first login.

        The token is spent by the same write that sets the password, so a
        token can activate an account at most once. The tenant gate applies
        exactly as it does for a password login.

        Raises ``InvalidTokenError`` for an unknown or already-used token,
        ``PaymentRequiredError`` when the tenant is blocked and
        ``ValidationError`` when the password breaks the policy.
        """
        token_hash = hash_single_use_token(token)
        account = self._repository.find_account_by_invite_token(token_hash)
        if account is None:
            raise InvalidTokenError("invalid or expired invitation token")

        now = self._clock()
        tenant = self._repository.get_tenant(account.tenant_id)
        if tenant is None:
            raise InvalidTokenError("invalid or expired invitation token")
        decision = evaluate_tenant_access(tenant, now)
        if not decision.allowed:
            raise PaymentRequiredError(decision.reason, details={"code": decision.code})

        ensure_strong_password(new_password, self._settings)

        # the mailed token proves mailbox ownership
        activated = self._repository.consume_invite_token(
            token_hash,
            {
                "password_hash": hash_password(new_password, self._settings),
                "is_active": True,
                "is_email_verified": True,
                "invite_accepted_at": now,
                "last_login": now,
                "failed_login_attempts": 0,
                "lockout_expires_at": None,
            },
        )
        if activated is None:
            raise InvalidTokenError("invalid or expired invitation token")

        token_value, expires_in = issue_session_token(activated, self._settings)
        logger.info("invitation accepted account_id=%s tenant_id=%s", activated.account_id, activated.tenant_id)
        self._repository.write_audit_event(
            account_id=activated.account_id,
            tenant_id=activated.tenant_id,
            event_type="account.invitation_accepted",
            actor=activated.account_id,
            metadata={},
        )
        return LoginResult(account=activated, tenant=tenant, token=token_value, expires_in=expires_in)
