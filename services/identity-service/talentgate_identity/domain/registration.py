"""Tenant sign-up and email verification of its accounts."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

import jwt
from talentgate_schemas import GatewayOrder

from .account import Account, Role
from .account_codes import code_prefix, format_code
from .billing import SubscriptionActivator
from .clock import Clock, utc_now
from .contracts import RegisterTenantInput
from .errors import ConflictError, InvalidTokenError
from .permissions import ADMIN_ROLE, DEFAULT_ROLES, default_permissions
from .subscription import build_pending_subscription, get_plan
from .tenant import Tenant
from ..config import Settings, get_settings
from ..metrics import MAIL_DISPATCHED
from ..notifications import MailDispatcher, verification_message
from ..repository import IdentityRepository
from ..security.passwords import ensure_strong_password, hash_password
from ..security.tokens import decode_verification_token, issue_verification_token

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RegistrationResult:
    tenant: Tenant
    admin: Account
    order: GatewayOrder


class TenantRegistrationService:
    """Registers a tenant together with its default roles and administrator.

    The tenant row is written first; if anything after it fails (roles, admin
    account, checkout order) the tenant is deleted with everything created
    under it before the error propagates.
    """

    def __init__(
        self,
        repository: IdentityRepository,
        billing: SubscriptionActivator,
        mailer: MailDispatcher,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._billing = billing
        self._mailer = mailer
        self._settings = settings or get_settings()
        self._clock = clock

    def register(self, payload: RegisterTenantInput) -> RegistrationResult:
        get_plan(payload.plan)
        ensure_strong_password(payload.admin_password, self._settings)

        domain = payload.domain.strip().lower() if payload.domain else None
        email = payload.admin_email.strip().lower()
        if domain and self._repository.find_tenant_by_domain(domain) is not None:
            raise ConflictError("a company with this domain already exists", details={"domain": domain})
        if self._repository.find_accounts_by_email(email):
            raise ConflictError("a user with this email already exists", details={"email": email})

        now = self._clock()
        tenant = self._repository.create_tenant(
            Tenant(
                tenant_id=str(uuid.uuid4()),
                name=payload.tenant_name.strip(),
                domain=domain,
                created_at=now,
                subscription=build_pending_subscription(payload.plan, payload.interval, now),
            )
        )
        try:
            roles = self._repository.create_roles(self._default_roles(tenant.tenant_id, now))
            admin_role = next(role for role in roles if role.name == ADMIN_ROLE)
            admin = self._repository.create_account(
                Account(
                    account_id=str(uuid.uuid4()),
                    tenant_id=tenant.tenant_id,
                    email=email,
                    role_id=admin_role.role_id,
                    role_name=admin_role.name,
                    permissions=admin_role.snapshot(),
                    account_code=format_code(code_prefix(tenant.name), 1),
                    created_at=now,
                    password_hash=hash_password(payload.admin_password, self._settings),
                    first_name=payload.admin_first_name,
                    last_name=payload.admin_last_name,
                    is_active=True,
                    is_email_verified=False,
                    permissions_synced_at=now,
                )
            )
            order = self._billing.create_checkout_order(tenant)
        except Exception:
            logger.exception("tenant registration failed, removing tenant_id=%s", tenant.tenant_id)
            self._repository.delete_tenant(tenant.tenant_id)
            raise

        logger.info(
            "tenant registered tenant_id=%s admin_id=%s plan=%s",
            tenant.tenant_id,
            admin.account_id,
            tenant.subscription.plan,
        )
        self._repository.write_audit_event(
            account_id=admin.account_id,
            tenant_id=tenant.tenant_id,
            event_type="tenant.registered",
            actor=admin.account_id,
            metadata={"plan": tenant.subscription.plan, "interval": tenant.subscription.interval.value},
        )
        self._send_verification(admin)
        return RegistrationResult(tenant=tenant, admin=admin, order=order)

    def verify_email(self, token: str) -> Account:
        try:
            account_id, tenant_id = decode_verification_token(token, self._settings)
        except jwt.PyJWTError as exc:
            raise InvalidTokenError("invalid or expired verification token") from exc

        account = self._repository.get_account(account_id, tenant_id)
        if account is None:
            raise InvalidTokenError("invalid or expired verification token")
        if account.is_email_verified:
            raise ConflictError("email is already verified")

        updated = self._repository.update_account(account_id, tenant_id, {"is_email_verified": True})
        logger.info("email verified account_id=%s tenant_id=%s", account_id, tenant_id)
        self._repository.write_audit_event(
            account_id=account_id,
            tenant_id=tenant_id,
            event_type="account.email_verified",
            actor=account_id,
            metadata={},
        )
        return updated or account

    def resend_verification(self, email: str) -> None:
        """Mail a new verification link; silent for unknown or verified addresses."""
        pending = [
            account
            for account in self._repository.find_accounts_by_email(email.strip().lower())
            if account.is_active and not account.is_email_verified
        ]
        if not pending:
            logger.info("verification resend skipped: no unverified account")
            return
        for account in pending:
            self._send_verification(account)

    def _send_verification(self, account: Account) -> None:
        token = issue_verification_token(account, self._settings)
        self._mailer.dispatch(
            verification_message(
                to=account.email,
                first_name=account.first_name,
                token=token,
                frontend_url=self._settings.frontend_url,
            )
        )
        MAIL_DISPATCHED.labels(kind="verification").inc()

    def _default_roles(self, tenant_id: str, now) -> list[Role]:
        return [
            Role(
                role_id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                name=name,
                display_name=display_name,
                permissions=default_permissions(name),
                description=description,
                is_system=True,
                created_at=now,
            )
            for name, (display_name, description, _) in DEFAULT_ROLES.items()
        ]
