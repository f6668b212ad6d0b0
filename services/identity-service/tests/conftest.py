from __future__ import annotations

import copy
import os
import re
from datetime import datetime, timedelta, timezone

# bcrypt's default cost makes the suite crawl; must be set before config is imported
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from talentgate_schemas import GatewayOrder, GatewayPayment

from talentgate_identity.api import routes
from talentgate_identity.api.error_handling import register_error_handlers
from talentgate_identity.config import get_settings
from talentgate_identity.domain.account import Account, Role
from talentgate_identity.domain.contracts import PaymentVerificationInput, RegisterTenantInput
from talentgate_identity.domain.errors import ConflictError, GatewayError
from talentgate_identity.domain.service import IdentityService
from talentgate_identity.domain.tenant import BillingInterval, SubscriptionPayment, SubscriptionStatus, Tenant
from talentgate_identity.gateway import compute_signature
from talentgate_identity.notifications import MailDispatcher, MailMessage
from talentgate_identity.repository import UPDATABLE_ACCOUNT_FIELDS, AuditLogRecord
from talentgate_identity.security.rate_limiter import SlidingWindowRateLimiter

STRONG_PASSWORD = "Str0ng!Passw0rd"
GATEWAY_SECRET = "test-gateway-secret"


class FakeRepository:
    """In-memory repository mimicking Postgres-backed behaviors."""

    def __init__(self) -> None:
        self.tenants: dict[str, Tenant] = {}
        self.roles: dict[str, Role] = {}
        self.accounts: dict[str, Account] = {}
        self.payments: dict[str, SubscriptionPayment] = {}
        self.audit_log: list[AuditLogRecord] = []
        self.fail_on: set[str] = set()
        self._audit_seq = 0

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise RuntimeError(f"simulated failure in {operation}")

    # tenants

    def create_tenant(self, tenant: Tenant) -> Tenant:
        self._maybe_fail("create_tenant")
        if tenant.domain and any(t.domain == tenant.domain for t in self.tenants.values()):
            raise ConflictError("a company with this domain already exists")
        self.tenants[tenant.tenant_id] = copy.deepcopy(tenant)
        return copy.deepcopy(tenant)

    def get_tenant(self, tenant_id: str) -> Tenant | None:
        tenant = self.tenants.get(tenant_id)
        return copy.deepcopy(tenant) if tenant else None

    def find_tenant_by_domain(self, domain: str) -> Tenant | None:
        for tenant in self.tenants.values():
            if tenant.domain == domain.lower():
                return copy.deepcopy(tenant)
        return None

    def find_tenant_by_order_id(self, order_id: str) -> Tenant | None:
        for tenant in self.tenants.values():
            if tenant.subscription.payment.order_id == order_id:
                return copy.deepcopy(tenant)
        return None

    def set_subscription_order(self, tenant_id: str, order_id: str) -> None:
        self._maybe_fail("set_subscription_order")
        self.tenants[tenant_id].subscription.payment.order_id = order_id

    def delete_tenant(self, tenant_id: str) -> None:
        self.tenants.pop(tenant_id, None)
        self.roles = {k: r for k, r in self.roles.items() if r.tenant_id != tenant_id}
        self.accounts = {k: a for k, a in self.accounts.items() if a.tenant_id != tenant_id}

    def get_subscription_payment(self, payment_id: str) -> SubscriptionPayment | None:
        payment = self.payments.get(payment_id)
        return copy.deepcopy(payment) if payment else None

    def find_subscription_payment_for_order(self, order_id: str) -> SubscriptionPayment | None:
        for payment in self.payments.values():
            if payment.order_id == order_id:
                return copy.deepcopy(payment)
        return None

    def apply_subscription_payment(self, payment: SubscriptionPayment):
        if payment.payment_id in self.payments:
            return copy.deepcopy(self.tenants[payment.tenant_id]), False
        if any(p.order_id == payment.order_id for p in self.payments.values()):
            raise ConflictError("order has already been settled by another payment")
        self.payments[payment.payment_id] = copy.deepcopy(payment)
        tenant = self.tenants[payment.tenant_id]
        tenant.subscription.status = SubscriptionStatus.active
        tenant.subscription.end_date = payment.period_end
        tenant.subscription.payment.payment_id = payment.payment_id
        tenant.subscription.payment.signature = payment.signature
        tenant.subscription.payment.last_payment_date = payment.created_at
        tenant.subscription.payment.next_payment_date = payment.period_end
        return copy.deepcopy(tenant), True

    # roles

    def create_roles(self, roles: list[Role]) -> list[Role]:
        self._maybe_fail("create_roles")
        for role in roles:
            self.roles[role.role_id] = copy.deepcopy(role)
        return copy.deepcopy(roles)

    def get_role(self, role_id: str, tenant_id: str) -> Role | None:
        role = self.roles.get(role_id)
        if role is None or role.tenant_id != tenant_id:
            return None
        return copy.deepcopy(role)

    def get_role_by_name(self, name: str, tenant_id: str) -> Role | None:
        for role in self.roles.values():
            if role.tenant_id == tenant_id and role.name == name.lower():
                return copy.deepcopy(role)
        return None

    # accounts

    def _live(self):
        return [account for account in self.accounts.values() if not account.is_deleted]

    def create_account(self, account: Account) -> Account:
        self._maybe_fail("create_account")
        for existing in self._live():
            if existing.tenant_id == account.tenant_id and existing.email.lower() == account.email.lower():
                raise ConflictError("an account with this email or code already exists")
        if self.account_code_exists(account.tenant_id, account.account_code):
            raise ConflictError("an account with this email or code already exists")
        self.accounts[account.account_id] = copy.deepcopy(account)
        return copy.deepcopy(account)

    def get_account(self, account_id: str, tenant_id: str) -> Account | None:
        account = self.accounts.get(account_id)
        if account is None or account.tenant_id != tenant_id or account.is_deleted:
            return None
        return copy.deepcopy(account)

    def find_accounts_by_email(self, email: str, tenant_id: str | None = None) -> list[Account]:
        return [
            copy.deepcopy(account)
            for account in self._live()
            if account.email.lower() == email.lower() and (tenant_id is None or account.tenant_id == tenant_id)
        ]

    def find_account_by_invite_token(self, token_hash: str) -> Account | None:
        for account in self._live():
            if account.invite_token_hash == token_hash and not account.is_active:
                return copy.deepcopy(account)
        return None

    def find_account_by_reset_token(self, token_hash: str, now: datetime) -> Account | None:
        for account in self._live():
            if (
                account.password_reset_token_hash == token_hash
                and account.password_reset_expires_at is not None
                and account.password_reset_expires_at > now
            ):
                return copy.deepcopy(account)
        return None

    def find_tenant_admin(self, tenant_id: str, role_name: str) -> Account | None:
        admins = sorted(
            (a for a in self._live() if a.tenant_id == tenant_id and a.role_name == role_name),
            key=lambda a: a.created_at,
        )
        return copy.deepcopy(admins[0]) if admins else None

    def list_accounts_by_role(self, role_id: str, tenant_id: str) -> list[Account]:
        return [
            copy.deepcopy(a) for a in self._live() if a.role_id == role_id and a.tenant_id == tenant_id
        ]

    def count_accounts(self, tenant_id: str) -> int:
        return sum(1 for account in self.accounts.values() if account.tenant_id == tenant_id)

    def account_code_exists(self, tenant_id: str, account_code: str) -> bool:
        return any(
            a.tenant_id == tenant_id and a.account_code == account_code for a in self.accounts.values()
        )

    def update_account(self, account_id: str, tenant_id: str, changes) -> Account | None:
        unknown = set(changes) - UPDATABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"cannot update account fields: {sorted(unknown)}")
        account = self.accounts.get(account_id)
        if account is None or account.tenant_id != tenant_id:
            return None
        for column, value in changes.items():
            setattr(account, column, copy.deepcopy(value))
        account.updated_at = datetime.now(timezone.utc)
        return copy.deepcopy(account)

    def consume_reset_token(self, token_hash: str, now: datetime, changes) -> Account | None:
        for account in self._live():
            if (
                account.password_reset_token_hash == token_hash
                and account.password_reset_expires_at is not None
                and account.password_reset_expires_at > now
            ):
                changes = {**changes, "password_reset_token_hash": None, "password_reset_expires_at": None}
                return self.update_account(account.account_id, account.tenant_id, changes)
        return None

    def consume_invite_token(self, token_hash: str, changes) -> Account | None:
        for account in self._live():
            if account.invite_token_hash == token_hash and not account.is_active:
                changes = {**changes, "invite_token_hash": None}
                return self.update_account(account.account_id, account.tenant_id, changes)
        return None

    def increment_failed_logins(self, account_id: str, tenant_id: str) -> int:
        account = self.accounts[account_id]
        account.failed_login_attempts += 1
        return account.failed_login_attempts

    # audit

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        tenant_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict | None = None,
    ) -> None:
        self._audit_seq += 1
        self.audit_log.append(
            AuditLogRecord(
                audit_id=self._audit_seq,
                account_id=account_id,
                tenant_id=tenant_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata or {},
                created_at=datetime.now(timezone.utc),
            )
        )

    def list_audit_events(
        self,
        *,
        tenant_id: str,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: tuple[datetime, int] | None = None,
    ):
        results = [record for record in self.audit_log if record.tenant_id == tenant_id]
        if account_id:
            results = [record for record in results if record.account_id == account_id]
        if event_type:
            results = [record for record in results if record.event_type == event_type]
        if created_after:
            results = [record for record in results if record.created_at >= created_after]
        if created_before:
            results = [record for record in results if record.created_at <= created_before]
        results.sort(key=lambda r: (r.created_at, r.audit_id), reverse=True)
        if cursor:
            results = [record for record in results if (record.created_at, record.audit_id) < cursor]
        slice_ = results[:limit]
        next_cursor = None
        if len(results) > limit:
            last = slice_[-1]
            next_cursor = (last.created_at, last.audit_id)
        return slice_, next_cursor


class FakeGateway:
    """Gateway double holding orders and payments in memory."""

    def __init__(self, secret: str = GATEWAY_SECRET) -> None:
        self.secret = secret
        self.orders: dict[str, GatewayOrder] = {}
        self.payments: dict[str, GatewayPayment] = {}
        self.fail_create = False
        self._seq = 0

    def create_order(self, *, amount, currency, receipt=None, notes=None) -> GatewayOrder:
        if self.fail_create:
            raise GatewayError("payment gateway unavailable")
        self._seq += 1
        order = GatewayOrder(
            id=f"order_{self._seq:04d}",
            amount=amount * 100,
            currency=currency,
            receipt=receipt or f"receipt_{self._seq}",
            status="created",
            notes=notes or {},
        )
        self.orders[order.id] = order
        return order

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        payment = self.payments.get(payment_id)
        if payment is None:
            raise GatewayError("payment gateway rejected the request", details={"status": 404})
        return payment

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return compute_signature(self.secret, order_id, payment_id) == signature

    def pay(self, order_id: str, *, status: str = "captured", payment_id: str | None = None) -> PaymentVerificationInput:
        """Simulate a checkout completing and return the callback the client would deliver."""
        self._seq += 1
        payment_id = payment_id or f"pay_{self._seq:04d}"
        order = self.orders[order_id]
        self.payments[payment_id] = GatewayPayment(
            id=payment_id,
            order_id=order_id,
            amount=order.amount,
            currency=order.currency,
            status=status,
            method="card",
        )
        return PaymentVerificationInput(
            order_id=order_id,
            payment_id=payment_id,
            signature=compute_signature(self.secret, order_id, payment_id),
        )


class RecordingMailSender:
    def __init__(self) -> None:
        self.sent: list[MailMessage] = []
        self.fail = False

    def send(self, message: MailMessage) -> None:
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append(message)

    def last_token(self, to: str | None = None) -> str:
        """Token embedded in the link of the most recent message (to ``to`` if given)."""
        for message in reversed(self.sent):
            if to is None or message.to == to:
                match = re.search(r"token=([A-Za-z0-9_.\-]+)", message.text_body)
                if match:
                    return match.group(1)
        raise AssertionError("no tokenised message was sent")


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def mail_sender() -> RecordingMailSender:
    return RecordingMailSender()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def service(repository, gateway, mail_sender, settings, clock) -> IdentityService:
    # no executor: mail is delivered inline so tests can inspect it
    return IdentityService(repository, gateway, MailDispatcher(mail_sender), settings=settings, clock=clock)


@pytest.fixture
def register(service):
    """Register a tenant and return the registration result."""

    def _register(name: str = "Acme Corp", email: str = "admin@acme.com", **overrides):
        payload = RegisterTenantInput(
            tenant_name=name,
            plan=overrides.pop("plan", "professional"),
            interval=overrides.pop("interval", BillingInterval.monthly),
            admin_email=email,
            admin_password=overrides.pop("password", STRONG_PASSWORD),
            admin_first_name="Ada",
            admin_last_name="Admin",
            domain=overrides.pop("domain", None),
        )
        return service.registration.register(payload)

    return _register


@pytest.fixture
def active_tenant(register, service, repository, gateway):
    """A registered, email-verified and paid-up tenant; returns its admin account."""
    result = register()
    repository.update_account(result.admin.account_id, result.tenant.tenant_id, {"is_email_verified": True})
    service.billing.activate(gateway.pay(result.order.id))
    return repository.get_account(result.admin.account_id, result.tenant.tenant_id)


@pytest.fixture
def limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(max_requests=1000, window_seconds=60)


@pytest.fixture
def api_client(service, limiter):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(routes.router)
    app.state.identity_service = service
    app.state.rate_limiter = limiter

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client
