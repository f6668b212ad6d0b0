"""Checkout orders and subscription activation from gateway payment callbacks."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from talentgate_schemas import GatewayOrder, SubscriptionActivated

from .account import Account
from .clock import Clock, utc_now
from .contracts import PaymentVerificationInput
from .errors import (
    ConflictError,
    NotFoundError,
    PaymentRequiredError,
    PaymentVerificationError,
)
from .permissions import ADMIN_ROLE, require_permission
from .subscription import compute_period_end, get_plan
from .tenant import SubscriptionPayment, Tenant
from ..config import Settings, get_settings
from ..gateway import PaymentGateway
from ..metrics import MAIL_DISPATCHED, SUBSCRIPTION_ACTIVATIONS
from ..notifications import MailDispatcher, payment_confirmation_message
from ..repository import IdentityRepository
from ..security.tokens import issue_session_token

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ActivationResult:
    tenant: Tenant
    admin: Account
    token: str
    expires_in: int
    replayed: bool = False


class SubscriptionActivator:
    """Creates gateway orders for tenants and applies verified payments.

    The order id is the only link from a callback to a tenant: it is recorded
    on the tenant when the order is created and resolved server-side when the
    callback arrives. Payments are applied at most once per payment id.
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
        self._repository = repository
        self._gateway = gateway
        self._mailer = mailer
        self._settings = settings or get_settings()
        self._clock = clock

    def create_checkout_order(self, tenant: Tenant) -> GatewayOrder:
        """Open a gateway order for the tenant's plan and bind it to the tenant."""
        subscription = tenant.subscription
        plan = get_plan(subscription.plan)
        order = self._gateway.create_order(
            amount=plan.price_for(subscription.interval),
            currency=subscription.currency,
            notes={
                "tenant_id": tenant.tenant_id,
                "company_name": tenant.name,
                "subscription_plan": plan.name,
                "billing_interval": subscription.interval.value,
            },
        )
        self._repository.set_subscription_order(tenant.tenant_id, order.id)
        tenant.subscription.payment.order_id = order.id
        logger.info("checkout order bound tenant_id=%s order_id=%s", tenant.tenant_id, order.id)
        return order

    def create_renewal_order(self, actor: Account) -> GatewayOrder:
        require_permission(actor, "settings", "update")
        tenant = self._repository.get_tenant(actor.tenant_id)
        if tenant is None:
            raise NotFoundError("company not found")
        order = self.create_checkout_order(tenant)
        self._repository.write_audit_event(
            account_id=actor.account_id,
            tenant_id=tenant.tenant_id,
            event_type="billing.order_created",
            actor=actor.account_id,
            metadata={"order_id": order.id, "amount": order.amount, "currency": order.currency},
        )
        return order

    def activate(self, payload: PaymentVerificationInput) -> ActivationResult:
        """Verify a checkout callback and activate the tenant's subscription.

        The tenant is found through the order currently bound to it or, once
        a renewal order has replaced that binding, through the payment that
        already settled the order. Redelivery of a callback with an
        already-applied payment id returns the current state without
        extending the billing period again.
        """
        existing = self._repository.get_subscription_payment(payload.payment_id)
        settled = self._repository.find_subscription_payment_for_order(payload.order_id)
        tenant = self._repository.find_tenant_by_order_id(payload.order_id)
        if tenant is None and settled is not None:
            tenant = self._repository.get_tenant(settled.tenant_id)
        if tenant is None:
            SUBSCRIPTION_ACTIVATIONS.labels(result="unknown_order").inc()
            raise NotFoundError("no subscription is waiting for this order", details={"order_id": payload.order_id})

        if not self._gateway.verify_signature(payload.order_id, payload.payment_id, payload.signature):
            logger.warning(
                "payment signature mismatch tenant_id=%s order_id=%s payment_id=%s",
                tenant.tenant_id,
                payload.order_id,
                payload.payment_id,
            )
            SUBSCRIPTION_ACTIVATIONS.labels(result="bad_signature").inc()
            raise PaymentVerificationError("invalid payment signature")

        if existing is not None:
            self._ensure_same_settlement(existing, tenant, payload)
            SUBSCRIPTION_ACTIVATIONS.labels(result="replayed").inc()
            logger.info("payment already applied tenant_id=%s payment_id=%s", tenant.tenant_id, payload.payment_id)
            return self._result(tenant, replayed=True)

        if settled is not None and settled.payment_id != payload.payment_id:
            SUBSCRIPTION_ACTIVATIONS.labels(result="conflict").inc()
            raise ConflictError("order has already been settled by another payment")

        payment = self._gateway.fetch_payment(payload.payment_id)
        if payment.order_id != payload.order_id:
            SUBSCRIPTION_ACTIVATIONS.labels(result="order_mismatch").inc()
            raise PaymentVerificationError("payment does not belong to this order")
        if not payment.is_settled:
            SUBSCRIPTION_ACTIVATIONS.labels(result="not_captured").inc()
            raise PaymentRequiredError(
                f"payment is not completed (status: {payment.status})",
                details={"payment_status": payment.status},
            )

        now = self._clock()
        record = SubscriptionPayment(
            payment_id=payment.id,
            tenant_id=tenant.tenant_id,
            order_id=payload.order_id,
            amount=payment.amount // 100,
            currency=payment.currency,
            status=payment.status,
            period_end=compute_period_end(now, tenant.subscription.interval),
            created_at=now,
            method=payment.method,
            signature=payload.signature,
        )
        tenant, applied = self._repository.apply_subscription_payment(record)
        if not applied:
            # a concurrent delivery of the same callback won the insert
            winner = self._repository.get_subscription_payment(payload.payment_id)
            if winner is not None:
                self._ensure_same_settlement(winner, tenant, payload)
            SUBSCRIPTION_ACTIVATIONS.labels(result="replayed").inc()
            return self._result(tenant, replayed=True)

        SUBSCRIPTION_ACTIVATIONS.labels(result="activated").inc()
        logger.info(
            "subscription activated tenant_id=%s payment_id=%s period_end=%s",
            tenant.tenant_id,
            record.payment_id,
            record.period_end.isoformat(),
        )
        result = self._result(tenant, replayed=False)
        self._repository.write_audit_event(
            account_id=result.admin.account_id,
            tenant_id=tenant.tenant_id,
            event_type="billing.subscription_activated",
            actor=None,
            metadata=SubscriptionActivated(
                tenant_id=tenant.tenant_id,
                plan=tenant.subscription.plan,
                payment_id=record.payment_id,
                order_id=record.order_id,
                period_end=record.period_end,
            ).model_dump(mode="json"),
        )
        self._mailer.dispatch(
            payment_confirmation_message(
                to=result.admin.email,
                company_name=tenant.name,
                plan=tenant.subscription.plan,
                amount=record.amount,
                currency=record.currency,
                payment_id=record.payment_id,
                period_end=record.period_end.date().isoformat(),
            )
        )
        MAIL_DISPATCHED.labels(kind="payment_confirmation").inc()
        return result

    def _ensure_same_settlement(
        self, existing: SubscriptionPayment, tenant: Tenant, payload: PaymentVerificationInput
    ) -> None:
        if existing.tenant_id != tenant.tenant_id or existing.order_id != payload.order_id:
            logger.warning(
                "payment replayed against another subscription payment_id=%s tenant_id=%s",
                payload.payment_id,
                tenant.tenant_id,
            )
            SUBSCRIPTION_ACTIVATIONS.labels(result="conflict").inc()
            raise ConflictError("payment has already been applied to another subscription")

    def _result(self, tenant: Tenant, *, replayed: bool) -> ActivationResult:
        admin = self._repository.find_tenant_admin(tenant.tenant_id, ADMIN_ROLE)
        if admin is None:
            raise NotFoundError("company administrator not found")
        token, expires_in = issue_session_token(admin, self._settings)
        return ActivationResult(tenant=tenant, admin=admin, token=token, expires_in=expires_in, replayed=replayed)
