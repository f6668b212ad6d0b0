from __future__ import annotations

import pytest

from conftest import STRONG_PASSWORD
from talentgate_identity.domain.contracts import PaymentVerificationInput
from talentgate_identity.domain.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    PaymentRequiredError,
    PaymentVerificationError,
    PermissionDeniedError,
)
from talentgate_identity.domain.subscription import compute_period_end
from talentgate_identity.domain.tenant import SubscriptionStatus
from talentgate_identity.security.tokens import decode_session_token


@pytest.fixture
def registration(register):
    return register()


def test_checkout_order_is_bound_to_tenant(registration, repository, gateway):
    order = registration.order
    assert order.amount == 2999 * 100
    assert order.currency == "INR"
    assert order.notes["tenant_id"] == registration.tenant.tenant_id
    assert repository.find_tenant_by_order_id(order.id).tenant_id == registration.tenant.tenant_id


def test_activation_sets_period_and_returns_admin_token(service, registration, gateway, repository, clock, settings, mail_sender):
    result = service.billing.activate(gateway.pay(registration.order.id))

    assert not result.replayed
    subscription = result.tenant.subscription
    assert subscription.status == SubscriptionStatus.active
    assert subscription.end_date == compute_period_end(clock.now, subscription.interval)
    assert subscription.payment.last_payment_date == clock.now
    assert decode_session_token(result.token, settings).account_id == registration.admin.account_id

    payment = repository.get_subscription_payment(subscription.payment.payment_id)
    assert payment.amount == 2999
    assert payment.order_id == registration.order.id
    assert mail_sender.sent[-1].subject.startswith("Payment received")
    assert repository.audit_log[-1].event_type == "billing.subscription_activated"


def test_activation_is_idempotent_per_payment(service, registration, gateway, repository, clock, mail_sender):
    callback = gateway.pay(registration.order.id)
    first = service.billing.activate(callback)
    mails = len(mail_sender.sent)

    clock.advance(days=3)
    second = service.billing.activate(callback)

    assert second.replayed
    assert second.tenant.subscription.end_date == first.tenant.subscription.end_date
    assert len(repository.payments) == 1
    assert len(mail_sender.sent) == mails


def test_second_payment_for_settled_order_conflicts(service, registration, gateway):
    service.billing.activate(gateway.pay(registration.order.id))
    with pytest.raises(ConflictError):
        service.billing.activate(gateway.pay(registration.order.id))


def test_payment_replayed_against_another_tenant_conflicts(service, registration, register, gateway):
    callback = gateway.pay(registration.order.id)
    service.billing.activate(callback)

    other = register(name="Globex", email="admin@globex.com")
    forged = gateway.pay(other.order.id, payment_id=callback.payment_id)
    with pytest.raises(ConflictError):
        service.billing.activate(forged)


def test_bad_signature_is_rejected(service, registration, gateway, repository):
    callback = gateway.pay(registration.order.id)
    tampered = PaymentVerificationInput(callback.order_id, callback.payment_id, "0" * 64)
    with pytest.raises(PaymentVerificationError):
        service.billing.activate(tampered)
    assert repository.get_tenant(registration.tenant.tenant_id).subscription.status == SubscriptionStatus.pending_payment


def test_unknown_order_is_not_found(service, registration, gateway):
    with pytest.raises(NotFoundError):
        service.billing.activate(PaymentVerificationInput("order_9999", "pay_1", "sig"))


@pytest.mark.parametrize("status", ["authorized", "failed", "created"])
def test_unsettled_payment_requires_payment(service, registration, gateway, status):
    with pytest.raises(PaymentRequiredError) as excinfo:
        service.billing.activate(gateway.pay(registration.order.id, status=status))
    assert excinfo.value.details == {"payment_status": status}


def test_payment_for_another_order_is_rejected(service, registration, gateway):
    callback = gateway.pay(registration.order.id)
    gateway.payments[callback.payment_id].order_id = "order_other"
    with pytest.raises(PaymentVerificationError):
        service.billing.activate(callback)


def test_gateway_outage_propagates(service, registration, gateway):
    callback = gateway.pay(registration.order.id)
    del gateway.payments[callback.payment_id]
    with pytest.raises(GatewayError):
        service.billing.activate(callback)


def test_activation_unblocks_login(service, registration, gateway, repository):
    repository.update_account(registration.admin.account_id, registration.tenant.tenant_id, {"is_email_verified": True})
    with pytest.raises(PaymentRequiredError):
        service.login("admin@acme.com", STRONG_PASSWORD)
    service.billing.activate(gateway.pay(registration.order.id))
    assert service.login("admin@acme.com", STRONG_PASSWORD).token


def test_renewal_order_replaces_bound_order(service, active_tenant, repository):
    order = service.billing.create_renewal_order(active_tenant)
    tenant = repository.get_tenant(active_tenant.tenant_id)
    assert tenant.subscription.payment.order_id == order.id
    assert repository.audit_log[-1].event_type == "billing.order_created"


def test_renewal_extends_from_payment_date(service, active_tenant, gateway, repository, clock):
    clock.advance(days=20)
    order = service.billing.create_renewal_order(active_tenant)
    result = service.billing.activate(gateway.pay(order.id))
    assert result.tenant.subscription.end_date == compute_period_end(clock.now, result.tenant.subscription.interval)
    assert len(repository.payments) == 2


def test_renewal_requires_settings_update(service, active_tenant, repository):
    repository.update_account(
        active_tenant.account_id,
        active_tenant.tenant_id,
        {"permissions": {"settings": {"read": True, "update": False}}},
    )
    actor = repository.get_account(active_tenant.account_id, active_tenant.tenant_id)
    with pytest.raises(PermissionDeniedError):
        service.billing.create_renewal_order(actor)


def test_redelivered_callback_after_renewal_order_is_replayed(service, registration, gateway, repository, mail_sender):
    callback = gateway.pay(registration.order.id)
    first = service.billing.activate(callback)
    admin = repository.get_account(registration.admin.account_id, registration.tenant.tenant_id)
    renewal = service.billing.create_renewal_order(admin)

    again = service.billing.activate(callback)

    assert again.replayed
    assert again.tenant.tenant_id == registration.tenant.tenant_id
    assert again.tenant.subscription.end_date == first.tenant.subscription.end_date
    assert again.tenant.subscription.payment.order_id == renewal.id
    assert len(repository.payments) == 1


def test_new_payment_for_superseded_order_conflicts(service, registration, gateway, repository):
    service.billing.activate(gateway.pay(registration.order.id))
    admin = repository.get_account(registration.admin.account_id, registration.tenant.tenant_id)
    service.billing.create_renewal_order(admin)
    with pytest.raises(ConflictError):
        service.billing.activate(gateway.pay(registration.order.id))
