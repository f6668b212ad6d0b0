"""Tenant aggregate and its embedded subscription record."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SubscriptionStatus(str, Enum):
    pending_payment = "pending_payment"
    active = "active"
    suspended = "suspended"
    cancelled = "cancelled"
    inactive = "inactive"


class BillingInterval(str, Enum):
    monthly = "monthly"
    annual = "annual"


@dataclass(slots=True)
class PaymentInfo:
    """Gateway metadata recorded against the current billing cycle."""

    order_id: str | None = None
    payment_id: str | None = None
    signature: str | None = None
    last_payment_date: datetime | None = None
    next_payment_date: datetime | None = None


@dataclass(slots=True)
class Subscription:
    plan: str
    status: SubscriptionStatus
    interval: BillingInterval
    amount: int
    start_date: datetime
    currency: str = "INR"
    max_users: int = -1
    max_jobs: int = -1
    end_date: datetime | None = None
    payment: PaymentInfo = field(default_factory=PaymentInfo)


@dataclass(slots=True)
class Tenant:
    """An isolated customer organisation."""

    tenant_id: str
    name: str
    subscription: Subscription
    created_at: datetime
    domain: str | None = None
    is_active: bool = True


@dataclass(slots=True)
class SubscriptionPayment:
    """Billing history row; ``payment_id`` is the idempotency key for activation."""

    payment_id: str
    tenant_id: str
    order_id: str
    amount: int
    currency: str
    status: str
    period_end: datetime
    created_at: datetime
    method: str | None = None
    signature: str | None = None
