"""Subscription plans, billing periods and the tenant access gate."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta

from .errors import ValidationError
from .tenant import BillingInterval, PaymentInfo, Subscription, SubscriptionStatus, Tenant


@dataclass(frozen=True, slots=True)
class Plan:
    name: str
    display_name: str
    max_users: int
    max_jobs: int
    monthly_price: int
    annual_price: int
    features: tuple[str, ...]

    def price_for(self, interval: BillingInterval) -> int:
        return self.monthly_price if interval == BillingInterval.monthly else self.annual_price


# prices in INR; -1 limits mean unlimited
PLANS: dict[str, Plan] = {
    "basic": Plan(
        name="basic",
        display_name="Basic Plan",
        max_users=10,
        max_jobs=25,
        monthly_price=999,
        annual_price=9999,
        features=("Up to 10 users", "Up to 25 job postings", "Basic candidate management", "Email support"),
    ),
    "professional": Plan(
        name="professional",
        display_name="Professional Plan",
        max_users=50,
        max_jobs=100,
        monthly_price=2999,
        annual_price=29999,
        features=(
            "Up to 50 users",
            "Up to 100 job postings",
            "Advanced candidate management",
            "Interview scheduling",
            "Analytics dashboard",
            "Priority support",
        ),
    ),
    "enterprise": Plan(
        name="enterprise",
        display_name="Enterprise Plan",
        max_users=-1,
        max_jobs=-1,
        monthly_price=9999,
        annual_price=99999,
        features=(
            "Unlimited users",
            "Unlimited job postings",
            "Advanced analytics",
            "Custom integrations",
            "Dedicated support",
            "Custom workflows",
        ),
    ),
}

DEFAULT_CURRENCY = "INR"


def get_plan(name: str) -> Plan:
    plan = PLANS.get(name)
    if plan is None:
        raise ValidationError(f"invalid subscription plan: {name}", details={"plan": name})
    return plan


def compute_period_end(start: datetime, interval: BillingInterval) -> datetime:
    """Add one billing interval to ``start`` using calendar arithmetic."""
    if interval == BillingInterval.monthly:
        return start + relativedelta(months=1)
    return start + relativedelta(years=1)


def build_pending_subscription(plan_name: str, interval: BillingInterval, now: datetime) -> Subscription:
    """Create the subscription record of a freshly registered, unpaid tenant."""
    plan = get_plan(plan_name)
    return Subscription(
        plan=plan.name,
        status=SubscriptionStatus.pending_payment,
        interval=interval,
        amount=plan.price_for(interval),
        currency=DEFAULT_CURRENCY,
        start_date=now,
        max_users=plan.max_users,
        max_jobs=plan.max_jobs,
        payment=PaymentInfo(next_payment_date=compute_period_end(now, interval)),
    )


@dataclass(frozen=True, slots=True)
class GateDecision:
    allowed: bool
    reason: str | None = None
    code: str | None = None


ALLOWED = GateDecision(allowed=True)

# Checked in this order; client UIs branch on the distinct reasons.
_STATUS_BLOCKS: tuple[tuple[SubscriptionStatus, str], ...] = (
    (
        SubscriptionStatus.pending_payment,
        "Payment verification required. Please complete your payment to access your account.",
    ),
    (
        SubscriptionStatus.suspended,
        "Subscription is suspended. Please contact support or update your payment method.",
    ),
    (
        SubscriptionStatus.cancelled,
        "Subscription is cancelled. Please contact support to reactivate your account.",
    ),
    (
        SubscriptionStatus.inactive,
        "Subscription is inactive. Please contact support.",
    ),
)


def evaluate_tenant_access(tenant: Tenant, now: datetime | None = None) -> GateDecision:
    """Decide whether any account of ``tenant`` may authenticate right now.

    The first matching rule wins: inactive tenant, then each blocking
    subscription status, then an end date that is not in the future.
    """
    now = now or datetime.now(timezone.utc)
    if not tenant.is_active:
        return GateDecision(False, "Company account is inactive.", "tenant_inactive")

    status = tenant.subscription.status
    for blocked_status, reason in _STATUS_BLOCKS:
        if status == blocked_status:
            return GateDecision(False, reason, f"subscription_{blocked_status.value}")

    end_date = tenant.subscription.end_date
    if end_date is not None and end_date <= now:
        return GateDecision(
            False,
            "Subscription has expired. Please renew your subscription to continue.",
            "subscription_expired",
        )
    return ALLOWED
