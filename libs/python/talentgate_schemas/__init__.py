"""Shared schema exports."""

from .account import AccountSummary
from .billing import SETTLED_PAYMENT_STATUSES, GatewayOrder, GatewayPayment, SubscriptionActivated
from .tenant import PaymentInfoSummary, SubscriptionSummary, TenantSummary

__all__ = [
    "AccountSummary",
    "GatewayOrder",
    "GatewayPayment",
    "PaymentInfoSummary",
    "SETTLED_PAYMENT_STATUSES",
    "SubscriptionActivated",
    "SubscriptionSummary",
    "TenantSummary",
]
