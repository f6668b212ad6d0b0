"""Payment gateway payloads, validated before they reach the identity core."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, Field

# Statuses after which the gateway guarantees the funds.
SETTLED_PAYMENT_STATUSES = frozenset({"captured", "settled"})


class GatewayOrder(BaseModel):
    """Order created at the gateway; ``amount`` is in the currency's minor unit."""

    id: str
    amount: int
    currency: str
    receipt: str | None = None
    status: str
    notes: dict[str, str] = Field(default_factory=dict)


class GatewayPayment(BaseModel):
    """Authoritative payment state fetched from the gateway."""

    id: str
    order_id: str
    amount: int
    currency: str
    status: str
    method: str | None = None
    email: str | None = None

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_PAYMENT_STATUSES


class SubscriptionActivated(BaseModel):
    """Event payload describing a tenant subscription that became active."""

    tenant_id: str
    plan: str
    payment_id: str
    order_id: str
    period_end: datetime
