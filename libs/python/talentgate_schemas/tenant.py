"""Tenant and subscription DTOs shared across services."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel


class PaymentInfoSummary(BaseModel):
    order_id: str | None = None
    payment_id: str | None = None
    last_payment_date: datetime | None = None
    next_payment_date: datetime | None = None


class SubscriptionSummary(BaseModel):
    plan: str
    status: str
    interval: str
    amount: int
    currency: str
    max_users: int
    max_jobs: int
    start_date: datetime
    end_date: datetime | None = None
    payment: PaymentInfoSummary


class TenantSummary(BaseModel):
    tenant_id: str
    name: str
    domain: str | None = None
    is_active: bool
    subscription: SubscriptionSummary
    created_at: datetime
