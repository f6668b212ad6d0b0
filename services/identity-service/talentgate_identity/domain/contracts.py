"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass

from .tenant import BillingInterval


@dataclass(slots=True)
class RegisterTenantInput:
    """Validated inputs required to register a tenant and its first administrator."""

    tenant_name: str
    plan: str
    interval: BillingInterval
    admin_email: str
    admin_password: str
    admin_first_name: str
    admin_last_name: str
    domain: str | None = None


@dataclass(slots=True)
class InviteAccountInput:
    """Validated inputs for inviting a new account into the inviter's tenant."""

    email: str
    role_id: str
    first_name: str | None = None
    last_name: str | None = None
    department: str | None = None
    job_title: str | None = None


@dataclass(slots=True)
class PaymentVerificationInput:
    """Fields delivered by the payment gateway's checkout callback."""

    order_id: str
    payment_id: str
    signature: str
