"""HTTP route definitions for the identity service."""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, EmailStr, Field

from talentgate_schemas import (
    AccountSummary,
    GatewayOrder,
    PaymentInfoSummary,
    SubscriptionSummary,
    TenantSummary,
)

from .dependencies import client_address, get_current_account, get_rate_limiter, get_service
from ..config import get_settings
from ..domain.account import Account
from ..domain.contracts import InviteAccountInput, PaymentVerificationInput, RegisterTenantInput
from ..domain.credentials import LoginResult
from ..domain.service import IdentityService
from ..domain.subscription import PLANS
from ..domain.tenant import BillingInterval, Tenant
from ..security.rate_limiter import RateLimiter, enforce
from ..security.tokens import describe_ttl

router = APIRouter(prefix="/v1")


def account_summary(account: Account) -> AccountSummary:
    """Build the public account projection from the domain aggregate."""
    return AccountSummary(
        account_id=account.account_id,
        tenant_id=account.tenant_id,
        email=account.email,
        account_code=account.account_code,
        role_id=account.role_id,
        role=account.role_name,
        permissions=account.permissions,
        first_name=account.first_name,
        last_name=account.last_name,
        department=account.department,
        job_title=account.job_title,
        is_active=account.is_active,
        is_email_verified=account.is_email_verified,
        last_login=account.last_login,
        created_at=account.created_at,
    )


def tenant_summary(tenant: Tenant) -> TenantSummary:
    sub = tenant.subscription
    return TenantSummary(
        tenant_id=tenant.tenant_id,
        name=tenant.name,
        domain=tenant.domain,
        is_active=tenant.is_active,
        created_at=tenant.created_at,
        subscription=SubscriptionSummary(
            plan=sub.plan,
            status=sub.status.value,
            interval=sub.interval.value,
            amount=sub.amount,
            currency=sub.currency,
            max_users=sub.max_users,
            max_jobs=sub.max_jobs,
            start_date=sub.start_date,
            end_date=sub.end_date,
            payment=PaymentInfoSummary(
                order_id=sub.payment.order_id,
                payment_id=sub.payment.payment_id,
                last_payment_date=sub.payment.last_payment_date,
                next_payment_date=sub.payment.next_payment_date,
            ),
        ),
    )


def _hashed(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


class RegisterTenantRequest(BaseModel):
    """Payload accepted when registering a company and its administrator."""

    company_name: str = Field(..., min_length=2, max_length=200)
    domain: str | None = Field(default=None, max_length=253)
    plan: str
    interval: BillingInterval = BillingInterval.monthly
    admin_email: EmailStr
    admin_password: str
    admin_first_name: str = Field(..., min_length=1, max_length=100)
    admin_last_name: str = Field(..., min_length=1, max_length=100)


class CheckoutOrderResponse(BaseModel):
    """Gateway order the client completes checkout against; ``amount`` is in minor units."""

    order_id: str
    amount: int
    currency: str
    key_id: str

    @classmethod
    def from_order(cls, order: GatewayOrder) -> "CheckoutOrderResponse":
        return cls(
            order_id=order.id,
            amount=order.amount,
            currency=order.currency,
            key_id=get_settings().razorpay_key_id,
        )


class RegisterTenantResponse(BaseModel):
    tenant: TenantSummary
    account: AccountSummary
    order: CheckoutOrderResponse
    message: str = "Company registered successfully. Please check your email to verify your account."


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    tenant_id: str | None = None


class SessionResponse(BaseModel):
    """Shape shared by login and invitation acceptance."""

    account: AccountSummary
    tenant: TenantSummary
    token: str
    token_type: str = "bearer"
    expires_in: str

    @classmethod
    def from_result(cls, result: LoginResult) -> "SessionResponse":
        return cls(
            account=account_summary(result.account),
            tenant=tenant_summary(result.tenant),
            token=result.token,
            expires_in=describe_ttl(result.expires_in),
        )


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class EmailRequest(BaseModel):
    email: EmailStr


class TokenPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class MessageResponse(BaseModel):
    message: str


class InviteRequest(BaseModel):
    email: EmailStr
    role_id: str
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    department: str | None = Field(default=None, max_length=100)
    job_title: str | None = Field(default=None, max_length=100)


class AccountResponse(BaseModel):
    account: AccountSummary


class PlanResponse(BaseModel):
    name: str
    display_name: str
    max_users: int
    max_jobs: int
    monthly_price: int
    annual_price: int
    currency: str = "INR"
    features: list[str]


class VerifyPaymentRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class VerifyPaymentResponse(BaseModel):
    tenant: TenantSummary
    token: str
    token_type: str = "bearer"
    expires_in: str
    replayed: bool


class ResyncResponse(BaseModel):
    role_id: str
    accounts_updated: int


class AuditLogEntry(BaseModel):
    """Audit log response entry."""

    audit_id: int
    account_id: str | None
    tenant_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


class AuditLogResponse(BaseModel):
    """Envelope for paginated audit log data."""

    items: list[AuditLogEntry]
    next_cursor: str | None = None


@router.post("/tenants", response_model=RegisterTenantResponse, status_code=status.HTTP_201_CREATED)
def register_tenant(
    payload: RegisterTenantRequest,
    service: IdentityService = Depends(get_service),
) -> RegisterTenantResponse:
    """Register a company, its default roles, its administrator and a checkout order."""
    result = service.registration.register(
        RegisterTenantInput(
            tenant_name=payload.company_name,
            plan=payload.plan,
            interval=payload.interval,
            admin_email=payload.admin_email,
            admin_password=payload.admin_password,
            admin_first_name=payload.admin_first_name,
            admin_last_name=payload.admin_last_name,
            domain=payload.domain,
        )
    )
    return RegisterTenantResponse(
        tenant=tenant_summary(result.tenant),
        account=account_summary(result.admin),
        order=CheckoutOrderResponse.from_order(result.order),
    )


@router.post("/auth/login", response_model=SessionResponse)
def login(
    payload: LoginRequest,
    request: Request,
    service: IdentityService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> SessionResponse:
    enforce(limiter, f"login:{client_address(request)}:{_hashed(payload.email.lower())}")
    return SessionResponse.from_result(service.login(payload.email, payload.password, payload.tenant_id))


@router.post("/auth/verify-email", response_model=AccountResponse)
def verify_email(payload: TokenRequest, service: IdentityService = Depends(get_service)) -> AccountResponse:
    account = service.registration.verify_email(payload.token)
    return AccountResponse(account=account_summary(account))


@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(
    payload: EmailRequest,
    request: Request,
    service: IdentityService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> MessageResponse:
    enforce(limiter, f"resend:{client_address(request)}")
    service.registration.resend_verification(payload.email)
    return MessageResponse(message="If the account exists and is unverified, a verification email has been sent.")


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    payload: EmailRequest,
    request: Request,
    service: IdentityService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> MessageResponse:
    """Always succeeds so the response never reveals whether the address is registered."""
    enforce(limiter, f"forgot:{client_address(request)}")
    service.password_reset.request_reset(payload.email)
    return MessageResponse(message="If the email is registered, a password reset link has been sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    payload: TokenPasswordRequest,
    request: Request,
    service: IdentityService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> MessageResponse:
    enforce(limiter, f"reset:{client_address(request)}")
    service.password_reset.reset_password(payload.token, payload.password)
    return MessageResponse(message="Password has been reset successfully.")


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    account: Account = Depends(get_current_account),
    service: IdentityService = Depends(get_service),
) -> MessageResponse:
    service.password_reset.change_password(account, payload.current_password, payload.new_password)
    return MessageResponse(message="Password changed successfully.")


@router.get("/accounts/me", response_model=AccountSummary)
def get_me(account: Account = Depends(get_current_account)) -> AccountSummary:
    return account_summary(account)


@router.post("/invitations", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def invite_account(
    payload: InviteRequest,
    inviter: Account = Depends(get_current_account),
    service: IdentityService = Depends(get_service),
) -> AccountResponse:
    """Invite a new account into the caller's company."""
    issued = service.invitations.invite(
        inviter,
        InviteAccountInput(
            email=payload.email,
            role_id=payload.role_id,
            first_name=payload.first_name,
            last_name=payload.last_name,
            department=payload.department,
            job_title=payload.job_title,
        ),
    )
    return AccountResponse(account=account_summary(issued.account))


@router.post("/invitations/accept", response_model=SessionResponse)
def accept_invitation(
    payload: TokenPasswordRequest,
    request: Request,
    service: IdentityService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> SessionResponse:
    enforce(limiter, f"accept:{client_address(request)}")
    return SessionResponse.from_result(service.invitations.accept(payload.token, payload.password))


@router.get("/billing/plans", response_model=list[PlanResponse])
def list_plans() -> list[PlanResponse]:
    return [
        PlanResponse(
            name=plan.name,
            display_name=plan.display_name,
            max_users=plan.max_users,
            max_jobs=plan.max_jobs,
            monthly_price=plan.monthly_price,
            annual_price=plan.annual_price,
            features=list(plan.features),
        )
        for plan in PLANS.values()
    ]


@router.post("/billing/orders", response_model=CheckoutOrderResponse, status_code=status.HTTP_201_CREATED)
def create_renewal_order(
    account: Account = Depends(get_current_account),
    service: IdentityService = Depends(get_service),
) -> CheckoutOrderResponse:
    return CheckoutOrderResponse.from_order(service.billing.create_renewal_order(account))


@router.post("/billing/verify-payment", response_model=VerifyPaymentResponse)
def verify_payment(
    payload: VerifyPaymentRequest,
    service: IdentityService = Depends(get_service),
) -> VerifyPaymentResponse:
    """Gateway checkout callback; the tenant is resolved from the order id only."""
    result = service.billing.activate(
        PaymentVerificationInput(
            order_id=payload.order_id,
            payment_id=payload.payment_id,
            signature=payload.signature,
        )
    )
    return VerifyPaymentResponse(
        tenant=tenant_summary(result.tenant),
        token=result.token,
        expires_in=describe_ttl(result.expires_in),
        replayed=result.replayed,
    )


@router.post("/roles/{role_id}/resync", response_model=ResyncResponse)
def resync_role(
    role_id: str,
    account: Account = Depends(get_current_account),
    service: IdentityService = Depends(get_service),
) -> ResyncResponse:
    updated = service.resync_role_permissions(account, role_id)
    return ResyncResponse(role_id=role_id, accounts_updated=updated)


@router.get("/audit/logs", response_model=AuditLogResponse)
def list_audit_logs(
    account_id: str | None = Query(default=None),
    event_type: str | None = Query(default=None),
    created_after: datetime | None = Query(default=None),
    created_before: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    actor: Account = Depends(get_current_account),
    service: IdentityService = Depends(get_service),
) -> AuditLogResponse:
    """Return paginated audit events for the caller's tenant with optional filtering."""
    records, next_cursor = service.list_audit_events(
        actor,
        account_id=account_id,
        event_type=event_type,
        created_after=created_after,
        created_before=created_before,
        limit=limit,
        cursor=cursor,
    )
    items = [
        AuditLogEntry(
            audit_id=record.audit_id,
            account_id=record.account_id,
            tenant_id=record.tenant_id,
            event_type=record.event_type,
            actor=record.actor,
            metadata=record.metadata,
            created_at=record.created_at,
        )
        for record in records
    ]
    return AuditLogResponse(items=items, next_cursor=next_cursor)
