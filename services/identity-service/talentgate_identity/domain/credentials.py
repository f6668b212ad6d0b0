"""Password login: account lookup, tenant gate, lockout and session issuance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .account import Account
from .clock import Clock, utc_now
from .errors import (
    AccountInactiveError,
    AccountLockedError,
    AuthenticationError,
    EmailVerificationRequiredError,
    PaymentRequiredError,
)
from .subscription import evaluate_tenant_access
from .tenant import Tenant
from ..config import Settings, get_settings
from ..metrics import LOGIN_OUTCOMES
from ..repository import IdentityRepository
from ..security.lockout import LoginAttemptTracker
from ..security.passwords import verify_password
from ..security.tokens import issue_session_token

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LoginResult:
    """Authenticated account, its tenant and a freshly signed session token."""

    account: Account
    tenant: Tenant
    token: str
    expires_in: int


class CredentialVerifier:
    """Verify email/password credentials for a tenant-scoped account.

    Checks run in a fixed order and the first failure wins: account lookup,
    active flag, email verification, subscription gate, lockout window and
    finally the bcrypt comparison. The gate and the lockout are both evaluated
    before the password is touched, so neither a blocked tenant nor a locked
    account can be used as a password oracle.
    """

    def __init__(
        self,
        repository: IdentityRepository,
        tracker: LoginAttemptTracker,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._tracker = tracker
        self._settings = settings or get_settings()
        self._clock = clock

    def login(self, email: str, password: str, tenant_id: str | None = None) -> LoginResult:
        """Authenticate an email and password, returning a session on success.

        Checks run in a fixed order and the first failure wins: unique account
        match, account active, email verified, tenant gate, lockout, then the
        password itself. Only the password comparison touches the failure
        counter; a success clears it and records ``last_login``.

        Raises:
            AuthenticationError: no unique account or a wrong password.
            AccountInactiveError: the account has been deactivated.
            EmailVerificationRequiredError: the address is not yet confirmed.
            PaymentRequiredError: the tenant gate refused, with its reason code.
            AccountLockedError: the lockout window is open or was just opened.
        """
        now = self._clock()
        matches = self._repository.find_accounts_by_email(email, tenant_id)
        if len(matches) != 1:
            # an address registered in several tenants needs an explicit tenant scope
            logger.info("login rejected: no unique account tenant_id=%s matches=%d", tenant_id, len(matches))
            LOGIN_OUTCOMES.labels(outcome="unknown_account").inc()
            raise AuthenticationError()
        account = matches[0]

        if not account.is_active:
            self._reject(account, "inactive")
            raise AccountInactiveError("account is deactivated")
        if not account.is_email_verified:
            self._reject(account, "email_unverified")
            raise EmailVerificationRequiredError(
                "email verification required. Please verify your email address before logging in."
            )

        tenant = self._repository.get_tenant(account.tenant_id)
        if tenant is None:
            logger.error("account %s references missing tenant %s", account.account_id, account.tenant_id)
            self._reject(account, "tenant_missing")
            raise AuthenticationError()
        decision = evaluate_tenant_access(tenant, now)
        if not decision.allowed:
            self._reject(account, "tenant_blocked", {"code": decision.code})
            raise PaymentRequiredError(decision.reason, details={"code": decision.code})

        if self._tracker.is_locked(account, now):
            self._reject(account, "locked")
            raise AccountLockedError(details={"lockout_expires_at": account.lockout_expires_at.isoformat()})

        if not verify_password(password, account.password_hash):
            outcome = self._tracker.record_failure(account, now)
            if outcome.locked:
                self._reject(account, "locked_now", {"attempts": outcome.attempts})
                raise AccountLockedError(
                    "account has been locked due to too many failed login attempts",
                    details={"lockout_expires_at": outcome.lockout_expires_at.isoformat()},
                )
            self._reject(account, "bad_password", {"attempts": outcome.attempts})
            raise AuthenticationError(
                f"invalid credentials. {outcome.attempts_remaining} attempts remaining",
                details={"attempts_remaining": outcome.attempts_remaining},
            )

        self._tracker.record_success(account, now)
        token, expires_in = issue_session_token(account, self._settings)
        logger.info("login succeeded account_id=%s tenant_id=%s", account.account_id, account.tenant_id)
        LOGIN_OUTCOMES.labels(outcome="success").inc()
        self._repository.write_audit_event(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            event_type="auth.login_succeeded",
            actor=account.account_id,
            metadata={},
        )
        return LoginResult(account=account, tenant=tenant, token=token, expires_in=expires_in)

    def _reject(self, account: Account, outcome: str, metadata: dict[str, Any] | None = None) -> None:
        logger.info(
            "login rejected outcome=%s account_id=%s tenant_id=%s",
            outcome,
            account.account_id,
            account.tenant_id,
        )
        LOGIN_OUTCOMES.labels(outcome=outcome).inc()
        self._repository.write_audit_event(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            event_type="auth.login_failed",
            actor=account.account_id,
            metadata={"outcome": outcome, **(metadata or {})},
        )
