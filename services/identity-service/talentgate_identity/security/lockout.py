"""Failed-login accounting and the temporary lockout window."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from ..domain.account import Account

MAX_FAILED_LOGIN_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=15)


class AttemptStore(Protocol):
    def increment_failed_logins(self, account_id: str, tenant_id: str) -> int: ...

    def update_account(self, account_id: str, tenant_id: str, changes: dict) -> Account | None: ...


@dataclass(frozen=True, slots=True)
class FailureOutcome:
    """Result of recording a failed password comparison."""

    attempts: int
    locked: bool
    attempts_remaining: int
    lockout_expires_at: datetime | None = None


class LoginAttemptTracker:
    """Counts consecutive failed logins per account and opens the lockout window.

    The counter is only cleared by :meth:`record_success` (or a password reset).
    An expired lockout reads as unlocked but keeps its counter, so the next
    failure after the window re-locks the account immediately.
    """

    def __init__(
        self,
        store: AttemptStore,
        *,
        max_attempts: int = MAX_FAILED_LOGIN_ATTEMPTS,
        lockout_duration: timedelta = LOCKOUT_DURATION,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self._store = store
        self._max_attempts = max_attempts
        self._lockout_duration = lockout_duration

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def is_locked(self, account: Account, now: datetime) -> bool:
        return account.lockout_expires_at is not None and account.lockout_expires_at > now

    def record_failure(self, account: Account, now: datetime) -> FailureOutcome:
        attempts = self._store.increment_failed_logins(account.account_id, account.tenant_id)
        account.failed_login_attempts = attempts
        if attempts >= self._max_attempts:
            expires_at = now + self._lockout_duration
            self._store.update_account(
                account.account_id, account.tenant_id, {"lockout_expires_at": expires_at}
            )
            account.lockout_expires_at = expires_at
            return FailureOutcome(attempts=attempts, locked=True, attempts_remaining=0, lockout_expires_at=expires_at)
        return FailureOutcome(
            attempts=attempts,
            locked=False,
            attempts_remaining=self._max_attempts - attempts,
        )

    def record_success(self, account: Account, now: datetime) -> None:
        """Clear the counter and any lockout, stamping ``last_login``."""
        self._store.update_account(
            account.account_id,
            account.tenant_id,
            {"failed_login_attempts": 0, "lockout_expires_at": None, "last_login": now},
        )
        account.failed_login_attempts = 0
        account.lockout_expires_at = None
        account.last_login = now


def lockout_changes() -> dict:
    """Column values that waive any lockout (used after a password reset)."""
    return {"failed_login_attempts": 0, "lockout_expires_at": None}
