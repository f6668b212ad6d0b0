"""Forgot/reset password tokens and authenticated password changes."""

from __future__ import annotations

import logging
from datetime import timedelta

from .account import Account
from .clock import Clock, utc_now
from .errors import AuthenticationError, InvalidTokenError
from ..config import Settings, get_settings
from ..metrics import MAIL_DISPATCHED
from ..notifications import MailDispatcher, password_reset_message
from ..repository import IdentityRepository
from ..security.lockout import lockout_changes
from ..security.passwords import ensure_strong_password, hash_password, verify_password
from ..security.tokens import generate_single_use_token, hash_single_use_token

logger = logging.getLogger(__name__)


class PasswordResetService:
    """Single-use, time-bounded password reset tokens.

    ``request_reset`` never reveals whether an address is registered.
    """

    def __init__(
        self,
        repository: IdentityRepository,
        mailer: MailDispatcher,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._mailer = mailer
        self._settings = settings or get_settings()
        self._clock = clock

    @property
    def token_ttl(self) -> timedelta:
        return timedelta(seconds=self._settings.password_reset_ttl_seconds)

    def request_reset(self, email: str) -> None:
        accounts = self._repository.find_accounts_by_email(email.strip().lower())
        if not accounts:
            logger.warning("password reset requested for unknown address")
            return

        now = self._clock()
        ttl = self.token_ttl
        for account in accounts:
            token, token_hash = generate_single_use_token()
            self._repository.update_account(
                account.account_id,
                account.tenant_id,
                {"password_reset_token_hash": token_hash, "password_reset_expires_at": now + ttl},
            )
            logger.info("password reset token issued account_id=%s tenant_id=%s", account.account_id, account.tenant_id)
            self._repository.write_audit_event(
                account_id=account.account_id,
                tenant_id=account.tenant_id,
                event_type="password.reset_requested",
                actor=None,
                metadata={},
            )
            self._mailer.dispatch(
                password_reset_message(
                    to=account.email,
                    token=token,
                    frontend_url=self._settings.frontend_url,
                    ttl_minutes=int(ttl.total_seconds() // 60),
                )
            )
            MAIL_DISPATCHED.labels(kind="password_reset").inc()

    def reset_password(self, token: str, new_password: str) -> Account:
        """Consume a reset token, replacing the password and waiving any lockout."""
        now = self._clock()
        token_hash = hash_single_use_token(token)
        account = self._repository.find_account_by_reset_token(token_hash, now)
        if account is None:
            raise InvalidTokenError("invalid or expired password reset token")

        ensure_strong_password(new_password, self._settings)

        updated = self._repository.consume_reset_token(
            token_hash,
            now,
            {"password_hash": hash_password(new_password, self._settings), **lockout_changes()},
        )
        if updated is None:
            # spent by a concurrent request between lookup and update
            raise InvalidTokenError("invalid or expired password reset token")
        logger.info("password reset account_id=%s tenant_id=%s", account.account_id, account.tenant_id)
        self._repository.write_audit_event(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            event_type="password.reset",
            actor=account.account_id,
            metadata={},
        )
        return updated

    def change_password(self, account: Account, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, account.password_hash):
            raise AuthenticationError("current password is incorrect")
        ensure_strong_password(new_password, self._settings)
        self._repository.update_account(
            account.account_id,
            account.tenant_id,
            {"password_hash": hash_password(new_password, self._settings)},
        )
        logger.info("password changed account_id=%s tenant_id=%s", account.account_id, account.tenant_id)
        self._repository.write_audit_event(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            event_type="password.changed",
            actor=account.account_id,
            metadata={},
        )
