from __future__ import annotations

import pytest

from conftest import STRONG_PASSWORD
from talentgate_identity.domain.errors import (
    AccountLockedError,
    AuthenticationError,
    InvalidTokenError,
    ValidationError,
)

NEW_PASSWORD = "N3w!Secret99"


def test_unknown_address_is_silent(service, active_tenant, mail_sender):
    sent_before = len(mail_sender.sent)
    service.password_reset.request_reset("nobody@acme.com")
    assert len(mail_sender.sent) == sent_before


def test_request_stores_only_token_digest(service, active_tenant, mail_sender, repository, clock):
    service.password_reset.request_reset("admin@acme.com")
    token = mail_sender.last_token("admin@acme.com")

    stored = repository.get_account(active_tenant.account_id, active_tenant.tenant_id)
    assert stored.password_reset_token_hash != token
    assert len(stored.password_reset_token_hash) == 64
    assert stored.password_reset_expires_at == clock.now + service.password_reset.token_ttl


def test_reset_replaces_password(service, active_tenant, mail_sender):
    service.password_reset.request_reset("admin@acme.com")
    service.password_reset.reset_password(mail_sender.last_token("admin@acme.com"), NEW_PASSWORD)

    assert service.login("admin@acme.com", NEW_PASSWORD).account.account_id == active_tenant.account_id
    with pytest.raises(AuthenticationError):
        service.login("admin@acme.com", STRONG_PASSWORD)


def test_reset_token_is_single_use(service, active_tenant, mail_sender):
    service.password_reset.request_reset("admin@acme.com")
    token = mail_sender.last_token("admin@acme.com")
    service.password_reset.reset_password(token, NEW_PASSWORD)
    with pytest.raises(InvalidTokenError):
        service.password_reset.reset_password(token, "An0ther!Secret")


def test_reset_token_expires(service, active_tenant, mail_sender, clock):
    service.password_reset.request_reset("admin@acme.com")
    token = mail_sender.last_token("admin@acme.com")
    clock.advance(minutes=61)
    with pytest.raises(InvalidTokenError):
        service.password_reset.reset_password(token, NEW_PASSWORD)


def test_new_request_invalidates_previous_token(service, active_tenant, mail_sender):
    service.password_reset.request_reset("admin@acme.com")
    first = mail_sender.last_token("admin@acme.com")
    service.password_reset.request_reset("admin@acme.com")
    with pytest.raises(InvalidTokenError):
        service.password_reset.reset_password(first, NEW_PASSWORD)


def test_weak_password_keeps_token_valid(service, active_tenant, mail_sender):
    service.password_reset.request_reset("admin@acme.com")
    token = mail_sender.last_token("admin@acme.com")
    with pytest.raises(ValidationError):
        service.password_reset.reset_password(token, "password")
    service.password_reset.reset_password(token, NEW_PASSWORD)


def test_reset_waives_lockout(service, active_tenant, mail_sender, repository):
    for _ in range(5):
        with pytest.raises((AuthenticationError, AccountLockedError)):
            service.login("admin@acme.com", "wrong-password")

    service.password_reset.request_reset("admin@acme.com")
    service.password_reset.reset_password(mail_sender.last_token("admin@acme.com"), NEW_PASSWORD)

    stored = repository.get_account(active_tenant.account_id, active_tenant.tenant_id)
    assert stored.failed_login_attempts == 0
    assert stored.lockout_expires_at is None
    assert service.login("admin@acme.com", NEW_PASSWORD).token


def test_change_password_checks_current_password(service, active_tenant):
    with pytest.raises(AuthenticationError) as excinfo:
        service.password_reset.change_password(active_tenant, "wrong-password", NEW_PASSWORD)
    assert excinfo.value.message == "current password is incorrect"


def test_change_password(service, active_tenant, repository):
    service.password_reset.change_password(active_tenant, STRONG_PASSWORD, NEW_PASSWORD)
    assert service.login("admin@acme.com", NEW_PASSWORD).token
    assert repository.audit_log[-2].event_type == "password.changed"


def test_token_spent_by_a_concurrent_reset_is_rejected(service, active_tenant, mail_sender, repository, monkeypatch):
    service.password_reset.request_reset("admin@acme.com")
    token = mail_sender.last_token("admin@acme.com")

    # both requests read the row before either one writes
    lookup = repository.find_account_by_reset_token
    seen = {}
    monkeypatch.setattr(
        repository,
        "find_account_by_reset_token",
        lambda token_hash, now: seen.setdefault(token_hash, lookup(token_hash, now)),
    )

    service.password_reset.reset_password(token, NEW_PASSWORD)
    with pytest.raises(InvalidTokenError):
        service.password_reset.reset_password(token, "An0ther!Secret")
    assert service.login("admin@acme.com", NEW_PASSWORD).account.account_id == active_tenant.account_id
