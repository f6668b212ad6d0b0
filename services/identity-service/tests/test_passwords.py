from __future__ import annotations

import pytest

from talentgate_identity.domain.errors import ValidationError
from talentgate_identity.security.passwords import (
    ensure_strong_password,
    hash_password,
    password_policy_violations,
    verify_password,
)


def test_hash_and_verify(settings):
    hashed = hash_password("Str0ng!Passw0rd", settings)
    assert hashed.startswith("$2")
    assert verify_password("Str0ng!Passw0rd", hashed)
    assert not verify_password("str0ng!Passw0rd", hashed)


def test_verify_tolerates_missing_or_malformed_hash():
    assert not verify_password("anything", None)
    assert not verify_password("anything", "not-a-bcrypt-hash")


@pytest.mark.parametrize(
    ("password", "fragment"),
    [
        ("Sh0rt!", "at least 8 characters"),
        ("UPPER0NLY!", "lowercase"),
        ("lower0nly!", "uppercase"),
        ("NoDigits!!", "number"),
        ("NoSpecial99", "special character"),
    ],
)
def test_policy_reports_each_violation(password, fragment, settings):
    violations = password_policy_violations(password, settings)
    assert len(violations) == 1
    assert fragment in violations[0]


def test_policy_collects_all_violations(settings):
    assert len(password_policy_violations("abc", settings)) == 4


def test_ensure_strong_password(settings):
    ensure_strong_password("Val1d&Secret", settings)
    with pytest.raises(ValidationError) as excinfo:
        ensure_strong_password("weak", settings)
    assert excinfo.value.details["errors"]


def test_policy_caps_password_at_72_bytes(settings):
    long_password = "Aa1!" + "x" * 69
    assert len(long_password.encode("utf-8")) == 73
    violations = password_policy_violations(long_password, settings)
    assert violations == ["Password must be at most 72 bytes long"]
    assert password_policy_violations("Aa1!" + "x" * 68, settings) == []


def test_policy_counts_bytes_not_characters(settings):
    # 4 ascii + 35 two-byte characters = 74 bytes
    password = "Aa1!" + "é" * 35
    assert any("72 bytes" in violation for violation in password_policy_violations(password, settings))
