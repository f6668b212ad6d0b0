"""Human-readable, tenant-prefixed account codes such as ``ACME-0002``."""

from __future__ import annotations

import re

from .clock import Clock, utc_now
from .tenant import Tenant

MAX_CODE_ATTEMPTS = 10
FALLBACK_PREFIX = "ACCT"

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def code_prefix(tenant_name: str) -> str:
    """First four alphanumerics of the tenant name, upper-cased."""
    return _NON_ALNUM.sub("", tenant_name)[:4].upper() or FALLBACK_PREFIX


def format_code(prefix: str, sequence: int) -> str:
    return f"{prefix}-{sequence:04d}"


def allocate_account_code(repository, tenant: Tenant, clock: Clock = utc_now) -> str:
    """Return the next free sequential code for ``tenant``.

    Starts from the number of accounts ever created in the tenant and probes
    upwards; when every probe collides it falls back to a timestamp suffix.
    """
    prefix = code_prefix(tenant.name)
    start = repository.count_accounts(tenant.tenant_id) + 1
    for sequence in range(start, start + MAX_CODE_ATTEMPTS):
        candidate = format_code(prefix, sequence)
        if not repository.account_code_exists(tenant.tenant_id, candidate):
            return candidate
    return f"{prefix}-{int(clock().timestamp())}"
