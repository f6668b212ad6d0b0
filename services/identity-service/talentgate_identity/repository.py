"""Database repository for tenants, roles, accounts, billing history and audit data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Tuple

from psycopg import errors as pg_errors
from psycopg import sql
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import Account, Role
from .domain.errors import ConflictError
from .domain.tenant import (
    BillingInterval,
    PaymentInfo,
    Subscription,
    SubscriptionPayment,
    SubscriptionStatus,
    Tenant,
)

ACCOUNT_COLUMNS = (
    "account_id",
    "tenant_id",
    "email",
    "role_id",
    "role_name",
    "permissions",
    "account_code",
    "created_at",
    "password_hash",
    "first_name",
    "last_name",
    "department",
    "job_title",
    "is_active",
    "is_email_verified",
    "is_deleted",
    "failed_login_attempts",
    "lockout_expires_at",
    "password_reset_token_hash",
    "password_reset_expires_at",
    "invite_token_hash",
    "invited_by",
    "invited_at",
    "invite_accepted_at",
    "last_login",
    "permissions_synced_at",
    "updated_at",
)

# Columns that may change after creation; tenant_id, email and account_id never do.
UPDATABLE_ACCOUNT_FIELDS = frozenset(ACCOUNT_COLUMNS) - {
    "account_id",
    "tenant_id",
    "email",
    "created_at",
    "account_code",
    "updated_at",
}

TENANT_COLUMNS = (
    "tenant_id",
    "name",
    "domain",
    "is_active",
    "created_at",
    "plan",
    "status",
    "billing_interval",
    "amount",
    "currency",
    "max_users",
    "max_jobs",
    "start_date",
    "end_date",
    "order_id",
    "payment_id",
    "payment_signature",
    "last_payment_date",
    "next_payment_date",
)

ROLE_COLUMNS = (
    "role_id",
    "tenant_id",
    "name",
    "display_name",
    "permissions",
    "description",
    "is_system",
    "created_at",
)

PAYMENT_COLUMNS = (
    "payment_id",
    "tenant_id",
    "order_id",
    "amount",
    "currency",
    "status",
    "period_end",
    "created_at",
    "method",
    "signature",
)


def _columns(columns: Iterable[str]) -> sql.Composed:
    return sql.SQL(", ").join(sql.Identifier(column) for column in columns)


@dataclass(slots=True)
class AuditLogRecord:
    """Row projection for items in identity_audit_log."""

    audit_id: int
    account_id: str | None
    tenant_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


class IdentityRepository:
    """Postgres-backed persistence for the identity subsystem.

    Each method touches a single row (or a single tenant's rows) inside one
    transaction; callers compose multi-step workflows and compensate on failure.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    # -- tenants -----------------------------------------------------------

    def create_tenant(self, tenant: Tenant) -> Tenant:
        sub = tenant.subscription
        values = (
            tenant.tenant_id,
            tenant.name,
            tenant.domain,
            tenant.is_active,
            tenant.created_at,
            sub.plan,
            sub.status.value,
            sub.interval.value,
            sub.amount,
            sub.currency,
            sub.max_users,
            sub.max_jobs,
            sub.start_date,
            sub.end_date,
            sub.payment.order_id,
            sub.payment.payment_id,
            sub.payment.signature,
            sub.payment.last_payment_date,
            sub.payment.next_payment_date,
        )
        query = sql.SQL("INSERT INTO tenants ({}) VALUES ({}) RETURNING {}").format(
            _columns(TENANT_COLUMNS),
            sql.SQL(", ").join(sql.Placeholder() * len(TENANT_COLUMNS)),
            _columns(TENANT_COLUMNS),
        )
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                try:
                    cur.execute(query, values)
                except pg_errors.UniqueViolation as exc:
                    raise ConflictError("a company with this domain already exists") from exc
                row = cur.fetchone()
                conn.commit()
        return self._map_tenant(row)

    def get_tenant(self, tenant_id: str) -> Tenant | None:
        return self._fetch_tenant(sql.SQL("tenant_id = %s"), (tenant_id,))

    def find_tenant_by_domain(self, domain: str) -> Tenant | None:
        return self._fetch_tenant(sql.SQL("domain = %s"), (domain.lower(),))

    def find_tenant_by_order_id(self, order_id: str) -> Tenant | None:
        """Resolve the tenant bound to a gateway order at order-creation time."""
        return self._fetch_tenant(sql.SQL("order_id = %s"), (order_id,))

    def set_subscription_order(self, tenant_id: str, order_id: str) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE tenants SET order_id = %s, updated_at = NOW() WHERE tenant_id = %s",
                    (order_id, tenant_id),
                )
                conn.commit()

    def delete_tenant(self, tenant_id: str) -> None:
        """Physically remove a tenant with its roles and accounts (registration rollback only)."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM accounts WHERE tenant_id = %s", (tenant_id,))
                cur.execute("DELETE FROM roles WHERE tenant_id = %s", (tenant_id,))
                cur.execute("DELETE FROM tenants WHERE tenant_id = %s", (tenant_id,))
                conn.commit()

    def get_subscription_payment(self, payment_id: str) -> SubscriptionPayment | None:
        return self._fetch_payment(sql.SQL("payment_id = %s"), (payment_id,))

    def find_subscription_payment_for_order(self, order_id: str) -> SubscriptionPayment | None:
        return self._fetch_payment(sql.SQL("order_id = %s"), (order_id,))

    def apply_subscription_payment(self, payment: SubscriptionPayment) -> Tuple[Tenant, bool]:
        """Record a captured payment and activate the tenant in one transaction.

        Returns the tenant and ``True`` when this call applied the payment, or
        ``False`` when the payment id was already recorded (redelivered callback).
        """
        insert = sql.SQL(
            "INSERT INTO subscription_payments ({}) VALUES ({}) "
            "ON CONFLICT (payment_id) DO NOTHING RETURNING payment_id"
        ).format(
            _columns(PAYMENT_COLUMNS),
            sql.SQL(", ").join(sql.Placeholder() * len(PAYMENT_COLUMNS)),
        )
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                try:
                    cur.execute(insert, tuple(getattr(payment, column) for column in PAYMENT_COLUMNS))
                except pg_errors.UniqueViolation as exc:
                    # order_id is unique: another payment already settled this order
                    raise ConflictError("order has already been settled by another payment") from exc
                applied = cur.fetchone() is not None
                if applied:
                    cur.execute(
                        """
                        UPDATE tenants
                        SET status = %s,
                            end_date = %s,
                            payment_id = %s,
                            payment_signature = %s,
                            last_payment_date = %s,
                            next_payment_date = %s,
                            updated_at = NOW()
                        WHERE tenant_id = %s
                        """,
                        (
                            SubscriptionStatus.active.value,
                            payment.period_end,
                            payment.payment_id,
                            payment.signature,
                            payment.created_at,
                            payment.period_end,
                            payment.tenant_id,
                        ),
                    )
                cur.execute(
                    sql.SQL("SELECT {} FROM tenants WHERE tenant_id = %s").format(_columns(TENANT_COLUMNS)),
                    (payment.tenant_id,),
                )
                row = cur.fetchone()
                conn.commit()
        return self._map_tenant(row), applied

    # -- roles -------------------------------------------------------------

    def create_roles(self, roles: list[Role]) -> list[Role]:
        query = sql.SQL("INSERT INTO roles ({}) VALUES ({})").format(
            _columns(ROLE_COLUMNS),
            sql.SQL(", ").join(sql.Placeholder() * len(ROLE_COLUMNS)),
        )
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    query,
                    [
                        (
                            role.role_id,
                            role.tenant_id,
                            role.name,
                            role.display_name,
                            Json(role.permissions),
                            role.description,
                            role.is_system,
                            role.created_at,
                        )
                        for role in roles
                    ],
                )
                conn.commit()
        return roles

    def get_role(self, role_id: str, tenant_id: str) -> Role | None:
        return self._fetch_role(sql.SQL("role_id = %s AND tenant_id = %s"), (role_id, tenant_id))

    def get_role_by_name(self, name: str, tenant_id: str) -> Role | None:
        return self._fetch_role(sql.SQL("name = %s AND tenant_id = %s"), (name.lower(), tenant_id))

    # -- accounts ----------------------------------------------------------

    def create_account(self, account: Account) -> Account:
        values = [getattr(account, column) for column in ACCOUNT_COLUMNS]
        values[ACCOUNT_COLUMNS.index("permissions")] = Json(account.permissions)
        query = sql.SQL("INSERT INTO accounts ({}) VALUES ({}) RETURNING {}").format(
            _columns(ACCOUNT_COLUMNS),
            sql.SQL(", ").join(sql.Placeholder() * len(ACCOUNT_COLUMNS)),
            _columns(ACCOUNT_COLUMNS),
        )
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                try:
                    cur.execute(query, values)
                except pg_errors.UniqueViolation as exc:
                    raise ConflictError("an account with this email or code already exists") from exc
                row = cur.fetchone()
                conn.commit()
        return Account(*row)

    def get_account(self, account_id: str, tenant_id: str) -> Account | None:
        """Fetch a non-deleted account belonging to the specified tenant or return ``None``."""
        accounts = self._fetch_accounts(
            sql.SQL("account_id = %s AND tenant_id = %s AND NOT is_deleted"), (account_id, tenant_id)
        )
        return accounts[0] if accounts else None

    def find_accounts_by_email(self, email: str, tenant_id: str | None = None) -> list[Account]:
        if tenant_id is None:
            return self._fetch_accounts(sql.SQL("lower(email) = lower(%s) AND NOT is_deleted"), (email,))
        return self._fetch_accounts(
            sql.SQL("lower(email) = lower(%s) AND tenant_id = %s AND NOT is_deleted"), (email, tenant_id)
        )

    def find_account_by_invite_token(self, token_hash: str) -> Account | None:
        accounts = self._fetch_accounts(
            sql.SQL("invite_token_hash = %s AND NOT is_active AND NOT is_deleted"), (token_hash,)
        )
        return accounts[0] if accounts else None

    def find_account_by_reset_token(self, token_hash: str, now: datetime) -> Account | None:
        accounts = self._fetch_accounts(
            sql.SQL(
                "password_reset_token_hash = %s AND password_reset_expires_at > %s AND NOT is_deleted"
            ),
            (token_hash, now),
        )
        return accounts[0] if accounts else None

    def find_tenant_admin(self, tenant_id: str, role_name: str) -> Account | None:
        accounts = self._fetch_accounts(
            sql.SQL("tenant_id = %s AND role_name = %s AND NOT is_deleted ORDER BY created_at ASC LIMIT 1"),
            (tenant_id, role_name),
        )
        return accounts[0] if accounts else None

    def list_accounts_by_role(self, role_id: str, tenant_id: str) -> list[Account]:
        return self._fetch_accounts(
            sql.SQL("role_id = %s AND tenant_id = %s AND NOT is_deleted"), (role_id, tenant_id)
        )

    def count_accounts(self, tenant_id: str) -> int:
        """Count every account ever created for the tenant, soft-deleted ones included."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute("SELECT COUNT(*) FROM accounts WHERE tenant_id = %s", (tenant_id,))
                row = cur.fetchone()
        return int(row[0])

    def account_code_exists(self, tenant_id: str, account_code: str) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    "SELECT 1 FROM accounts WHERE tenant_id = %s AND account_code = %s",
                    (tenant_id, account_code),
                )
                return cur.fetchone() is not None

    def update_account(self, account_id: str, tenant_id: str, changes: Mapping[str, Any]) -> Account | None:
        """Atomically apply ``changes`` to a single account row and return the new state."""
        if not changes:
            return self.get_account(account_id, tenant_id)
        return self._update_account_where(
            changes, sql.SQL("account_id = %s AND tenant_id = %s"), (account_id, tenant_id)
        )

    def consume_reset_token(self, token_hash: str, now: datetime, changes: Mapping[str, Any]) -> Account | None:
        """Apply ``changes`` only while the reset token is still unspent and unexpired.

        The token match is part of the UPDATE itself, so of two requests
        carrying the same token exactly one gets a row back.
        """
        return self._update_account_where(
            {**changes, "password_reset_token_hash": None, "password_reset_expires_at": None},
            sql.SQL("password_reset_token_hash = %s AND password_reset_expires_at > %s AND NOT is_deleted"),
            (token_hash, now),
        )

    def consume_invite_token(self, token_hash: str, changes: Mapping[str, Any]) -> Account | None:
        """Apply ``changes`` only to the still-pending invitation holding ``token_hash``."""
        return self._update_account_where(
            {**changes, "invite_token_hash": None},
            sql.SQL("invite_token_hash = %s AND NOT is_active AND NOT is_deleted"),
            (token_hash,),
        )

    @staticmethod
    def _check_updatable(changes: Mapping[str, Any]) -> None:
        unknown = set(changes) - UPDATABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"cannot update account fields: {sorted(unknown)}")

    def _update_account_where(
        self, changes: Mapping[str, Any], where: sql.Composable, where_params: tuple
    ) -> Account | None:
        self._check_updatable(changes)
        assignments = [
            sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder()) for column in changes
        ]
        assignments.append(sql.SQL("updated_at = NOW()"))
        params = [Json(value) if column == "permissions" else value for column, value in changes.items()]
        query = sql.SQL("UPDATE accounts SET {} WHERE {} RETURNING {}").format(
            sql.SQL(", ").join(assignments),
            where,
            _columns(ACCOUNT_COLUMNS),
        )
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, (*params, *where_params))
                row = cur.fetchone()
                conn.commit()
        return Account(*row) if row else None

    def increment_failed_logins(self, account_id: str, tenant_id: str) -> int:
        """Atomically bump the failed-login counter and return its new value."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    UPDATE accounts
                    SET failed_login_attempts = failed_login_attempts + 1, updated_at = NOW()
                    WHERE account_id = %s AND tenant_id = %s
                    RETURNING failed_login_attempts
                    """,
                    (account_id, tenant_id),
                )
                row = cur.fetchone()
                conn.commit()
        return int(row[0]) if row else 0

    # -- audit -------------------------------------------------------------

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        tenant_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing identity workflow activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO identity_audit_log (account_id, tenant_id, event_type, actor, metadata)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (account_id, tenant_id, event_type, actor, Json(metadata or {})),
                )
                conn.commit()

    def list_audit_events(
        self,
        *,
        tenant_id: str,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: Tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, int]]]:
        """Return audit log entries scoped to a tenant with optional filters and cursor pagination."""
        limit = max(1, min(limit, 100))
        clauses = ["tenant_id = %s"]
        params: list[Any] = [tenant_id]

        if account_id:
            clauses.append("account_id = %s")
            params.append(account_id)
        if event_type:
            clauses.append("event_type = %s")
            params.append(event_type)
        if created_after:
            clauses.append("created_at >= %s")
            params.append(created_after)
        if created_before:
            clauses.append("created_at <= %s")
            params.append(created_before)
        if cursor:
            clauses.append("(created_at, audit_id) < (%s, %s)")
            params.extend(cursor)

        where_sql = " AND ".join(clauses)
        query = f"""
            SELECT audit_id, account_id, tenant_id, event_type, actor, metadata, created_at
            FROM identity_audit_log
            WHERE {where_sql}
            ORDER BY created_at DESC, audit_id DESC
            LIMIT %s
        """
        params.append(limit)

        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                records = [
                    AuditLogRecord(
                        audit_id=row[0],
                        account_id=row[1],
                        tenant_id=row[2],
                        event_type=row[3],
                        actor=row[4],
                        metadata=row[5] or {},
                        created_at=row[6],
                    )
                    for row in cur.fetchall()
                ]

        next_cursor: Tuple[datetime, int] | None = None
        if len(records) == limit:
            last = records[-1]
            next_cursor = (last.created_at, last.audit_id)
        return records, next_cursor

    # -- row mapping -------------------------------------------------------

    def _fetch_tenant(self, where: sql.Composable, params: tuple) -> Tenant | None:
        query = sql.SQL("SELECT {} FROM tenants WHERE {}").format(_columns(TENANT_COLUMNS), where)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        return self._map_tenant(row) if row else None

    def _fetch_role(self, where: sql.Composable, params: tuple) -> Role | None:
        query = sql.SQL("SELECT {} FROM roles WHERE {}").format(_columns(ROLE_COLUMNS), where)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        return Role(*row) if row else None

    def _fetch_accounts(self, where: sql.Composable, params: tuple) -> list[Account]:
        query = sql.SQL("SELECT {} FROM accounts WHERE {}").format(_columns(ACCOUNT_COLUMNS), where)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                return [Account(*row) for row in cur.fetchall()]

    def _fetch_payment(self, where: sql.Composable, params: tuple) -> SubscriptionPayment | None:
        query = sql.SQL("SELECT {} FROM subscription_payments WHERE {}").format(
            _columns(PAYMENT_COLUMNS), where
        )
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        return SubscriptionPayment(*row) if row else None

    def _map_tenant(self, row: tuple) -> Tenant:
        """Convert a raw tenants tuple into the domain ``Tenant`` aggregate."""
        return Tenant(
            tenant_id=row[0],
            name=row[1],
            domain=row[2],
            is_active=row[3],
            created_at=row[4],
            subscription=Subscription(
                plan=row[5],
                status=SubscriptionStatus(row[6]),
                interval=BillingInterval(row[7]),
                amount=row[8],
                currency=row[9],
                max_users=row[10],
                max_jobs=row[11],
                start_date=row[12],
                end_date=row[13],
                payment=PaymentInfo(
                    order_id=row[14],
                    payment_id=row[15],
                    signature=row[16],
                    last_payment_date=row[17],
                    next_payment_date=row[18],
                ),
            ),
        )
