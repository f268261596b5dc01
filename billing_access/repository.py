"""Postgres repositories backing the tenant directory, membership store and schedules.

Tables read or written here:

* ``tenants`` / ``tenant_hosts``: tenant records and the hostname -> tenant map
* ``accounts``: billable accounts, soft-disabled rows hidden outside the authorizer
* ``application_members`` / ``tenant_members`` / ``account_members``
* ``roles`` / ``role_assignments``: tenant-scoped role names and grants
* ``schedules`` / ``charges``: recurrence descriptors and the bills/payments
  they spawn, unique on ``(schedule_id, due_date)``
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Iterator
from uuid import UUID

import psycopg
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .config import Settings
from .domain.account import Account
from .domain.errors import StorageUnavailableError
from .domain.membership import Membership, Scope
from .domain.schedule import Schedule, ScheduledCharge, ScheduleKind
from .domain.tenant import Tenant

logger = logging.getLogger(__name__)


def build_pool(settings: Settings) -> ConnectionPool:
    """Create a closed pool whose connections enforce the per-statement deadline."""
    return ConnectionPool(
        settings.database_url,
        open=False,
        timeout=settings.db_pool_timeout_seconds,
        kwargs={"options": f"-c statement_timeout={settings.db_statement_timeout_ms}"},
    )


class _PooledRepository:
    """Shared connection handling for the Postgres repositories."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        """Yield a tuple cursor inside a transaction, committing on success.

        Connectivity failures, pool checkout timeouts and statement timeouts
        surface as :class:`StorageUnavailableError`.
        """
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    yield cur
                conn.commit()
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            logger.error("storage lookup failed: %s", exc)
            raise StorageUnavailableError(str(exc)) from exc


class TenantRepository(_PooledRepository):
    """Read access to tenants and their registered host names."""

    def find_tenant_id_by_host(self, hostname: str) -> UUID | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT tenant_id FROM tenant_hosts WHERE hostname = %s",
                (hostname,),
            )
            row = cur.fetchone()
        return row[0] if row else None

    def get_tenant(self, tenant_id: UUID) -> Tenant | None:
        """Fetch an enabled tenant or return ``None``."""
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT tenant_id, name, created_at, disabled
                FROM tenants
                WHERE tenant_id = %s AND NOT disabled
                """,
                (tenant_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return Tenant(tenant_id=row[0], name=row[1], created_at=row[2], disabled=row[3])

    def list_hosts(self, tenant_id: UUID) -> list[str]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT hostname FROM tenant_hosts WHERE tenant_id = %s ORDER BY hostname",
                (tenant_id,),
            )
            return [row[0] for row in cur.fetchall()]

    def list_tenants(self, member_id: UUID | None = None) -> list[Tenant]:
        """Return enabled tenants ordered by name, optionally only those with ``member_id`` as member."""
        with self._cursor() as cur:
            if member_id is None:
                cur.execute(
                    "SELECT tenant_id, name, created_at, disabled FROM tenants WHERE NOT disabled ORDER BY name"
                )
            else:
                cur.execute(
                    """
                    SELECT t.tenant_id, t.name, t.created_at, t.disabled
                    FROM tenants t
                    JOIN tenant_members m ON m.tenant_id = t.tenant_id
                    WHERE m.principal_id = %s AND NOT t.disabled
                    ORDER BY t.name
                    """,
                    (member_id,),
                )
            rows = cur.fetchall()
        return [Tenant(tenant_id=row[0], name=row[1], created_at=row[2], disabled=row[3]) for row in rows]


class AccountRepository(_PooledRepository):
    """Account lookups used by the authorizer and membership writes."""

    def get_account(self, account_id: UUID, include_disabled: bool = False) -> Account | None:
        """Fetch an account or return ``None``.

        Disabled accounts are only returned with ``include_disabled``; the
        authorizer needs them to keep tenant ownership visible.
        """
        query = """
            SELECT account_id, tenant_id, name, address, lookup_id, created_at, disabled
            FROM accounts
            WHERE account_id = %s
        """
        if not include_disabled:
            query += " AND NOT disabled"
        with self._cursor() as cur:
            cur.execute(query, (account_id,))
            row = cur.fetchone()
        if not row:
            return None
        return Account(
            account_id=row[0],
            tenant_id=row[1],
            name=row[2],
            address=row[3],
            lookup_id=row[4],
            created_at=row[5],
            disabled=row[6],
        )


_MEMBER_QUERIES: dict[Scope, dict[str, str]] = {
    Scope.APPLICATION: {
        "exists": "SELECT 1 FROM application_members WHERE principal_id = %s",
        "insert": (
            "INSERT INTO application_members (principal_id) VALUES (%s) "
            "ON CONFLICT DO NOTHING RETURNING principal_id"
        ),
        "delete": "DELETE FROM application_members WHERE principal_id = %s RETURNING principal_id",
        "list": "SELECT principal_id FROM application_members ORDER BY principal_id",
    },
    Scope.TENANT: {
        "exists": "SELECT 1 FROM tenant_members WHERE principal_id = %s AND tenant_id = %s",
        "insert": (
            "INSERT INTO tenant_members (principal_id, tenant_id) VALUES (%s, %s) "
            "ON CONFLICT DO NOTHING RETURNING principal_id"
        ),
        "delete": (
            "DELETE FROM tenant_members WHERE principal_id = %s AND tenant_id = %s "
            "RETURNING principal_id"
        ),
        "list": "SELECT principal_id FROM tenant_members WHERE tenant_id = %s ORDER BY principal_id",
    },
    Scope.ACCOUNT: {
        "exists": "SELECT 1 FROM account_members WHERE principal_id = %s AND account_id = %s",
        "insert": (
            "INSERT INTO account_members (principal_id, account_id) VALUES (%s, %s) "
            "ON CONFLICT DO NOTHING RETURNING principal_id"
        ),
        "delete": (
            "DELETE FROM account_members WHERE principal_id = %s AND account_id = %s "
            "RETURNING principal_id"
        ),
        "list": "SELECT principal_id FROM account_members WHERE account_id = %s ORDER BY principal_id",
    },
}


def _member_params(membership: Membership) -> tuple:
    if membership.scope is Scope.APPLICATION:
        return (membership.principal_id,)
    return (membership.principal_id, membership.scope_id)


class MembershipRepository(_PooledRepository):
    """Application, tenant and account member sets plus tenant role grants."""

    def is_member(self, membership: Membership) -> bool:
        with self._cursor() as cur:
            cur.execute(_MEMBER_QUERIES[membership.scope]["exists"], _member_params(membership))
            return cur.fetchone() is not None

    def add_member(self, membership: Membership) -> bool:
        """Insert the membership pair; returns ``False`` when it already existed."""
        with self._cursor() as cur:
            cur.execute(_MEMBER_QUERIES[membership.scope]["insert"], _member_params(membership))
            return cur.fetchone() is not None

    def remove_member(self, membership: Membership) -> bool:
        with self._cursor() as cur:
            cur.execute(_MEMBER_QUERIES[membership.scope]["delete"], _member_params(membership))
            return cur.fetchone() is not None

    def list_members(self, scope: Scope, scope_id: UUID | None = None) -> list[UUID]:
        params = () if scope is Scope.APPLICATION else (scope_id,)
        with self._cursor() as cur:
            cur.execute(_MEMBER_QUERIES[scope]["list"], params)
            return [row[0] for row in cur.fetchall()]

    def role_names(self, principal_id: UUID, tenant_id: UUID) -> set[str]:
        """Return the names of the roles ``principal_id`` holds within ``tenant_id``."""
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT r.name
                FROM role_assignments ra
                JOIN roles r ON r.role_id = ra.role_id
                WHERE ra.principal_id = %s AND r.tenant_id = %s
                """,
                (principal_id, tenant_id),
            )
            return {row[0] for row in cur.fetchall()}

    def assign_role(self, principal_id: UUID, tenant_id: UUID, role: str) -> bool:
        """Grant a tenant role; raises ``ValueError`` when the tenant has no such role."""
        with self._cursor() as cur:
            cur.execute(
                "SELECT role_id FROM roles WHERE tenant_id = %s AND name = %s",
                (tenant_id, role),
            )
            row = cur.fetchone()
            if not row:
                raise ValueError("role not found")
            cur.execute(
                """
                INSERT INTO role_assignments (principal_id, role_id)
                VALUES (%s, %s)
                ON CONFLICT DO NOTHING
                RETURNING role_id
                """,
                (principal_id, row[0]),
            )
            return cur.fetchone() is not None

    def revoke_role(self, principal_id: UUID, tenant_id: UUID, role: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                DELETE FROM role_assignments ra
                USING roles r
                WHERE ra.role_id = r.role_id
                  AND ra.principal_id = %s AND r.tenant_id = %s AND r.name = %s
                RETURNING ra.role_id
                """,
                (principal_id, tenant_id, role),
            )
            return cur.fetchone() is not None


class ScheduleRepository(_PooledRepository):
    """Schedules feeding the bill generator and the charges it creates."""

    def list_active_schedules(self, as_of: date) -> list[Schedule]:
        """Return enabled schedules of enabled accounts whose window has not closed by ``as_of``."""
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT s.schedule_id, s.account_id, s.kind, s.name, s.amount, s.currency,
                       s.day, s.month_interval, s.begin_date, s.end_date, s.disabled
                FROM schedules s
                JOIN accounts a ON a.account_id = s.account_id
                WHERE NOT s.disabled AND NOT a.disabled AND s.end_date >= %s
                ORDER BY s.schedule_id
                """,
                (as_of,),
            )
            rows = cur.fetchall()
        return [
            Schedule(
                schedule_id=row[0],
                account_id=row[1],
                kind=ScheduleKind(row[2]),
                name=row[3],
                amount=row[4],
                currency=row[5],
                day=row[6],
                month_interval=row[7],
                begin_date=row[8],
                end_date=row[9],
                disabled=row[10],
            )
            for row in rows
        ]

    def create_charge(self, charge: ScheduledCharge) -> bool:
        """Insert a charge; returns ``False`` when the schedule already has one for that due date."""
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO charges (
                    charge_id, kind, account_id, name, amount, currency,
                    due_date, schedule_id, transaction_ref, disabled, created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
                ON CONFLICT (schedule_id, due_date) DO NOTHING
                RETURNING charge_id
                """,
                (
                    charge.charge_id,
                    charge.kind.value,
                    charge.account_id,
                    charge.name,
                    charge.amount,
                    charge.currency,
                    charge.due_date,
                    charge.schedule_id,
                    charge.transaction_ref,
                    charge.disabled,
                ),
            )
            return cur.fetchone() is not None
