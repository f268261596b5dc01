"""Repository behaviour against a scripted stand-in for the psycopg pool."""

from __future__ import annotations

import uuid
from contextlib import contextmanager

import psycopg
import pytest

from billing_access.domain.errors import StorageUnavailableError
from billing_access.domain.membership import Membership, Scope
from billing_access.repository import AccountRepository, MembershipRepository, TenantRepository


class ScriptedCursor:
    def __init__(self, rows: list[tuple]) -> None:
        self._rows = rows
        self.executed: list[tuple[str, tuple]] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=()):
        self.executed.append((" ".join(query.split()), tuple(params)))

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class ScriptedConnection:
    def __init__(self, cursor: ScriptedCursor) -> None:
        self._cursor = cursor
        self.commits = 0

    def cursor(self, row_factory=None):
        return self._cursor

    def commit(self):
        self.commits += 1


class ScriptedPool:
    def __init__(self, rows: list[tuple] | None = None, error: Exception | None = None) -> None:
        self.cursor = ScriptedCursor(rows or [])
        self.conn = ScriptedConnection(self.cursor)
        self._error = error

    @contextmanager
    def connection(self):
        if self._error is not None:
            raise self._error
        yield self.conn


def test_operational_errors_surface_as_storage_unavailable():
    repo = TenantRepository(ScriptedPool(error=psycopg.OperationalError("connection refused")))
    with pytest.raises(StorageUnavailableError):
        repo.find_tenant_id_by_host("aiken.dev-1.example.com")


def test_host_lookup_is_an_exact_match():
    tenant_id = uuid.uuid4()
    pool = ScriptedPool(rows=[(tenant_id,)])
    assert TenantRepository(pool).find_tenant_id_by_host("aiken.dev-1.example.com") == tenant_id
    query, params = pool.cursor.executed[0]
    assert query == "SELECT tenant_id FROM tenant_hosts WHERE hostname = %s"
    assert params == ("aiken.dev-1.example.com",)


@pytest.mark.parametrize(
    "scope, table",
    [
        (Scope.APPLICATION, "application_members"),
        (Scope.TENANT, "tenant_members"),
        (Scope.ACCOUNT, "account_members"),
    ],
)
def test_membership_checks_target_the_scope_table(scope, table):
    principal_id = uuid.uuid4()
    scope_id = None if scope is Scope.APPLICATION else uuid.uuid4()
    pool = ScriptedPool(rows=[(1,)])

    assert MembershipRepository(pool).is_member(Membership(scope, principal_id, scope_id))

    query, params = pool.cursor.executed[0]
    assert f"FROM {table}" in query
    assert params[0] == principal_id
    assert len(params) == (1 if scope is Scope.APPLICATION else 2)
    assert pool.conn.commits == 1


def test_duplicate_membership_insert_reports_not_created():
    pool = ScriptedPool(rows=[])
    membership = Membership(Scope.TENANT, uuid.uuid4(), uuid.uuid4())
    assert MembershipRepository(pool).add_member(membership) is False
    assert "ON CONFLICT DO NOTHING" in pool.cursor.executed[0][0]


def test_assign_unknown_role_raises_not_found():
    pool = ScriptedPool(rows=[])
    with pytest.raises(ValueError, match="role not found"):
        MembershipRepository(pool).assign_role(uuid.uuid4(), uuid.uuid4(), "Owner")


def test_account_lookup_hides_disabled_rows_unless_asked():
    pool = ScriptedPool(rows=[])
    repo = AccountRepository(pool)

    repo.get_account(uuid.uuid4())
    repo.get_account(uuid.uuid4(), include_disabled=True)

    (default_query, _), (inclusive_query, _) = pool.cursor.executed
    assert default_query.endswith("AND NOT disabled")
    assert "disabled" not in inclusive_query.split("WHERE", 1)[1]
