from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from uuid import UUID

import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from billing_access.api import routes
from billing_access.config import get_settings
from billing_access.domain.account import Account
from billing_access.domain.authorizer import AccessGuard, RoleGate, ScopeAuthorizer
from billing_access.domain.directory import TenantDirectory
from billing_access.domain.errors import StorageUnavailableError
from billing_access.domain.generator import BillGenerator
from billing_access.domain.membership import Membership, Scope
from billing_access.domain.schedule import Schedule, ScheduledCharge
from billing_access.domain.service import MembershipService
from billing_access.domain.tenant import Tenant


class FakeTenantRepository:
    """In-memory tenant directory mimicking the Postgres-backed lookups."""

    def __init__(self, members: FakeMembershipRepository) -> None:
        self.tenants: dict[UUID, Tenant] = {}
        self.hosts: dict[str, UUID] = {}
        self.members = members

    def find_tenant_id_by_host(self, hostname: str):
        return self.hosts.get(hostname)

    def get_tenant(self, tenant_id: UUID):
        tenant = self.tenants.get(tenant_id)
        if tenant is None or tenant.disabled:
            return None
        return tenant

    def list_hosts(self, tenant_id: UUID):
        return sorted(host for host, owner in self.hosts.items() if owner == tenant_id)

    def list_tenants(self, member_id: UUID | None = None):
        tenants = [t for t in self.tenants.values() if not t.disabled]
        if member_id is not None:
            tenants = [
                t
                for t in tenants
                if Membership(Scope.TENANT, member_id, t.tenant_id) in self.members.members
            ]
        return sorted(tenants, key=lambda t: t.name)


class FakeAccountRepository:
    def __init__(self) -> None:
        self.accounts: dict[UUID, Account] = {}
        self.lookups = 0

    def get_account(self, account_id: UUID, include_disabled: bool = False):
        self.lookups += 1
        account = self.accounts.get(account_id)
        if account is None or (account.disabled and not include_disabled):
            return None
        return account


class FakeMembershipRepository:
    """Membership sets and role grants kept in plain Python collections."""

    def __init__(self) -> None:
        self.members: set[Membership] = set()
        self.roles: dict[tuple[UUID, str], UUID] = {}
        self.assignments: set[tuple[UUID, UUID]] = set()
        self.unavailable = False

    def _check(self) -> None:
        if self.unavailable:
            raise StorageUnavailableError("connection refused")

    def is_member(self, membership: Membership) -> bool:
        self._check()
        return membership in self.members

    def add_member(self, membership: Membership) -> bool:
        self._check()
        if membership in self.members:
            return False
        self.members.add(membership)
        return True

    def remove_member(self, membership: Membership) -> bool:
        self._check()
        if membership not in self.members:
            return False
        self.members.remove(membership)
        return True

    def list_members(self, scope: Scope, scope_id: UUID | None = None):
        self._check()
        return sorted(
            m.principal_id for m in self.members if m.scope is scope and m.scope_id == scope_id
        )

    def add_role(self, tenant_id: UUID, name: str) -> UUID:
        role_id = uuid.uuid4()
        self.roles[(tenant_id, name)] = role_id
        return role_id

    def role_names(self, principal_id: UUID, tenant_id: UUID) -> set[str]:
        self._check()
        return {
            name
            for (owner, name), role_id in self.roles.items()
            if owner == tenant_id and (principal_id, role_id) in self.assignments
        }

    def assign_role(self, principal_id: UUID, tenant_id: UUID, role: str) -> bool:
        self._check()
        role_id = self.roles.get((tenant_id, role))
        if role_id is None:
            raise ValueError("role not found")
        if (principal_id, role_id) in self.assignments:
            return False
        self.assignments.add((principal_id, role_id))
        return True

    def revoke_role(self, principal_id: UUID, tenant_id: UUID, role: str) -> bool:
        self._check()
        role_id = self.roles.get((tenant_id, role))
        if role_id is None or (principal_id, role_id) not in self.assignments:
            return False
        self.assignments.remove((principal_id, role_id))
        return True


class FakeScheduleRepository:
    def __init__(self) -> None:
        self.schedules: list[Schedule] = []
        self.charges: dict[tuple[UUID, date], ScheduledCharge] = {}

    def list_active_schedules(self, as_of: date):
        return [s for s in self.schedules if not s.disabled and s.end_date >= as_of]

    def create_charge(self, charge: ScheduledCharge) -> bool:
        key = (charge.schedule_id, charge.due_date)
        if key in self.charges:
            return False
        self.charges[key] = charge
        return True


@dataclass
class World:
    """Seeded tenants, accounts and principals shared by the tests."""

    tenants: FakeTenantRepository
    accounts: FakeAccountRepository
    members: FakeMembershipRepository
    schedules: FakeScheduleRepository
    aiken: Tenant
    demo: Tenant
    aiken_account: Account
    demo_account: Account
    operator: UUID = field(default_factory=uuid.uuid4)
    aiken_admin: UUID = field(default_factory=uuid.uuid4)
    aiken_viewer: UUID = field(default_factory=uuid.uuid4)
    account_holder: UUID = field(default_factory=uuid.uuid4)
    demo_manager: UUID = field(default_factory=uuid.uuid4)
    stranger: UUID = field(default_factory=uuid.uuid4)

    def grant(self, scope: Scope, principal_id: UUID, scope_id: UUID | None = None) -> None:
        self.members.members.add(Membership(scope, principal_id, scope_id))

    def give_role(self, principal_id: UUID, tenant: Tenant, role: str) -> None:
        self.members.assignments.add((principal_id, self.members.roles[(tenant.tenant_id, role)]))


def _account(tenant: Tenant, name: str, lookup_id: str) -> Account:
    return Account(
        account_id=uuid.uuid4(),
        tenant_id=tenant.tenant_id,
        name=name,
        address="400 Richland Ave",
        lookup_id=lookup_id,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def world() -> World:
    now = datetime.now(timezone.utc)
    aiken = Tenant(tenant_id=uuid.uuid4(), name="Aiken", created_at=now)
    demo = Tenant(tenant_id=uuid.uuid4(), name="Demo", created_at=now)

    members = FakeMembershipRepository()
    tenants = FakeTenantRepository(members)
    tenants.tenants = {aiken.tenant_id: aiken, demo.tenant_id: demo}
    tenants.hosts = {
        "aiken.dev-1.example.com": aiken.tenant_id,
        "aiken.uat-1.example.com": aiken.tenant_id,
        "demo.dev-1.example.com": demo.tenant_id,
    }

    accounts = FakeAccountRepository()
    aiken_account = _account(aiken, "Aiken Water 400", "1001")
    demo_account = _account(demo, "Demo Water 400", "1001")
    accounts.accounts = {a.account_id: a for a in (aiken_account, demo_account)}

    for tenant in (aiken, demo):
        members.add_role(tenant.tenant_id, "Admin")
        members.add_role(tenant.tenant_id, "Manager")

    world = World(
        tenants=tenants,
        accounts=accounts,
        members=members,
        schedules=FakeScheduleRepository(),
        aiken=aiken,
        demo=demo,
        aiken_account=aiken_account,
        demo_account=demo_account,
    )
    world.grant(Scope.APPLICATION, world.operator)
    world.grant(Scope.TENANT, world.aiken_admin, aiken.tenant_id)
    world.give_role(world.aiken_admin, aiken, "Admin")
    world.grant(Scope.TENANT, world.aiken_viewer, aiken.tenant_id)
    world.grant(Scope.ACCOUNT, world.account_holder, aiken_account.account_id)
    world.grant(Scope.TENANT, world.demo_manager, demo.tenant_id)
    world.give_role(world.demo_manager, demo, "Manager")
    return world


@pytest.fixture
def authorizer(world: World) -> ScopeAuthorizer:
    return ScopeAuthorizer(world.members, world.accounts)


@pytest.fixture
def role_gate(world: World) -> RoleGate:
    return RoleGate(world.members)


def bearer(principal_id: UUID | str) -> dict[str, str]:
    token = jwt.encode({"sub": str(principal_id)}, get_settings().jwt_secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api_client(world: World):
    """Provide a FastAPI test client wired to the in-memory repositories."""
    authorizer = ScopeAuthorizer(world.members, world.accounts)
    app = FastAPI()
    app.include_router(routes.router)
    routes.install_error_handlers(app)
    app.state.tenant_directory = TenantDirectory(world.tenants)
    app.state.access_guard = AccessGuard(authorizer, RoleGate(world.members))
    app.state.membership_service = MembershipService(world.members, world.accounts)
    app.state.bill_generator = BillGenerator(world.schedules, horizon_days=31)

    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers():
    """Return a helper minting identity-provider style bearer headers."""
    return bearer
