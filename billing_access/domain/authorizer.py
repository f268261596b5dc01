"""Hierarchical scope authorization and the tenant role gate.

Trust escalates outward: an application member is implicitly a member of
every tenant and account, and a tenant member is implicitly a member of every
account the tenant owns. Checks run narrowest tier first and stop at the first
grant; the result is the logical OR of all tiers.

Every check fails closed. Missing callers, missing resources and empty
lookups are denials, never exceptions. Only :class:`StorageUnavailableError`
escapes, so an outage is not mistaken for a deny.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable
from uuid import UUID

from prometheus_client import Counter

from .membership import Membership, Scope
from ..repository import AccountRepository, MembershipRepository

logger = logging.getLogger(__name__)

DEFAULT_WRITE_ROLES = frozenset({"Admin", "Manager"})

AUTHORIZATION_DECISIONS = Counter(
    "billing_access_authorization_decisions_total",
    "Authorization decisions by requested scope and outcome.",
    ["scope", "outcome"],
)


class ScopeAuthorizer:
    """Answers application, tenant and account access questions.

    Holds no per-request state; a single instance serves concurrent requests.
    """

    def __init__(self, members: MembershipRepository, accounts: AccountRepository) -> None:
        self._members = members
        self._accounts = accounts

    def has_access(self, caller_id: UUID | None, scope: Scope, scope_id: UUID | None = None) -> bool:
        """Return ``True`` when the caller holds membership at ``scope`` or any scope above it."""
        allowed = caller_id is not None and self._escalate(caller_id, scope, scope_id)
        AUTHORIZATION_DECISIONS.labels(scope=scope.label, outcome="allow" if allowed else "deny").inc()
        if not allowed:
            logger.warning("denied %s-level access to caller %s on %s", scope.label, caller_id, scope_id)
        return allowed

    def _escalate(self, caller_id: UUID, scope: Scope, scope_id: UUID | None) -> bool:
        tenant_id: UUID | None = None

        if scope is Scope.ACCOUNT and scope_id is not None:
            account = self._accounts.get_account(scope_id, include_disabled=True)
            # a missing account still falls through to the application tier
            if account is not None:
                if self._members.is_member(Membership(Scope.ACCOUNT, caller_id, scope_id)):
                    return True
                tenant_id = account.tenant_id
        elif scope is Scope.TENANT:
            tenant_id = scope_id

        if tenant_id is not None:
            if self._members.is_member(Membership(Scope.TENANT, caller_id, tenant_id)):
                return True

        return self._members.is_member(Membership(Scope.APPLICATION, caller_id))

    def check_account_access(self, caller_id: UUID | None, account_id: UUID) -> bool:
        return self.has_access(caller_id, Scope.ACCOUNT, account_id)

    def check_tenant_access(self, caller_id: UUID | None, tenant_id: UUID) -> bool:
        return self.has_access(caller_id, Scope.TENANT, tenant_id)

    def check_application_access(self, caller_id: UUID | None) -> bool:
        return self.has_access(caller_id, Scope.APPLICATION)


class RoleGate:
    """Requires a privileged tenant role for mutating operations."""

    def __init__(
        self,
        members: MembershipRepository,
        allowed_roles: Iterable[str] = DEFAULT_WRITE_ROLES,
    ) -> None:
        self._members = members
        self._allowed_roles = frozenset(allowed_roles)

    def tenant_roles(self, caller_id: UUID | None, tenant_id: UUID) -> set[str]:
        """Return the role names the caller holds within the tenant."""
        if caller_id is None:
            return set()
        return self._members.role_names(caller_id, tenant_id)

    def check_write_role(
        self,
        caller_id: UUID | None,
        tenant_id: UUID | None,
        allowed_roles: Iterable[str] | None = None,
    ) -> bool:
        allowed = self._allowed_roles if allowed_roles is None else frozenset(allowed_roles)
        if caller_id is None or tenant_id is None:
            granted = False
        else:
            granted = bool(self.tenant_roles(caller_id, tenant_id) & allowed)
        AUTHORIZATION_DECISIONS.labels(scope="role", outcome="allow" if granted else "deny").inc()
        if not granted:
            logger.warning("caller %s holds none of %s in tenant %s", caller_id, sorted(allowed), tenant_id)
        return granted


class AccessDecision(str, Enum):
    allow = "allow"
    not_found = "not_found"
    forbidden = "forbidden"


class AccessGuard:
    """Combines scope access and the role gate into transport-ready decisions.

    Denied reads are reported as ``not_found`` so callers cannot probe for
    the existence of resources outside their reach. Denied writes are
    always ``forbidden``.
    """

    def __init__(self, authorizer: ScopeAuthorizer, role_gate: RoleGate) -> None:
        self.authorizer = authorizer
        self.role_gate = role_gate

    def authorize_read(self, caller_id: UUID | None, scope: Scope, scope_id: UUID | None = None) -> AccessDecision:
        if self.authorizer.has_access(caller_id, scope, scope_id):
            return AccessDecision.allow
        return AccessDecision.not_found

    def authorize_write(
        self,
        caller_id: UUID | None,
        tenant_id: UUID | None,
        scope: Scope,
        scope_id: UUID | None = None,
    ) -> AccessDecision:
        if not self.authorizer.has_access(caller_id, scope, scope_id):
            return AccessDecision.forbidden
        if not self.role_gate.check_write_role(caller_id, tenant_id):
            return AccessDecision.forbidden
        return AccessDecision.allow
