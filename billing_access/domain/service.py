"""Membership service orchestrating gated membership and role mutations."""

from __future__ import annotations

import logging
from typing import Tuple
from uuid import UUID

from .contracts import AddMemberInput, AssignRoleInput
from .errors import CrossTenantError
from .membership import Membership, Scope
from ..repository import AccountRepository, MembershipRepository

logger = logging.getLogger(__name__)


class MembershipService:
    """Membership workflows backed by Postgres storage.

    Callers are expected to have passed the access guard already; this layer
    enforces the data-level rules such as tenant ownership of accounts.
    """

    def __init__(self, members: MembershipRepository, accounts: AccountRepository) -> None:
        """Store the repositories used to validate and persist memberships."""
        self._members = members
        self._accounts = accounts

    def list_members(self, scope: Scope, scope_id: UUID | None = None) -> list[UUID]:
        return self._members.list_members(scope, scope_id)

    def _owned_account(self, tenant_id: UUID, account_id: UUID) -> None:
        account = self._accounts.get_account(account_id)
        if account is None:
            raise ValueError("account not found")
        if account.tenant_id != tenant_id:
            logger.warning(
                "rejected cross-tenant write: account %s belongs to %s, not %s",
                account_id,
                account.tenant_id,
                tenant_id,
            )
            raise CrossTenantError("account does not belong to the acting tenant")

    def add_account_member(
        self, tenant_id: UUID, payload: AddMemberInput, actor: UUID
    ) -> Tuple[Membership, bool]:
        """Add a principal to an account of ``tenant_id``; returns (membership, created flag)."""
        self._owned_account(tenant_id, payload.scope_id)
        membership = Membership(Scope.ACCOUNT, payload.principal_id, payload.scope_id)
        created = self._members.add_member(membership)
        if created:
            logger.info(
                "caller %s added %s to account %s", actor, payload.principal_id, payload.scope_id
            )
        return membership, created

    def remove_account_member(
        self, tenant_id: UUID, account_id: UUID, principal_id: UUID, actor: UUID
    ) -> None:
        self._owned_account(tenant_id, account_id)
        if not self._members.remove_member(Membership(Scope.ACCOUNT, principal_id, account_id)):
            raise ValueError("membership not found")
        logger.info("caller %s removed %s from account %s", actor, principal_id, account_id)

    def add_tenant_member(self, payload: AddMemberInput, actor: UUID) -> Tuple[Membership, bool]:
        membership = Membership(Scope.TENANT, payload.principal_id, payload.scope_id)
        created = self._members.add_member(membership)
        if created:
            logger.info("caller %s added %s to tenant %s", actor, payload.principal_id, payload.scope_id)
        return membership, created

    def remove_tenant_member(self, tenant_id: UUID, principal_id: UUID, actor: UUID) -> None:
        if not self._members.remove_member(Membership(Scope.TENANT, principal_id, tenant_id)):
            raise ValueError("membership not found")
        logger.info("caller %s removed %s from tenant %s", actor, principal_id, tenant_id)

    def add_application_member(self, payload: AddMemberInput, actor: UUID) -> Tuple[Membership, bool]:
        membership = Membership(Scope.APPLICATION, payload.principal_id)
        created = self._members.add_member(membership)
        if created:
            logger.info("caller %s granted application access to %s", actor, payload.principal_id)
        return membership, created

    def remove_application_member(self, principal_id: UUID, actor: UUID) -> None:
        if not self._members.remove_member(Membership(Scope.APPLICATION, principal_id)):
            raise ValueError("membership not found")
        logger.info("caller %s revoked application access from %s", actor, principal_id)

    def assign_role(self, payload: AssignRoleInput, actor: UUID) -> bool:
        """Grant a tenant role, returning ``False`` when the principal already held it."""
        created = self._members.assign_role(payload.principal_id, payload.tenant_id, payload.role)
        if created:
            logger.info(
                "caller %s granted role %s in tenant %s to %s",
                actor,
                payload.role,
                payload.tenant_id,
                payload.principal_id,
            )
        return created

    def revoke_role(self, payload: AssignRoleInput, actor: UUID) -> None:
        if not self._members.revoke_role(payload.principal_id, payload.tenant_id, payload.role):
            raise ValueError("role assignment not found")
        logger.info(
            "caller %s revoked role %s in tenant %s from %s",
            actor,
            payload.role,
            payload.tenant_id,
            payload.principal_id,
        )
