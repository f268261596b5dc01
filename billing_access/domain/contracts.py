"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(slots=True)
class AddMemberInput:
    """Validated inputs required to grant a principal membership of a scope.

    ``scope_id`` is ``None`` for application members.
    """

    principal_id: UUID
    scope_id: UUID | None = None


@dataclass(slots=True)
class AssignRoleInput:
    """Role grant within a single tenant."""

    principal_id: UUID
    tenant_id: UUID
    role: str
