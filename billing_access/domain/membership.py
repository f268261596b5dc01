"""Access scopes and the memberships granted at each of them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from uuid import UUID


class Scope(IntEnum):
    """Granularity at which access is granted, ranked narrowest first.

    A membership at a higher-ranked scope implies access to everything below it.
    """

    ACCOUNT = 1
    TENANT = 2
    APPLICATION = 3

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(slots=True, frozen=True)
class Membership:
    """Record that a principal belongs to a scope.

    ``scope_id`` is ``None`` for application members.
    """

    scope: Scope
    principal_id: UUID
    scope_id: UUID | None = None
