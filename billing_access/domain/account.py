from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(slots=True)
class Account:
    """Billable entity owned by exactly one tenant."""

    account_id: UUID
    tenant_id: UUID
    name: str
    address: str
    lookup_id: str
    created_at: datetime
    disabled: bool = False
