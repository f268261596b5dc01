from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(slots=True)
class Tenant:
    """Isolated customer organization; the top-level multi-tenancy boundary."""

    tenant_id: UUID
    name: str
    created_at: datetime
    disabled: bool = False
