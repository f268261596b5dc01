"""Tenant resolution from the request origin or an explicit tenant id."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from .tenant import Tenant
from ..repository import TenantRepository

logger = logging.getLogger(__name__)


def normalize_host(raw: str | None) -> str | None:
    """Lower-case a Host header value and strip its port and trailing dot."""
    if not raw:
        return None
    host = raw.strip().lower()
    if host.startswith("["):
        host = host[1:].split("]", 1)[0]
    else:
        host = host.split(":", 1)[0]
    host = host.rstrip(".")
    return host or None


def request_host(request: Any) -> str | None:
    """Return the normalized host the request was addressed to."""
    headers = getattr(request, "headers", None) or {}
    host = normalize_host(headers.get("host"))
    if host is None:
        url = getattr(request, "url", None)
        host = normalize_host(getattr(url, "hostname", None))
    return host


class TenantDirectory:
    """Maps host names to tenants and loads tenant records."""

    def __init__(self, repository: TenantRepository) -> None:
        self._repository = repository

    def resolve_tenant_by_host(self, hostname: str | None) -> UUID | None:
        """Exact-match lookup of a host name; no wildcard or subdomain matching."""
        host = normalize_host(hostname)
        if host is None:
            return None
        tenant_id = self._repository.find_tenant_id_by_host(host)
        if tenant_id is None:
            logger.info("no tenant registered for host %s", host)
        return tenant_id

    def resolve_tenant_by_id(self, tenant_id: UUID) -> Tenant | None:
        return self._repository.get_tenant(tenant_id)

    def resolve_current_tenant(self, request: Any) -> Tenant | None:
        """Resolve the tenant owning the host the request was sent to."""
        tenant_id = self.resolve_tenant_by_host(request_host(request))
        if tenant_id is None:
            return None
        return self._repository.get_tenant(tenant_id)

    def resolve_acting_tenant(self, request: Any, tenant_id: UUID | None = None) -> Tenant | None:
        """Prefer an explicitly supplied tenant id, falling back to the request host."""
        if tenant_id is not None:
            return self.resolve_tenant_by_id(tenant_id)
        return self.resolve_current_tenant(request)

    def list_hosts(self, tenant_id: UUID) -> list[str]:
        return self._repository.list_hosts(tenant_id)

    def list_tenants(self, member_id: UUID | None = None) -> list[Tenant]:
        """Return enabled tenants, restricted to those ``member_id`` belongs to when given."""
        return self._repository.list_tenants(member_id)
