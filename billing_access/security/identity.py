"""Caller identity extraction from an already verified principal."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping
from uuid import UUID

logger = logging.getLogger(__name__)

NIL_PRINCIPAL = UUID(int=0)


@dataclass(slots=True, frozen=True)
class VerifiedPrincipal:
    """Claim set handed over by the identity provider after token verification."""

    claims: Mapping[str, Any] = field(default_factory=dict)


def resolve_caller(
    principal: VerifiedPrincipal | Mapping[str, Any] | None,
    claim: str = "sub",
) -> UUID | None:
    """Return the caller id encoded in ``claim`` or ``None``.

    Never raises: a missing principal, a missing or empty claim, a value that
    does not parse as a UUID and the nil UUID all resolve to ``None``.
    """
    if principal is None:
        logger.warning("caller attempted call without a principal")
        return None
    claims = principal.claims if isinstance(principal, VerifiedPrincipal) else principal
    raw = claims.get(claim) if isinstance(claims, Mapping) else None
    if raw is None or raw == "":
        logger.warning("caller attempted call without a %s claim", claim)
        return None
    try:
        caller_id = raw if isinstance(raw, UUID) else UUID(str(raw))
    except (TypeError, ValueError):
        logger.warning("caller claim %s=%r could not be parsed as a UUID", claim, raw)
        return None
    if caller_id == NIL_PRINCIPAL:
        logger.warning("caller claim %s carried the nil UUID", claim)
        return None
    return caller_id
