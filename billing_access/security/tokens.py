"""Verification of bearer tokens minted by the external identity provider."""

from __future__ import annotations

from typing import Any

import jwt

from ..config import get_settings


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a JWT returning its payload.

    Parameters
    ----------
    token:
        Encoded JWT issued by the identity provider.

    Returns
    -------
    dict[str, Any]
        The decoded payload if signature, expiry, issuer and audience checks succeed.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or signed by another issuer.
    """

    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=list(settings.jwt_algorithms),
        audience=settings.jwt_audience or None,
        issuer=settings.jwt_issuer or None,
        options={"verify_aud": bool(settings.jwt_audience)},
    )
