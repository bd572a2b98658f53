"""HS256 access tokens shared by the HTTP API and the socket handshake.

Issuer and audience come from settings so the chat service can accept tokens
minted by the main API.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, Optional

import jwt
from jwt import InvalidTokenError

from app.settings import settings

_REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud"]


def encode_access(
    payload: dict[str, object],
    *,
    ttl_seconds: int = 3600,
    roles: Optional[Iterable[str]] = None,
) -> str:
    now = int(time.time())
    body: Dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    if roles:
        body["roles"] = list(roles)
    body.update(payload)
    return jwt.encode(body, settings.secret_key, algorithm="HS256")


def decode_access(token: str) -> dict[str, object]:
    """Decode and validate an access token.

    Raises jwt.InvalidTokenError subclasses on failure.
    """
    payload = jwt.decode(
        token,
        settings.secret_key,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        leeway=settings.jwt_leeway_seconds,
        options={"require": _REQUIRED_CLAIMS},
    )
    if not (payload.get("sub") or payload.get("userId")):
        raise InvalidTokenError("missing_claim:sub")
    return payload  # type: ignore[return-value]
