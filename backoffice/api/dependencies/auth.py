from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status

from backoffice.core.config import get_settings

DEFAULT_OPERATOR = "operator"


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _matches(expected: str, provided: str | None) -> bool:
    if provided is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


async def require_operator(
    authorization: str | None = Header(default=None),
    x_operator: str | None = Header(default=None),
) -> str:
    """Authorise back-office operator calls and return the acting operator's name.

    Operator routes stay open when ``OPERATOR_API_TOKEN`` is not configured.
    """

    expected = get_settings().operator_api_token
    if expected and not _matches(expected, _bearer_token(authorization)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    actor = (x_operator or "").strip()
    return actor or DEFAULT_OPERATOR


async def require_cron(authorization: str | None = Header(default=None)) -> None:
    expected = get_settings().cron_secret
    if expected and not _matches(expected, _bearer_token(authorization)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return None
