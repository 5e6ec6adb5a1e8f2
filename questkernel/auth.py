"""API key guard shared by the engine routers and the companion device."""

import logging
import secrets

from fastapi import HTTPException, Header

from questkernel.config import settings

logger = logging.getLogger(__name__)


def presented_key(x_api_key: str | None, authorization: str | None) -> str | None:
    """The key a client sent, from X-API-Key or else a Bearer token."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


async def verify_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    authorization: str | None = Header(default=None),
) -> str:
    """Reject requests without the configured key. Open when KERNEL_API_KEY is unset."""
    expected = settings.kernel_api_key
    if expected is None:
        return ""

    key = presented_key(x_api_key, authorization)
    if key is None or not secrets.compare_digest(key, expected):
        logger.warning("Rejected engine request with invalid or missing API key")
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return key
