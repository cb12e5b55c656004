"""
API authentication using the X-API-KEY header.

Keys come from the comma-separated ``API_KEYS`` setting. With no keys
configured every request is accepted (dev mode).
"""

import secrets

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from servmon.config.settings import get_settings

api_key_header = APIKeyHeader(name="X-API-KEY", auto_error=False)


def _configured_keys() -> list[str]:
    keys = get_settings().api_keys or ""
    return [k.strip() for k in keys.split(",") if k.strip()]


async def verify_api_key(api_key: str | None = Security(api_key_header)) -> str:
    """
    Verify the X-API-KEY header against the configured keys.

    Returns:
        The validated API key, or "dev-mode" when no keys are configured

    Raises:
        HTTPException: 401 if the key is missing or unknown
    """
    valid_keys = _configured_keys()
    if not valid_keys:
        return "dev-mode"

    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-KEY header.",
        )

    # Constant-time comparison against every configured key
    if not any(secrets.compare_digest(api_key, key) for key in valid_keys):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    return api_key
