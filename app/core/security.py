"""API key check shared by every ``/api`` route of the report service."""

import logging
import secrets

from fastapi import Depends
from fastapi import HTTPException
from fastapi.security import APIKeyHeader

from app.core.config import settings

logger = logging.getLogger(__name__)

# auto_error is off so a missing header gets the same 403 as a wrong one
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(key: str | None = Depends(api_key_header)) -> bool:
    """Checks the ``X-API-Key`` header against the configured server key.

    Args:
        key: The API key extracted from the 'X-API-Key' header, if any.

    Returns:
        True if the API key is valid.

    Raises:
        HTTPException: 403 when the key is missing or wrong, and also when the
            server has no key configured at all.
    """
    if not settings.api_key:
        logger.critical(
            "CRITICAL: API key security is enforced, but no API_KEY is configured "
            "on the server. All report and enhancement requests will be denied."
        )
        raise HTTPException(status_code=403, detail="Invalid API Key")

    if key is None or not secrets.compare_digest(key, settings.api_key):
        raise HTTPException(status_code=403, detail="Invalid API Key")
    return True
