"""
Optional shared-key protection for the studio routes.

The key is declared as an APIKeyHeader security scheme so the /studio
operations show it in the OpenAPI docs. With no FACEFILTER_API_KEY set the
check is a no-op.
"""

import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-FaceFilter-API-Key"

studio_key_scheme = APIKeyHeader(
    name=API_KEY_HEADER,
    auto_error=False,
    description="Required on /studio routes when FACEFILTER_API_KEY is set",
)


def key_matches(supplied: Optional[str], expected: str) -> bool:
    """Constant-time comparison of the supplied key against the configured one."""
    if not supplied:
        return False
    return secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": API_KEY_HEADER},
    )


def _settings() -> Settings:
    return get_settings()


async def verify_api_key(
    api_key: Optional[str] = Depends(studio_key_scheme),
    settings: Settings = Depends(_settings),
) -> None:
    """
    Studio route dependency.

    Raises:
        HTTPException: 401 when a key is configured and the header is missing or wrong
    """
    expected = settings.facefilter_api_key
    if not expected:
        return

    if api_key is None:
        logger.warning(f"Studio request without {API_KEY_HEADER}")
        raise _unauthorized("Missing API key")

    if not key_matches(api_key, expected):
        logger.warning("Studio request with a wrong API key")
        raise _unauthorized("Invalid API key")
