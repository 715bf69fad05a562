# backend/core/security.py
import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request

from core.config import settings

logger = logging.getLogger(__name__)


def extract_cron_secret(authorization: Optional[str], header_secret: Optional[str]) -> Optional[str]:
    """Pull the presented secret from `Authorization: Bearer ...` or `x-cron-secret`"""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    if header_secret:
        return header_secret.strip()
    return None


def is_valid_cron_secret(presented: Optional[str], expected: Optional[str]) -> bool:
    if not expected or not presented:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


def require_cron_secret(request: Request) -> None:
    """FastAPI dependency guarding cron and admin trigger endpoints"""
    app_settings = getattr(request.app.state, "settings", settings)
    expected = app_settings.CRON_SECRET
    if not expected:
        logger.error("CRON_SECRET not configured - rejecting cron request")
        raise HTTPException(status_code=500, detail="Cron secret not configured")

    presented = extract_cron_secret(
        request.headers.get("authorization"),
        request.headers.get("x-cron-secret"),
    )

    if not is_valid_cron_secret(presented, expected):
        logger.warning(f"Unauthorized cron request: {request.method} {request.url.path}")
        raise HTTPException(status_code=401, detail="Unauthorized")
