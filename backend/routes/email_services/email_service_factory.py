# backend/routes/email_services/email_service_factory.py
from typing import Optional

import httpx

from core.config import Settings
from .base_email_service import BaseEmailService
from .resend_email_service import ResendEmailService


def get_email_service(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> BaseEmailService:
    """
    Build the outbound email service for the configured provider.
    """
    if not settings.RESEND_API_KEY and not settings.EMAIL_TEST_MODE:
        raise ValueError("Resend API key is required when not in test mode")

    return ResendEmailService(
        api_key=settings.RESEND_API_KEY,
        api_url=settings.RESEND_API_URL,
        test_mode=settings.EMAIL_TEST_MODE,
        timeout=settings.EMAIL_SEND_TIMEOUT_SECONDS,
        http_client=http_client,
    )
