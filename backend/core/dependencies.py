# backend/core/dependencies.py
"""
Composition root for the email services.

`build_email_services` wires one instance of every service; the app keeps it
on `app.state.email_services` and routes receive it through
`Depends(get_email_services)`.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

import httpx
from fastapi import Request

from core.config import Settings
from routes.email_services import BaseEmailService, get_email_service
from tasks.delivery.email_dispatcher import EmailDispatcher
from tasks.delivery.email_logging import EmailLoggingService, create_email_logger
from tasks.delivery.error_tracking import ErrorTrackingService
from tasks.delivery.health_monitor import HealthCheckService
from tasks.delivery.monitoring import EmailMonitoringService
from tasks.delivery.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class EmailServices:
    settings: Settings
    rate_limiter: RateLimiter
    email_service: BaseEmailService
    monitoring: EmailMonitoringService
    error_tracker: ErrorTrackingService
    health_checker: HealthCheckService
    dispatcher: EmailDispatcher
    email_logging: EmailLoggingService
    webhook_stats: Counter = field(default_factory=Counter)


def build_email_services(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> EmailServices:
    rate_limiter = RateLimiter(min_delay_ms=settings.RATE_LIMIT_MIN_DELAY_MS)
    email_service = get_email_service(settings, http_client=http_client)
    monitoring = EmailMonitoringService(
        max_operations=settings.MONITORING_MAX_OPERATIONS,
        max_errors_per_operation=settings.MONITORING_MAX_ERRORS_PER_OPERATION,
    )
    error_tracker = ErrorTrackingService(max_stored_errors=settings.ERROR_TRACKING_MAX_STORED)
    health_checker = HealthCheckService(settings, error_tracker=error_tracker, http_client=http_client)
    dispatcher = EmailDispatcher(
        rate_limiter,
        email_service,
        monitoring,
        error_tracker,
        max_retries=settings.MAX_EMAIL_RETRIES,
        backoff_base_ms=settings.RETRY_BACKOFF_BASE_MS,
        backoff_max_ms=settings.RETRY_BACKOFF_MAX_MS,
    )

    logger.info(
        f"Email services ready (provider={email_service.provider}, "
        f"test_mode={settings.EMAIL_TEST_MODE}, min_delay={rate_limiter.min_delay_ms}ms)"
    )

    return EmailServices(
        settings=settings,
        rate_limiter=rate_limiter,
        email_service=email_service,
        monitoring=monitoring,
        error_tracker=error_tracker,
        health_checker=health_checker,
        dispatcher=dispatcher,
        email_logging=create_email_logger(),
    )


def get_email_services(request: Request) -> EmailServices:
    return request.app.state.email_services
