# backend/routes/cron.py
import logging

import psutil
from fastapi import APIRouter, Depends

from core.dependencies import EmailServices, get_email_services
from core.responses import error_response, utc_timestamp
from core.security import require_cron_secret

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])
logger = logging.getLogger(__name__)


@router.get("/email-health-check")
async def email_health_check(services: EmailServices = Depends(get_email_services)):
    """Scheduled snapshot of email system health, written to the email log"""
    try:
        system_health = services.monitoring.get_system_health()
        memory_usage = round(psutil.Process().memory_info().rss / (1024 * 1024), 2)
        error_rate = round(100 - system_health["success_rate_24h"], 2)

        services.email_logging.log_system_health(
            system_health["status"],
            active_operations=system_health["current_operations"],
            queue_size=services.rate_limiter.queue_size,
            error_rate=error_rate,
            avg_response_time=system_health["avg_response_time"],
            memory_usage=memory_usage,
            recommendations=system_health["recommendations"],
        )

        logger.info(f"Cron email health check: {system_health['status']}")

        return {
            "success": True,
            "timestamp": utc_timestamp(),
            "status": system_health["status"],
            "health": system_health,
            "error_rate": error_rate,
            "memory_usage_mb": memory_usage,
            "rate_limiter": services.rate_limiter.stats(),
        }

    except Exception as e:
        logger.error(f"Cron email health check failed: {e}", exc_info=True)
        return error_response("Email health check failed", str(e))
