# backend/routes/email_health.py
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from core.dependencies import EmailServices, get_email_services
from core.responses import error_response, health_status_code, utc_timestamp
from tasks.delivery.monitoring import TIMEFRAMES_SECONDS

router = APIRouter(prefix="/email-health", tags=["email-health"])
logger = logging.getLogger(__name__)


@router.get("")
async def get_email_health(services: EmailServices = Depends(get_email_services)):
    """Email system health, recent metrics and performance insights"""
    try:
        system_health = services.monitoring.get_system_health()
        insights = services.monitoring.get_performance_insights("24h")

        content = {
            "timestamp": utc_timestamp(),
            "status": system_health["status"],
            "health": {"system_status": system_health["status"], **{
                k: v for k, v in system_health.items() if k != "status"
            }},
            "rate_limiter": services.rate_limiter.stats(),
            "performance": {
                "timeframe": insights["timeframe"],
                "metrics": {
                    "total_operations": insights["total_operations"],
                    "total_emails_sent": insights["total_emails_sent"],
                    "total_errors": insights["total_errors"],
                    "success_rate": f"{insights['success_rate']:.1f}%",
                    "avg_duration_per_operation": f"{insights['avg_duration_per_operation'] / 1000:.1f}s",
                    "avg_emails_per_operation": f"{insights['avg_emails_per_operation']:.1f}",
                },
                "errors": {"most_common_errors": insights["most_common_errors"]},
                "slowest_operations": insights["slowest_operations"],
            },
        }

        return JSONResponse(status_code=health_status_code(system_health["status"]), content=content)

    except Exception as e:
        logger.error(f"Error getting email health status: {e}", exc_info=True)
        return error_response("Failed to retrieve email system health status", str(e), status="error")


@router.post("")
async def get_email_performance(
    body: Dict[str, Any] = Body(...),
    services: EmailServices = Depends(get_email_services),
):
    """Performance insights for one of the supported timeframes"""
    timeframe = body.get("timeframe")
    if not isinstance(timeframe, str) or timeframe not in TIMEFRAMES_SECONDS:
        return error_response(
            "Invalid timeframe",
            f"Invalid timeframe. Must be one of: {', '.join(TIMEFRAMES_SECONDS)}",
            status_code=400,
        )

    try:
        insights = services.monitoring.get_performance_insights(timeframe)
        return {"timestamp": utc_timestamp(), "insights": insights}
    except Exception as e:
        logger.error(f"Error getting performance insights: {e}", exc_info=True)
        return error_response("Failed to retrieve performance insights", str(e))
