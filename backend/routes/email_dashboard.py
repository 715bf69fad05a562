# backend/routes/email_dashboard.py
import logging
from typing import Any, Dict, Literal

from fastapi import APIRouter, Body, Depends, Query

from core.dependencies import EmailServices, get_email_services
from core.responses import error_response, utc_timestamp
from tasks.delivery.dashboard import collect_dashboard_data

router = APIRouter(prefix="/email-dashboard", tags=["email-dashboard"])
logger = logging.getLogger(__name__)

VALID_ACTIONS = ["refresh", "test-health"]


@router.get("")
async def get_email_dashboard(
    time_window: int = Query(24, alias="timeWindow", ge=1, le=24 * 30),
    include_health: bool = Query(True, alias="includeHealth"),
    include_errors: bool = Query(True, alias="includeErrors"),
    include_metrics: bool = Query(True, alias="includeMetrics"),
    response_format: Literal["json", "summary"] = Query("json", alias="format"),
    services: EmailServices = Depends(get_email_services),
):
    """Comprehensive email system dashboard data"""
    try:
        data = await collect_dashboard_data(
            services,
            time_window=time_window,
            include_health=include_health,
            include_errors=include_errors,
            include_metrics=include_metrics,
        )

        if response_format == "summary":
            summary = data.summary.model_dump(mode="json", by_alias=True)
            return {
                "status": summary["overallStatus"],
                "summary": summary,
                "timestamp": data.timestamp,
            }

        return data.to_response()

    except Exception as e:
        logger.error(
            f"Email dashboard endpoint failed: {e}",
            exc_info=True,
            extra={"email_event": {
                "time_window": time_window,
                "include_health": include_health,
                "include_errors": include_errors,
                "include_metrics": include_metrics,
            }},
        )
        return error_response("Dashboard data collection failed", str(e))


@router.post("")
async def email_dashboard_action(
    body: Dict[str, Any] = Body(...),
    services: EmailServices = Depends(get_email_services),
):
    """Trigger a dashboard refresh or a quick health check"""
    action = body.get("action")

    try:
        if action == "refresh":
            logger.info("Dashboard data refresh requested")
            return {"action": "refresh", "status": "completed", "timestamp": utc_timestamp()}

        if action == "test-health":
            result = await services.health_checker.get_quick_health_status()
            return {"action": "test-health", "status": "completed", "result": result, "timestamp": utc_timestamp()}

    except Exception as e:
        logger.error(f"Email dashboard action failed: {e}", exc_info=True)
        return error_response("Dashboard action failed", str(e))

    return error_response("Invalid action", f"Unsupported action: {action}", status_code=400,
                          validActions=VALID_ACTIONS)
