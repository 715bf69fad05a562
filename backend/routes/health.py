# backend/routes/health.py
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from core.dependencies import EmailServices, get_email_services
from core.responses import error_response, health_status_code

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


@router.get("")
async def system_health(services: EmailServices = Depends(get_email_services)):
    """Full component health report"""
    try:
        report = await services.health_checker.check_system_health()
        return JSONResponse(status_code=health_status_code(report["status"]), content=report)
    except Exception as e:
        logger.error(f"System health check failed: {e}", exc_info=True)
        return error_response("Health check failed", str(e), status="unhealthy")


@router.get("/quick")
async def quick_health(services: EmailServices = Depends(get_email_services)):
    """Data store ping only, for load balancers"""
    try:
        result = await services.health_checker.get_quick_health_status()
        return JSONResponse(status_code=health_status_code(result["status"]), content=result)
    except Exception as e:
        logger.error(f"Quick health check failed: {e}", exc_info=True)
        return error_response("Health check failed", str(e), status="unhealthy")
