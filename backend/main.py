# backend/main.py
"""
FastAPI entrypoint for the TippSlottet email service.
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from core.config import Settings, settings as default_settings
from core.dependencies import EmailServices, build_email_services
from core.logging_config import configure_logging
from core.responses import utc_timestamp
from routes import cron, email_dashboard, email_health, email_sender, health, webhooks

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[EmailServices] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL, structured=settings.ENABLE_STRUCTURED_LOGGING)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENVIRONMENT})")
        if getattr(app.state, "email_services", None) is None:
            app.state.email_services = build_email_services(settings)
        logger.info(f"Feature flags: {settings.get_feature_flags()}")
        yield
        limiter = app.state.email_services.rate_limiter
        if limiter.queue_size:
            logger.warning(f"Shutting down with {limiter.queue_size} queued email sends")
        logger.info(f"{settings.APP_NAME} stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Rate-limited email delivery, logging and monitoring",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.email_services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_timing_middleware(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        if process_time > settings.SLOW_REQUEST_THRESHOLD_SECONDS:
            logger.warning(f"Slow request: {request.method} {request.url.path} - {process_time:.3f}s")

        response.headers["X-Process-Time"] = str(round(process_time, 3))
        return response

    @app.get("/health")
    async def liveness():
        """Process liveness, no dependency checks"""
        return {
            "status": "healthy",
            "timestamp": utc_timestamp(),
            "version": settings.APP_VERSION,
        }

    @app.get("/")
    async def root():
        return {
            "message": f"{settings.APP_NAME} v{settings.APP_VERSION}",
            "status": "operational",
            "environment": settings.ENVIRONMENT,
            "endpoints": {
                "dashboard": "/api/email-dashboard",
                "email_health": "/api/email-health",
                "system_health": "/api/health",
                "cron_health_check": "/api/cron/email-health-check",
                "send_batch": "/api/admin/email/send-batch",
                "resend_webhook": "/api/webhooks/resend",
            },
        }

    app.include_router(email_dashboard.router, prefix="/api")
    app.include_router(email_health.router, prefix="/api")
    app.include_router(health.router, prefix="/api")
    app.include_router(cron.router, prefix="/api")
    app.include_router(email_sender.router, prefix="/api")
    app.include_router(webhooks.router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
