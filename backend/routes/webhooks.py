# backend/routes/webhooks.py
import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from core.dependencies import EmailServices, get_email_services
from core.responses import utc_timestamp
from tasks.delivery.email_logging import EmailLogContext
from tasks.delivery.error_tracking import ErrorSeverity

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

# Events that point at a recipient problem rather than a delivery
PROBLEM_EVENTS = {
    "email.bounced": ErrorSeverity.MEDIUM,
    "email.complained": ErrorSeverity.HIGH,
    "email.delivery_delayed": ErrorSeverity.LOW,
}

# Tolerated clock skew for signed webhooks
SIGNATURE_TOLERANCE_SECONDS = 5 * 60


class ResendEventData(BaseModel):
    email_id: Optional[str] = None
    to: list = Field(default_factory=list)
    subject: Optional[str] = None
    created_at: Optional[str] = None


class ResendEvent(BaseModel):
    type: str
    created_at: Optional[str] = None
    data: ResendEventData = Field(default_factory=ResendEventData)


def verify_signature(secret: str, headers: Dict[str, str], body: bytes, now: Optional[float] = None) -> bool:
    """Check a Svix-style `v1,<base64 hmac>` signature over `id.timestamp.body`"""
    msg_id = headers.get("svix-id")
    timestamp = headers.get("svix-timestamp")
    signatures = headers.get("svix-signature")
    if not msg_id or not timestamp or not signatures:
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    if abs((now or time.time()) - sent_at) > SIGNATURE_TOLERANCE_SECONDS:
        return False

    key = secret[len("whsec_"):] if secret.startswith("whsec_") else secret
    try:
        key_bytes = base64.b64decode(key)
    except ValueError:
        return False

    signed_content = f"{msg_id}.{timestamp}.".encode() + body
    expected = base64.b64encode(hmac.new(key_bytes, signed_content, hashlib.sha256).digest()).decode()

    for candidate in signatures.split():
        version, _, signature = candidate.partition(",")
        if version == "v1" and hmac.compare_digest(signature, expected):
            return True
    return False


@router.post("/resend")
async def handle_resend_webhook(request: Request, services: EmailServices = Depends(get_email_services)):
    """Record a Resend delivery event in the email log"""
    start_time = time.time()
    webhook_stats = services.webhook_stats
    webhook_stats["total_requests"] += 1

    try:
        body = await request.body()
        if not body:
            raise HTTPException(status_code=400, detail="Empty request body")

        secret = services.settings.RESEND_WEBHOOK_SECRET
        if secret and not verify_signature(secret, request.headers, body):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

        try:
            event = ResendEvent.model_validate(json.loads(body))
        except (ValueError, TypeError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid webhook payload: {e}")

        recipient = event.data.to[0] if event.data.to else None
        status = event.type.split(".", 1)[-1]
        processing_time = round((time.time() - start_time) * 1000, 2)

        services.email_logging.log_webhook_event(
            EmailLogContext(recipient_email=recipient, provider="resend"),
            event.type,
            message_id=event.data.email_id,
            status=status,
            timestamp=event.created_at,
            provider="resend",
            processing_time=processing_time,
        )

        severity = PROBLEM_EVENTS.get(event.type)
        if severity:
            services.error_tracker.track_email_error(
                f"Resend reported {status} for message {event.data.email_id}",
                severity,
                {"stage": "email_send", "endpoint": "/api/webhooks/resend", "event_type": event.type},
                ["webhook", status],
            )

        webhook_stats["successful_requests"] += 1
        webhook_stats[event.type] += 1

        return {
            "status": "success",
            "event_type": event.type,
            "message_id": event.data.email_id,
            "processing_time_ms": processing_time,
            "timestamp": utc_timestamp(),
        }

    except HTTPException:
        webhook_stats["failed_requests"] += 1
        raise
    except Exception as e:
        webhook_stats["failed_requests"] += 1
        logger.exception("Unexpected error in Resend webhook")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.get("/stats")
async def webhook_statistics(services: EmailServices = Depends(get_email_services)):
    """Webhook counters since the services were built"""
    return {"stats": dict(services.webhook_stats), "timestamp": utc_timestamp()}
