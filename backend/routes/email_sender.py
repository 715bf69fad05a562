# backend/routes/email_sender.py
import logging
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from core.dependencies import EmailServices, get_email_services
from core.responses import error_response
from core.security import require_cron_secret
from routes.email_services import EmailOptions
from tasks.delivery.monitoring import EmailOperationType

router = APIRouter(prefix="/admin/email", tags=["admin-email"], dependencies=[Depends(require_cron_secret)])
logger = logging.getLogger(__name__)


class BatchMessage(BaseModel):
    to: List[str] = Field(..., description="Recipient addresses")
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None
    reply_to: Optional[str] = None
    tags: List[Dict[str, str]] = Field(default_factory=list)

    @field_validator('to', mode='before')
    @classmethod
    def normalize_recipients(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str):
            v = [v]
        return [email.strip() for email in v]


class SendBatchRequest(BaseModel):
    email_type: EmailOperationType
    messages: List[BatchMessage] = Field(..., min_length=1)
    round_id: Optional[int] = None
    initiated_by: Optional[str] = None
    from_email: Optional[str] = None


@router.post("/send-batch")
async def send_batch(
    payload: SendBatchRequest,
    services: EmailServices = Depends(get_email_services),
):
    """Send explicit messages through the paced dispatcher"""
    settings = services.settings
    sender = payload.from_email or settings.EMAIL_FROM

    messages = [
        EmailOptions(
            from_email=sender,
            to=message.to,
            subject=message.subject,
            html=message.html,
            text=message.text,
            reply_to=message.reply_to or settings.EMAIL_REPLY_TO,
            tags=message.tags,
        )
        for message in payload.messages
    ]

    try:
        result = await services.dispatcher.send_batch(
            payload.email_type,
            messages,
            round_id=payload.round_id,
            initiated_by=payload.initiated_by or "admin",
        )
    except Exception as e:
        logger.error(f"Batch send failed: {e}", exc_info=True)
        return error_response("Batch send failed", str(e))

    logger.info(f"Batch {result.operation_id}: {result.successful}/{result.total} sent")
    return result.to_dict()
