# backend/routes/email_services/base_email_service.py
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field


@dataclass
class EmailOptions:
    from_email: str
    to: List[str]
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None
    reply_to: Optional[str] = None
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    tags: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    recipient: Optional[str] = None
    status_code: Optional[int] = None
    retryable: bool = False
    details: Optional[Dict[str, Any]] = None


class BaseEmailService:
    provider = "unknown"

    async def send_email(self, options: EmailOptions) -> EmailResult:
        raise NotImplementedError("send_email must be implemented by subclasses")
