# backend/routes/email_services/resend_email_service.py
import logging
import re
import time
import uuid
from typing import Any, Dict, List, Optional

import httpx

from tasks.delivery.email_logging import mask_email
from .base_email_service import BaseEmailService, EmailOptions, EmailResult

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def validate_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_REGEX.match(email) is not None


def validate_email_options(options: EmailOptions) -> List[str]:
    """Return every problem with a message; empty when it can be sent"""
    errors = []

    if not options.to:
        errors.append("At least one 'to' recipient is required")
    for index, email in enumerate(options.to):
        if not validate_email(email):
            errors.append(f"Invalid 'to' email at index {index}: {_masked(email)}")

    if not validate_email(_sender_address(options.from_email)):
        errors.append(f"Invalid 'from' email: {_masked(_sender_address(options.from_email))}")

    if not options.subject or not options.subject.strip():
        errors.append("Subject is required and cannot be empty")

    if not options.html and not options.text:
        errors.append("Email must have at least one content type: html or text")

    for label, addresses in (("cc", options.cc), ("bcc", options.bcc)):
        for index, email in enumerate(addresses):
            if not validate_email(email):
                errors.append(f"Invalid '{label}' email at index {index}: {_masked(email)}")

    if options.reply_to and not validate_email(options.reply_to):
        errors.append(f"Invalid 'reply_to' email: {_masked(options.reply_to)}")

    return errors


def _sender_address(from_email: str) -> str:
    # "Name <address>" senders validate on the bare address
    match = re.search(r"<([^>]+)>", from_email or "")
    return match.group(1) if match else from_email


def _masked(email: Optional[str]) -> str:
    return mask_email(email or "")


def _format_recipients(recipients: List[str]) -> str:
    return ", ".join(mask_email(email) for email in recipients)


class ResendEmailService(BaseEmailService):
    provider = "resend"

    def __init__(self, api_key: Optional[str], api_url: str = "https://api.resend.com",
                 test_mode: bool = False, timeout: float = 10.0,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.test_mode = test_mode
        self.timeout = timeout
        self.http_client = http_client

    def _payload(self, options: EmailOptions) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "from": options.from_email,
            "to": options.to,
            "subject": options.subject,
        }
        if options.html:
            payload["html"] = options.html
        if options.text:
            payload["text"] = options.text
        if options.reply_to:
            payload["reply_to"] = options.reply_to
        if options.cc:
            payload["cc"] = options.cc
        if options.bcc:
            payload["bcc"] = options.bcc
        if options.tags:
            payload["tags"] = options.tags
        return payload

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        url = f"{self.api_url}/emails"
        if self.http_client is not None:
            return await self.http_client.post(url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=payload, headers=headers)

    async def send_email(self, options: EmailOptions) -> EmailResult:
        start = time.time()
        recipient = options.to[0] if options.to else None
        masked = _format_recipients(options.to)

        logger.info(f"Starting email send to {masked}", extra={
            "email_event": {"action": "email_send_start", "subject": options.subject, "test_mode": self.test_mode},
        })

        errors = validate_email_options(options)
        if errors:
            error_msg = f"Email validation failed: {', '.join(errors)}"
            logger.error(error_msg, extra={"email_event": {"action": "email_send_error", "error": "validation_failed"}})
            return EmailResult(False, error=error_msg, recipient=recipient,
                               details={"validation_errors": errors})

        if self.test_mode:
            mock_id = f"test_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
            logger.info(f"Email simulated in test mode: {mock_id}", extra={
                "email_event": {"action": "email_send_test_mode", "to": masked,
                                "duration": round((time.time() - start) * 1000)},
            })
            return EmailResult(True, message_id=mock_id, recipient=recipient)

        if not self.api_key:
            logger.error("Resend client not configured: RESEND_API_KEY missing")
            return EmailResult(False, error="Resend API key not configured", recipient=recipient)

        try:
            response = await self._post(self._payload(options))
        except httpx.HTTPError as e:
            logger.error(f"Resend request failed for {masked}: {e}", exc_info=True)
            return EmailResult(False, error=f"Network error: {e}", recipient=recipient, retryable=True)

        duration = round((time.time() - start) * 1000)

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = body.get("message") or f"Resend API error {response.status_code}"
            logger.error(f"Resend API returned error {response.status_code}: {message}", extra={
                "email_event": {"action": "email_send_error", "status_code": response.status_code,
                                "duration": duration},
            })
            return EmailResult(
                False,
                error=message,
                recipient=recipient,
                status_code=response.status_code,
                retryable=response.status_code in RETRYABLE_STATUS_CODES,
                details=body or None,
            )

        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None
            logger.warning(f"Resend accepted email to {masked} but returned no JSON body (status {response.status_code})")
        logger.info(f"Email sent successfully to {masked}", extra={
            "email_event": {"action": "email_send_success", "message_id": message_id, "duration": duration},
        })
        return EmailResult(True, message_id=message_id, recipient=recipient, status_code=response.status_code)
