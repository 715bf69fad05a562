# backend/tasks/delivery/email_logging.py - STRUCTURED EMAIL PIPELINE LOGGING
"""
Structured, privacy-scrubbed logging for every stage of an email send:
validate -> fetch data -> render template -> send -> webhook confirm.

All entries emitted by one service instance share a correlation id until it
is rotated. Recipient addresses and sensitive metadata keys are masked before
anything reaches a handler. Logging is diagnostic only: no public method
raises into the caller.
"""
import functools
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# Sink for email pipeline records; configurable handlers attach here
email_logger = logging.getLogger("email")

MASKED = "[MASKED]"
INVALID_EMAIL = "[INVALID_EMAIL]"
SENSITIVE_FIELDS = ("password", "token", "secret", "key", "auth", "credential", "private")


class EmailOperationStage(str, Enum):
    VALIDATION = "validation"
    DATA_FETCH = "data_fetch"
    TEMPLATE_RENDER = "template_render"
    EMAIL_SEND = "email_send"
    WEBHOOK_PROCESS = "webhook_process"
    RETRY = "retry"
    COMPLETE = "complete"


class SystemHealthLevel(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class EmailLogContext:
    """Contextual fields bound to every record of one email operation"""
    operation_id: Optional[str] = None
    correlation_id: Optional[str] = None
    user_id: Optional[str] = None
    round_id: Optional[int] = None
    email_type: Optional[str] = None
    recipient_email: Optional[str] = None
    template_name: Optional[str] = None
    provider: Optional[str] = None
    batch_id: Optional[str] = None
    retry_attempt: Optional[int] = None
    duration: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


ContextLike = Union[EmailLogContext, Mapping[str, Any], None]


def mask_email(email: str) -> str:
    """Keep the first two characters of the local part, star out the rest"""
    parts = email.split("@")
    local_part = parts[0]
    domain = parts[1] if len(parts) > 1 else ""
    if not domain:
        return INVALID_EMAIL

    if len(local_part) > 2:
        masked_local = local_part[:2] + "*" * (len(local_part) - 2)
    else:
        masked_local = local_part

    return f"{masked_local}@{domain}"


def is_sensitive_field(field_name: str) -> bool:
    lowered = field_name.lower()
    return any(sensitive in lowered for sensitive in SENSITIVE_FIELDS)


def sanitize_metadata(metadata: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        key: MASKED if is_sensitive_field(key) else value
        for key, value in metadata.items()
    }


def generate_correlation_id() -> str:
    return f"email-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce_context(context: ContextLike) -> EmailLogContext:
    if context is None:
        return EmailLogContext()
    if isinstance(context, EmailLogContext):
        return context
    known = EmailLogContext.__dataclass_fields__
    return EmailLogContext(**{k: v for k, v in context.items() if k in known})


def best_effort(method):
    """Report internal logging failures on the module logger instead of raising"""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except Exception as e:
            try:
                logger.warning(f"Email log emission failed in {method.__name__}: {e}")
            except Exception:
                pass
            return None

    return wrapper


class EmailContextAdapter(logging.LoggerAdapter):
    """Binds a sanitized email context to every record.

    Per-call structured fields go under `email_event`, the bound context
    under `email_context`, so neither collides with LogRecord attributes.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["email_context"] = self.extra
        kwargs["extra"] = extra
        return msg, kwargs

    def event(self, level: int, message: str, **fields: Any) -> None:
        event = {k: v for k, v in fields.items() if v is not None}
        self.log(level, message, extra={"email_event": event})


class EmailLoggingService:
    """Correlation-scoped structured logging for the email pipeline"""

    def __init__(self, correlation_id: Optional[str] = None, base_logger: Optional[logging.Logger] = None):
        self._correlation_id = correlation_id or generate_correlation_id()
        self._base_logger = base_logger or email_logger

    # ------------------------------------------------------------------
    # Context handling
    # ------------------------------------------------------------------

    def sanitize_context(self, context: ContextLike) -> Dict[str, Any]:
        ctx = _coerce_context(context)
        if not ctx.correlation_id:
            ctx = replace(ctx, correlation_id=self._correlation_id)

        sanitized = ctx.to_dict()

        if sanitized.get("recipient_email"):
            sanitized["recipient_email"] = mask_email(sanitized["recipient_email"])

        if sanitized.get("metadata"):
            sanitized["metadata"] = sanitize_metadata(sanitized["metadata"])

        return sanitized

    def create_child_logger(self, context: ContextLike = None) -> EmailContextAdapter:
        """Logger bound to the sanitized context"""
        return EmailContextAdapter(self._base_logger, self.sanitize_context(context))

    def _child(self, context: ContextLike, **overrides: Any) -> EmailContextAdapter:
        ctx = _coerce_context(context)
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if overrides:
            ctx = replace(ctx, **overrides)
        return self.create_child_logger(ctx)

    # ------------------------------------------------------------------
    # Generic stage records
    # ------------------------------------------------------------------

    @best_effort
    def log_operation_start(self, stage: EmailOperationStage, context: ContextLike, message: Optional[str] = None):
        stage = EmailOperationStage(stage)
        self._child(context).event(
            logging.INFO,
            message or f"Email operation {stage.value} started",
            stage=stage.value,
            action="start",
            timestamp=_utc_now(),
        )

    @best_effort
    def log_operation_complete(
        self,
        stage: EmailOperationStage,
        context: ContextLike,
        success: bool,
        duration: Optional[float] = None,
        message: Optional[str] = None,
    ):
        stage = EmailOperationStage(stage)
        outcome = "completed" if success else "failed"
        self._child(context).event(
            logging.INFO,
            message or f"Email operation {stage.value} {outcome}",
            stage=stage.value,
            action="complete",
            success=success,
            duration=duration,
            timestamp=_utc_now(),
        )

    @best_effort
    def log_operation_error(
        self,
        stage: EmailOperationStage,
        context: ContextLike,
        error: Union[BaseException, str],
        retryable: bool = False,
    ):
        stage = EmailOperationStage(stage)
        if isinstance(error, BaseException):
            error_message = str(error) or error.__class__.__name__
            error_type = error.__class__.__name__
        else:
            error_message = error
            error_type = None

        self._child(context).event(
            logging.ERROR,
            f"Email operation {stage.value} error: {error_message}",
            stage=stage.value,
            action="error",
            error=error_message,
            error_type=error_type,
            retryable=retryable,
            timestamp=_utc_now(),
        )

    # ------------------------------------------------------------------
    # Stage-specific records
    # ------------------------------------------------------------------

    @best_effort
    def log_email_validation(
        self,
        context: ContextLike,
        is_valid: bool,
        errors: Optional[List[str]] = None,
        email_count: Optional[int] = None,
    ):
        child = self._child(context)
        if is_valid:
            child.event(
                logging.INFO,
                "Email validation passed",
                stage=EmailOperationStage.VALIDATION.value,
                action="success",
                email_count=email_count,
            )
        else:
            child.event(
                logging.WARNING,
                "Email validation failed",
                stage=EmailOperationStage.VALIDATION.value,
                action="failure",
                errors=list(errors or []),
            )

    @best_effort
    def log_template_rendering(
        self,
        context: ContextLike,
        template_name: str,
        render_time: float,
        success: bool,
        template_size: Optional[int] = None,
        error: Optional[str] = None,
    ):
        child = self._child(context, template_name=template_name)
        if success:
            child.event(
                logging.INFO,
                f"Template {template_name} rendered successfully",
                stage=EmailOperationStage.TEMPLATE_RENDER.value,
                action="success",
                render_time=render_time,
                template_size=template_size,
            )
        else:
            child.event(
                logging.ERROR,
                f"Template {template_name} rendering failed",
                stage=EmailOperationStage.TEMPLATE_RENDER.value,
                action="failure",
                render_time=render_time,
                error=error,
            )

    @best_effort
    def log_email_sending(
        self,
        context: ContextLike,
        success: bool,
        send_time: float,
        message_id: Optional[str] = None,
        provider: Optional[str] = None,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        child = self._child(context, provider=provider)
        if success:
            child.event(
                logging.INFO,
                "Email sent successfully",
                stage=EmailOperationStage.EMAIL_SEND.value,
                action="success",
                message_id=message_id,
                send_time=send_time,
                status_code=status_code,
            )
        else:
            child.event(
                logging.ERROR,
                "Email sending failed",
                stage=EmailOperationStage.EMAIL_SEND.value,
                action="failure",
                send_time=send_time,
                error=error,
                status_code=status_code,
            )

    @staticmethod
    def completion_percentage(processed: int, total: int) -> int:
        if total <= 0:
            return 0
        # Half-up, not banker's rounding
        return int(processed / total * 100 + 0.5)

    @best_effort
    def log_batch_progress(
        self,
        context: ContextLike,
        total_emails: int,
        processed: int,
        successful: int,
        failed: int,
        current_batch: Optional[int] = None,
        total_batches: Optional[int] = None,
    ):
        percentage = self.completion_percentage(processed, total_emails)
        self._child(context).event(
            logging.INFO,
            f"Batch progress: {processed}/{total_emails} emails processed ({percentage}%)",
            stage=EmailOperationStage.EMAIL_SEND.value,
            action="batch_progress",
            total_emails=total_emails,
            processed=processed,
            successful=successful,
            failed=failed,
            completion_percentage=percentage,
            current_batch=current_batch,
            total_batches=total_batches,
        )

    @best_effort
    def log_webhook_event(
        self,
        context: ContextLike,
        event_type: str,
        message_id: Optional[str] = None,
        status: Optional[str] = None,
        timestamp: Optional[str] = None,
        provider: Optional[str] = None,
        processing_time: Optional[float] = None,
    ):
        self._child(context, provider=provider).event(
            logging.INFO,
            f"Webhook event {event_type} processed",
            stage=EmailOperationStage.WEBHOOK_PROCESS.value,
            action="event_received",
            event_type=event_type,
            message_id=message_id,
            status=status,
            event_timestamp=timestamp,
            processing_time=processing_time,
        )

    @best_effort
    def log_retry_attempt(
        self,
        context: ContextLike,
        attempt: int,
        max_attempts: int,
        delay: float,
        reason: str,
        next_retry_at: Optional[datetime] = None,
    ):
        self._child(context, retry_attempt=attempt).event(
            logging.WARNING,
            f"Retry attempt {attempt}/{max_attempts} for: {reason}",
            stage=EmailOperationStage.RETRY.value,
            action="attempt",
            attempt=attempt,
            max_attempts=max_attempts,
            delay=delay,
            reason=reason,
            next_retry_at=next_retry_at.isoformat() if next_retry_at else None,
        )

    @best_effort
    def log_system_health(
        self,
        status: str,
        active_operations: int = 0,
        queue_size: int = 0,
        error_rate: float = 0.0,
        avg_response_time: float = 0.0,
        memory_usage: Optional[float] = None,
        recommendations: Optional[List[str]] = None,
    ):
        """Process-wide health record, not bound to an operation context"""
        health = SystemHealthLevel(status)
        level = {
            SystemHealthLevel.HEALTHY: logging.INFO,
            SystemHealthLevel.DEGRADED: logging.WARNING,
            SystemHealthLevel.UNHEALTHY: logging.ERROR,
        }[health]

        event = {
            "status": health.value,
            "active_operations": active_operations,
            "queue_size": queue_size,
            "error_rate": error_rate,
            "avg_response_time": avg_response_time,
            "memory_usage": memory_usage,
            "recommendations": recommendations,
            "timestamp": _utc_now(),
        }
        self._base_logger.log(
            level,
            f"Email system health: {health.value}",
            extra={
                "component": "email_system_health",
                "email_event": {k: v for k, v in event.items() if v is not None},
            },
        )

    # ------------------------------------------------------------------
    # Correlation ids
    # ------------------------------------------------------------------

    def get_correlation_id(self) -> str:
        return self._correlation_id

    def new_correlation_id(self) -> str:
        self._correlation_id = generate_correlation_id()
        return self._correlation_id


def create_email_logger(correlation_id: Optional[str] = None) -> EmailLoggingService:
    """Scoped logging service for one logical operation"""
    return EmailLoggingService(correlation_id)
