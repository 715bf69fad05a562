# backend/tasks/delivery/email_dispatcher.py - RATE-LIMITED BATCH SENDING
"""
Sends a batch of emails through the shared rate limiter.

One batch is one monitored operation with its own correlation id. Each
message is validated, sent with retries for transient provider failures and
counted toward the batch progress. A failed message never stops the batch.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from routes.email_services import BaseEmailService, EmailOptions, EmailResult, validate_email_options
from .email_logging import (
    EmailLogContext,
    EmailLoggingService,
    EmailOperationStage,
    create_email_logger,
    mask_email,
)
from .error_tracking import ErrorSeverity, ErrorTrackingService
from .monitoring import EmailErrorCategory, EmailMonitoringService, EmailOperationStatus, EmailOperationType
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class BatchProgress:
    total: int
    processed: int = 0
    successful: int = 0
    failed: int = 0

    @property
    def completion_percentage(self) -> int:
        return EmailLoggingService.completion_percentage(self.processed, self.total)


@dataclass
class SendOutcome:
    index: int
    recipient: str
    success: bool
    attempts: int
    message_id: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "recipient": self.recipient,
            "success": self.success,
            "attempts": self.attempts,
            "message_id": self.message_id,
            "error": self.error,
            "status_code": self.status_code,
        }


@dataclass
class BatchResult:
    operation_id: str
    correlation_id: str
    email_type: str
    total: int
    successful: int
    failed: int
    duration_ms: float
    results: List[SendOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "operation_id": self.operation_id,
            "correlation_id": self.correlation_id,
            "email_type": self.email_type,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "duration_ms": round(self.duration_ms),
            "results": [outcome.to_dict() for outcome in self.results],
        }


def _error_category(result: EmailResult) -> EmailErrorCategory:
    if result.details and result.details.get("validation_errors"):
        return EmailErrorCategory.VALIDATION
    if result.status_code == 429:
        return EmailErrorCategory.RATE_LIMIT
    if result.status_code in (401, 403):
        return EmailErrorCategory.AUTHENTICATION
    if result.status_code is None and result.retryable:
        return EmailErrorCategory.NETWORK
    return EmailErrorCategory.SENDING


class EmailDispatcher:
    """Validates, paces, retries and accounts for outbound batch emails"""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        email_service: BaseEmailService,
        monitoring: EmailMonitoringService,
        error_tracker: ErrorTrackingService,
        logging_factory: Callable[[], EmailLoggingService] = create_email_logger,
        max_retries: int = 3,
        backoff_base_ms: int = 1000,
        backoff_max_ms: int = 30000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.rate_limiter = rate_limiter
        self.email_service = email_service
        self.monitoring = monitoring
        self.error_tracker = error_tracker
        self.logging_factory = logging_factory
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.backoff_max_ms = backoff_max_ms
        self._sleep = sleep

    def retry_delay_ms(self, attempt: int) -> int:
        """Exponential backoff, never shorter than the limiter's minimum gap"""
        delay = min(self.backoff_base_ms * (2 ** (attempt - 1)), self.backoff_max_ms)
        return max(delay, self.rate_limiter.min_delay_ms)

    async def send_batch(
        self,
        email_type: EmailOperationType,
        messages: List[EmailOptions],
        round_id: Optional[int] = None,
        initiated_by: Optional[str] = None,
    ) -> BatchResult:
        email_type = EmailOperationType(email_type)
        log = self.logging_factory()
        started = time.time()

        operation_id = self.monitoring.start_operation(
            email_type, round_id, len(messages), initiated_by=initiated_by,
            metadata={"correlation_id": log.get_correlation_id()},
        )
        context = EmailLogContext(
            operation_id=operation_id,
            round_id=round_id,
            email_type=email_type.value,
            batch_id=operation_id,
            provider=self.email_service.provider,
        )

        log.log_operation_start(EmailOperationStage.EMAIL_SEND, context,
                                f"Starting {email_type.value} batch of {len(messages)} emails")
        self.monitoring.update_operation_status(operation_id, EmailOperationStatus.IN_PROGRESS)

        progress = BatchProgress(total=len(messages))

        async def process(item):
            index, options = item
            outcome = await self._send_one(index, options, context, log, operation_id)
            if outcome.success:
                progress.successful += 1
            else:
                progress.failed += 1
            return outcome

        def on_progress(completed: int, total: int) -> None:
            progress.processed = completed
            self.monitoring.update_progress(operation_id, progress.successful, progress.failed)
            log.log_batch_progress(context, total, completed, progress.successful, progress.failed)

        try:
            outcomes = await self.rate_limiter.process_with_rate_limit(
                list(enumerate(messages)), process, on_progress=on_progress
            )
        except Exception as e:
            logger.error(f"Email batch {operation_id} aborted: {e}", exc_info=True)
            log.log_operation_error(EmailOperationStage.EMAIL_SEND, context, e)
            self.error_tracker.track_email_error(
                e, ErrorSeverity.HIGH,
                {"operation_id": operation_id, "email_type": email_type.value, "stage": "email_send"},
                ["batch_aborted"],
            )
            self.monitoring.complete_operation(operation_id, False, progress.successful,
                                               len(messages) - progress.successful, [str(e)])
            raise

        duration_ms = (time.time() - started) * 1000
        self.monitoring.complete_operation(
            operation_id, progress.failed == 0, progress.successful, progress.failed
        )
        log.log_operation_complete(
            EmailOperationStage.COMPLETE, context, progress.failed == 0, duration_ms,
            f"{email_type.value} batch finished: {progress.successful} sent, {progress.failed} failed",
        )

        return BatchResult(
            operation_id=operation_id,
            correlation_id=log.get_correlation_id(),
            email_type=email_type.value,
            total=len(messages),
            successful=progress.successful,
            failed=progress.failed,
            duration_ms=duration_ms,
            results=outcomes,
        )

    async def _send_one(
        self,
        index: int,
        options: EmailOptions,
        batch_context: EmailLogContext,
        log: EmailLoggingService,
        operation_id: str,
    ) -> SendOutcome:
        recipient = options.to[0] if options.to else ""
        context = EmailLogContext(**{**batch_context.__dict__, "recipient_email": recipient or None})
        masked = mask_email(recipient) if recipient else ""

        errors = validate_email_options(options)
        log.log_email_validation(context, not errors, errors, email_count=len(options.to))
        if errors:
            message = f"Email validation failed: {', '.join(errors)}"
            self.monitoring.record_error(operation_id, EmailErrorCategory.VALIDATION, message, {"index": index})
            self.error_tracker.track_email_error(
                message, ErrorSeverity.LOW,
                {"operation_id": operation_id, "email_type": batch_context.email_type, "stage": "validation"},
            )
            return SendOutcome(index, masked, False, 0, error=message)

        max_attempts = self.max_retries + 1
        attempt = 0
        while True:
            attempt += 1
            if attempt > 1:
                # Each retry is a provider call and restarts the gap
                await self.rate_limiter.claim_slot()
            send_started = time.time()
            try:
                result = await self.email_service.send_email(options)
            except Exception as e:
                logger.error(f"Email service raised for message {index}: {e}", exc_info=True)
                result = EmailResult(False, error=str(e) or e.__class__.__name__, recipient=recipient)
            send_time = round((time.time() - send_started) * 1000, 2)

            log.log_email_sending(
                context, result.success, send_time, message_id=result.message_id,
                provider=self.email_service.provider, error=result.error, status_code=result.status_code,
            )

            if result.success:
                return SendOutcome(index, masked, True, attempt, message_id=result.message_id,
                                   status_code=result.status_code)

            if not result.retryable or attempt >= max_attempts:
                break

            delay_ms = self.retry_delay_ms(attempt)
            next_retry_at = datetime.now(timezone.utc) + timedelta(milliseconds=delay_ms)
            log.log_retry_attempt(
                EmailLogContext(**{**context.__dict__, "retry_attempt": attempt}),
                attempt, self.max_retries, delay_ms, result.error or "transient failure", next_retry_at,
            )
            await self._sleep(delay_ms / 1000)

        category = _error_category(result)
        self.monitoring.record_error(operation_id, category, result.error or "Email sending failed",
                                     {"index": index, "status_code": result.status_code, "attempts": attempt})
        self.error_tracker.track_email_error(
            result.error or "Email sending failed",
            ErrorSeverity.HIGH if category == EmailErrorCategory.AUTHENTICATION else ErrorSeverity.MEDIUM,
            {"operation_id": operation_id, "email_type": batch_context.email_type, "stage": "email_send",
             "status_code": result.status_code},
        )
        log.log_operation_error(EmailOperationStage.EMAIL_SEND, context, result.error or "Email sending failed",
                                retryable=result.retryable)

        return SendOutcome(index, masked, False, attempt, error=result.error, status_code=result.status_code)
