# backend/tasks/delivery/monitoring.py - EMAIL OPERATION MONITORING
"""
In-process tracking of email batch operations with health and performance
summaries for the dashboard and health endpoints.
"""
import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EmailOperationType(str, Enum):
    SUMMARY = "summary"
    REMINDER = "reminder"
    TRANSPARENCY = "transparency"
    ADMIN_SUMMARY = "admin_summary"
    NOTIFICATION = "notification"


class EmailOperationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class EmailErrorCategory(str, Enum):
    VALIDATION = "validation"
    TEMPLATE = "template"
    SENDING = "sending"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    NETWORK = "network"
    UNKNOWN = "unknown"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


_STATUS_RANK = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


def escalate_status(current: HealthStatus, candidate: Any) -> HealthStatus:
    """Return the worse of two statuses; `unknown` and junk never change it"""
    try:
        candidate = HealthStatus(candidate)
    except ValueError:
        return current
    if candidate not in _STATUS_RANK:
        return current
    return candidate if _STATUS_RANK[candidate] > _STATUS_RANK[current] else current


TIMEFRAMES_SECONDS = {
    "1h": 60 * 60,
    "24h": 24 * 60 * 60,
    "7d": 7 * 24 * 60 * 60,
    "30d": 30 * 24 * 60 * 60,
}


@dataclass
class EmailOperationError:
    timestamp: float
    category: EmailErrorCategory
    message: str
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "category": self.category.value,
            "message": self.message,
            "context": self.context,
        }


@dataclass
class EmailOperation:
    """One monitored email batch invocation"""
    id: str
    type: EmailOperationType
    status: EmailOperationStatus
    round_id: Optional[int]
    total_emails: int
    start_time: float
    emails_sent: int = 0
    emails_failed: int = 0
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    initiated_by: Optional[str] = None
    errors: List[EmailOperationError] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None

    @property
    def is_active(self) -> bool:
        return self.status in (EmailOperationStatus.PENDING, EmailOperationStatus.IN_PROGRESS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "round_id": self.round_id,
            "total_emails": self.total_emails,
            "emails_sent": self.emails_sent,
            "emails_failed": self.emails_failed,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration_ms,
            "initiated_by": self.initiated_by,
            "errors": [error.to_dict() for error in self.errors],
            "metadata": self.metadata,
        }


class EmailMonitoringService:
    """Tracks email operations and summarizes their health"""

    def __init__(
        self,
        max_operations: int = 1000,
        max_errors_per_operation: int = 50,
        clock: Callable[[], float] = time.time,
    ):
        self.max_operations = max_operations
        self.max_errors_per_operation = max_errors_per_operation
        self._clock = clock
        self._operations: Dict[str, EmailOperation] = {}

    def start_operation(
        self,
        operation_type: EmailOperationType,
        round_id: Optional[int],
        total_emails: int,
        initiated_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        operation_id = f"email_op_{int(self._clock() * 1000)}_{uuid.uuid4().hex[:9]}"
        operation = EmailOperation(
            id=operation_id,
            type=EmailOperationType(operation_type),
            status=EmailOperationStatus.PENDING,
            round_id=round_id,
            total_emails=total_emails,
            start_time=self._clock(),
            initiated_by=initiated_by,
            metadata=metadata,
        )
        self._operations[operation_id] = operation
        self._cleanup_old_operations()

        logger.info(
            f"Email operation monitoring started: {operation_id}",
            extra={"email_event": {
                "operation_id": operation_id,
                "type": operation.type.value,
                "round_id": round_id,
                "total_emails": total_emails,
                "initiated_by": initiated_by,
            }},
        )
        return operation_id

    def update_operation_status(self, operation_id: str, status: EmailOperationStatus) -> None:
        operation = self._operations.get(operation_id)
        if not operation:
            logger.warning(f"Attempted to update status for unknown operation {operation_id}")
            return

        status = EmailOperationStatus(status)
        if status == EmailOperationStatus.IN_PROGRESS and operation.status == EmailOperationStatus.PENDING:
            # Duration counts from the moment sending actually starts
            operation.start_time = self._clock()
        operation.status = status

        logger.debug(f"Email operation {operation_id} status -> {status.value}")

    def record_error(
        self,
        operation_id: str,
        category: EmailErrorCategory,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        operation = self._operations.get(operation_id)
        if not operation:
            logger.warning(f"Attempted to record error for unknown operation {operation_id}")
            return

        if len(operation.errors) >= self.max_errors_per_operation:
            operation.errors.pop(0)

        operation.errors.append(EmailOperationError(
            timestamp=self._clock(),
            category=EmailErrorCategory(category),
            message=message,
            context=context,
        ))

        logger.warning(f"Email operation error recorded for {operation_id}: [{EmailErrorCategory(category).value}] {message}")

    def update_progress(self, operation_id: str, emails_sent: int, emails_failed: int) -> None:
        operation = self._operations.get(operation_id)
        if not operation:
            logger.warning(f"Attempted to update progress for unknown operation {operation_id}")
            return

        operation.emails_sent = emails_sent
        operation.emails_failed = emails_failed

    def complete_operation(
        self,
        operation_id: str,
        success: bool,
        total_sent: int,
        total_failed: int,
        errors: Optional[List[str]] = None,
    ) -> None:
        operation = self._operations.get(operation_id)
        if not operation:
            logger.warning(f"Attempted to complete unknown operation {operation_id}")
            return

        operation.status = EmailOperationStatus.COMPLETED if success else EmailOperationStatus.FAILED
        operation.emails_sent = total_sent
        operation.emails_failed = total_failed
        operation.end_time = self._clock()
        operation.duration_ms = (operation.end_time - operation.start_time) * 1000

        for error_message in errors or []:
            self.record_error(operation_id, EmailErrorCategory.UNKNOWN, error_message)

        logger.info(
            f"Email operation {operation_id} {operation.status.value}: "
            f"{total_sent} sent, {total_failed} failed in {operation.duration_ms:.0f}ms"
        )

    def get_operation(self, operation_id: str) -> Optional[EmailOperation]:
        return self._operations.get(operation_id)

    def get_all_operations(self) -> List[EmailOperation]:
        return list(self._operations.values())

    def get_recent_operations(self, limit: int = 20) -> List[EmailOperation]:
        operations = sorted(self._operations.values(), key=lambda op: op.start_time, reverse=True)
        return operations[:limit]

    def active_operation_count(self) -> int:
        return sum(1 for op in self._operations.values() if op.is_active)

    def get_operation_metrics(self, operation_id: str) -> Optional[Dict[str, Any]]:
        operation = self._operations.get(operation_id)
        if not operation or operation.end_time is None:
            return None

        total_duration = operation.duration_ms or 0.0
        total_emails = operation.emails_sent + operation.emails_failed
        seconds = total_duration / 1000

        return {
            "operation_id": operation_id,
            "total_duration": total_duration,
            "emails_per_second": total_emails / seconds if total_emails and seconds else 0,
            "average_email_send_time": total_duration / total_emails if total_emails else 0,
            "success_rate": (operation.emails_sent / total_emails) * 100 if total_emails else 0,
        }

    def get_system_health(self) -> Dict[str, Any]:
        operations = self.get_all_operations()
        current_operations = sum(1 for op in operations if op.is_active)

        cutoff = self._clock() - TIMEFRAMES_SECONDS["24h"]
        recent = [op for op in operations if op.start_time >= cutoff]

        recent_errors = sum(len(op.errors) for op in recent)
        total_emails = sum(op.emails_sent + op.emails_failed for op in recent)
        successful = sum(op.emails_sent for op in recent)
        success_rate = (successful / total_emails) * 100 if total_emails else 100.0

        completed = [op for op in recent if op.end_time is not None]
        avg_response_time = (
            sum(op.duration_ms or 0 for op in completed) / len(completed) if completed else 0.0
        )

        status = HealthStatus.HEALTHY
        recommendations: List[str] = []

        if success_rate < 95:
            status = escalate_status(status, HealthStatus.DEGRADED)
            recommendations.append("Success rate below 95% - investigate email delivery issues")

        if success_rate < 85:
            status = escalate_status(status, HealthStatus.UNHEALTHY)
            recommendations.append("Critical: Success rate below 85% - immediate attention required")

        if current_operations > 5:
            status = escalate_status(status, HealthStatus.DEGRADED)
            recommendations.append(f"{current_operations} operations currently running - monitor for bottlenecks")

        if recent_errors > 50:
            status = escalate_status(status, HealthStatus.DEGRADED)
            recommendations.append("High error count in last 24h - review error logs")

        if avg_response_time > 30000:
            status = escalate_status(status, HealthStatus.DEGRADED)
            recommendations.append("Average response time above 30s - optimize email processing")

        if not recommendations:
            recommendations.append("System operating normally")

        return {
            "status": status.value,
            "current_operations": current_operations,
            "recent_errors": recent_errors,
            "success_rate_24h": round(success_rate, 2),
            "avg_response_time": round(avg_response_time),
            "recommendations": recommendations,
        }

    def get_performance_insights(self, timeframe: str = "24h") -> Dict[str, Any]:
        if timeframe not in TIMEFRAMES_SECONDS:
            raise ValueError(f"Invalid timeframe: {timeframe}")

        cutoff = self._clock() - TIMEFRAMES_SECONDS[timeframe]
        relevant = [op for op in self.get_all_operations() if op.start_time >= cutoff]

        total_operations = len(relevant)
        total_sent = sum(op.emails_sent for op in relevant)
        total_errors = sum(len(op.errors) for op in relevant)
        total_emails = sum(op.emails_sent + op.emails_failed for op in relevant)

        success_rate = (total_sent / total_emails) * 100 if total_emails else 0.0
        avg_emails = total_emails / total_operations if total_operations else 0.0

        completed = [op for op in relevant if op.duration_ms]
        avg_duration = sum(op.duration_ms for op in completed) / len(completed) if completed else 0.0

        error_counts = Counter(error.category for op in relevant for error in op.errors)
        most_common_errors = [
            {"category": category.value, "count": count}
            for category, count in error_counts.most_common(5)
        ]

        slowest = sorted(completed, key=lambda op: op.duration_ms, reverse=True)[:5]

        return {
            "timeframe": timeframe,
            "total_operations": total_operations,
            "total_emails_sent": total_sent,
            "total_errors": total_errors,
            "success_rate": round(success_rate, 2),
            "avg_emails_per_operation": round(avg_emails, 2),
            "avg_duration_per_operation": round(avg_duration),
            "most_common_errors": most_common_errors,
            "slowest_operations": [
                {"id": op.id, "duration": op.duration_ms, "type": op.type.value}
                for op in slowest
            ],
        }

    def _cleanup_old_operations(self) -> None:
        overflow = len(self._operations) - self.max_operations
        if overflow <= 0:
            return

        oldest = sorted(self._operations.values(), key=lambda op: op.start_time)[:overflow]
        for operation in oldest:
            del self._operations[operation.id]

        logger.debug(f"Cleaned up {overflow} old email operations, {len(self._operations)} remaining")
