# backend/tasks/delivery/error_tracking.py - ERROR TRACKING & ALERTING
"""
Groups recurring errors by fingerprint, counts occurrences and raises
threshold alerts on the log.
"""
import base64
import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    EMAIL_DELIVERY = "email_delivery"
    EMAIL_TEMPLATE = "email_template"
    DATA_FETCH = "data_fetch"
    API_REQUEST = "api_request"
    DATABASE = "database"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    EXTERNAL_SERVICE = "external_service"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class AlertChannel(str, Enum):
    LOG = "log"
    EMAIL = "email"
    WEBHOOK = "webhook"


_STAGE_CATEGORIES = {
    "validation": ErrorCategory.VALIDATION,
    "data_fetch": ErrorCategory.DATA_FETCH,
    "template_render": ErrorCategory.EMAIL_TEMPLATE,
    "email_send": ErrorCategory.EMAIL_DELIVERY,
}

_SEVERITY_LOG_LEVELS = {
    ErrorSeverity.CRITICAL: logging.ERROR,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


@dataclass
class TrackedError:
    id: str
    timestamp: float
    severity: ErrorSeverity
    category: ErrorCategory
    message: str
    fingerprint: str
    context: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    error_type: Optional[str] = None
    resolved: bool = False
    occurrence_count: int = 1
    first_seen: float = 0.0
    last_seen: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": _iso(self.timestamp),
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "error_type": self.error_type,
            "context": self.context,
            "tags": self.tags,
            "fingerprint": self.fingerprint,
            "resolved": self.resolved,
            "occurrence_count": self.occurrence_count,
            "first_seen": _iso(self.first_seen),
            "last_seen": _iso(self.last_seen),
        }


@dataclass
class ErrorAlert:
    severity: ErrorSeverity
    threshold: int
    time_window_minutes: int
    enabled: bool = True
    category: Optional[ErrorCategory] = None
    channels: List[AlertChannel] = field(default_factory=lambda: [AlertChannel.LOG])
    last_triggered: Optional[float] = None


def default_alerts() -> List[ErrorAlert]:
    return [
        ErrorAlert(ErrorSeverity.CRITICAL, threshold=1, time_window_minutes=5,
                   channels=[AlertChannel.LOG, AlertChannel.EMAIL]),
        ErrorAlert(ErrorSeverity.HIGH, threshold=3, time_window_minutes=15),
        ErrorAlert(ErrorSeverity.MEDIUM, threshold=5, time_window_minutes=30,
                   category=ErrorCategory.EMAIL_DELIVERY),
        ErrorAlert(ErrorSeverity.LOW, threshold=10, time_window_minutes=60, enabled=False),
    ]


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


_UUID_RE = re.compile(r"[a-f0-9-]{36}")
_EMAIL_RE = re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.]+")
_NUMBER_RE = re.compile(r"\d+")


def normalize_message(message: str) -> str:
    """Strip dynamic parts so recurring errors group together"""
    normalized = message.lower()
    normalized = _UUID_RE.sub("UUID", normalized)
    normalized = _EMAIL_RE.sub("EMAIL", normalized)
    normalized = _NUMBER_RE.sub("N", normalized)
    return normalized


def create_fingerprint(message: str, category: ErrorCategory, context: Dict[str, Any]) -> str:
    data = {
        "message": normalize_message(message),
        "category": ErrorCategory(category).value,
        "endpoint": context.get("endpoint"),
        "email_type": context.get("email_type"),
    }
    return base64.b64encode(json.dumps(data, sort_keys=True).encode()).decode()


class ErrorTrackingService:
    """Structured error store with fingerprint grouping and threshold alerts"""

    def __init__(
        self,
        max_stored_errors: int = 1000,
        alerts: Optional[List[ErrorAlert]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_stored_errors = max_stored_errors
        self.alerts = alerts if alerts is not None else default_alerts()
        self._clock = clock
        self._errors: Dict[str, TrackedError] = {}
        self._by_fingerprint: Dict[str, str] = {}

    def track_error(
        self,
        error: Union[BaseException, str],
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
    ) -> str:
        severity = ErrorSeverity(severity)
        category = ErrorCategory(category)
        context = dict(context or {})
        now = self._clock()

        if isinstance(error, BaseException):
            message = str(error) or error.__class__.__name__
            error_type = error.__class__.__name__
        else:
            message = error
            error_type = None

        fingerprint = create_fingerprint(message, category, context)

        existing_id = self._by_fingerprint.get(fingerprint)
        existing = self._errors.get(existing_id) if existing_id else None
        if existing:
            existing.occurrence_count += 1
            existing.last_seen = now
            existing.timestamp = now
            existing.context.update(context)

            logger.warning(
                f"Error reoccurred ({existing.occurrence_count}x) [{category.value}]: {message}",
                extra={"email_event": {"error_id": existing.id, "severity": severity.value}},
            )
            self._check_alerts(existing)
            return existing.id

        error_id = str(uuid.uuid4())
        tracked = TrackedError(
            id=error_id,
            timestamp=now,
            severity=severity,
            category=category,
            message=message,
            fingerprint=fingerprint,
            context=context,
            tags=list(tags or []),
            error_type=error_type,
            first_seen=now,
            last_seen=now,
        )
        self._errors[error_id] = tracked
        self._by_fingerprint[fingerprint] = error_id

        logger.log(
            _SEVERITY_LOG_LEVELS[severity],
            f"Error tracked [{severity.value}/{category.value}]: {message}",
            extra={"email_event": {"error_id": error_id, "tags": tracked.tags}},
        )

        self._check_alerts(tracked)
        self._cleanup_old_errors()
        return error_id

    def track_email_error(
        self,
        error: Union[BaseException, str],
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        email_context: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
    ) -> str:
        email_context = dict(email_context or {})
        stage = email_context.get("stage")
        category = _STAGE_CATEGORIES.get(stage, ErrorCategory.EMAIL_DELIVERY)

        return self.track_error(
            error,
            severity,
            category,
            email_context,
            ["email", email_context.get("email_type") or "unknown", stage or "unknown", *(tags or [])],
        )

    def get_errors(
        self,
        severity: Optional[ErrorSeverity] = None,
        category: Optional[ErrorCategory] = None,
        resolved: Optional[bool] = None,
        since: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[TrackedError]:
        errors = list(self._errors.values())

        if severity is not None:
            errors = [e for e in errors if e.severity == ErrorSeverity(severity)]
        if category is not None:
            errors = [e for e in errors if e.category == ErrorCategory(category)]
        if resolved is not None:
            errors = [e for e in errors if e.resolved == resolved]
        if since is not None:
            errors = [e for e in errors if e.timestamp >= since]

        errors.sort(key=lambda e: e.timestamp, reverse=True)

        if limit:
            errors = errors[:limit]
        return errors

    def get_recent_errors(self, time_window_hours: float = 24, limit: Optional[int] = 20) -> List[TrackedError]:
        return self.get_errors(since=self._clock() - time_window_hours * 3600, limit=limit)

    def resolve_error(self, error_id: str) -> bool:
        tracked = self._errors.get(error_id)
        if not tracked:
            return False
        tracked.resolved = True
        logger.info(f"Error marked as resolved: {error_id}")
        return True

    def get_error_stats(self, time_window_hours: float = 24) -> Dict[str, Any]:
        since = self._clock() - time_window_hours * 3600
        recent = self.get_errors(since=since)

        by_severity = {severity.value: 0 for severity in ErrorSeverity}
        by_category: Dict[str, int] = {}
        resolved = 0
        fingerprint_counts: Dict[str, Dict[str, Any]] = {}

        for tracked in recent:
            by_severity[tracked.severity.value] += 1
            by_category[tracked.category.value] = by_category.get(tracked.category.value, 0) + 1
            if tracked.resolved:
                resolved += 1

            entry = fingerprint_counts.setdefault(
                tracked.fingerprint, {"count": 0, "message": tracked.message}
            )
            entry["count"] += tracked.occurrence_count

        top_errors = sorted(
            ({"fingerprint": fp, **data} for fp, data in fingerprint_counts.items()),
            key=lambda item: item["count"],
            reverse=True,
        )[:10]

        return {
            "total": len(recent),
            "by_severity": by_severity,
            "by_category": by_category,
            "resolved": resolved,
            "unresolved": len(recent) - resolved,
            "top_errors": top_errors,
        }

    def _check_alerts(self, tracked: TrackedError) -> None:
        now = self._clock()

        for alert in self.alerts:
            if not alert.enabled or alert.severity != tracked.severity:
                continue
            if alert.category and alert.category != tracked.category:
                continue
            if alert.last_triggered is not None and now - alert.last_triggered < alert.time_window_minutes * 60:
                continue

            if tracked.occurrence_count >= alert.threshold:
                self._trigger_alert(alert, tracked)
                alert.last_triggered = now

    def _trigger_alert(self, alert: ErrorAlert, tracked: TrackedError) -> None:
        alert_message = f"Alert: {tracked.severity.value.upper()} error in {tracked.category.value}"
        alert_context = {
            "alert_type": "error_threshold",
            "error_id": tracked.id,
            "occurrence_count": tracked.occurrence_count,
            "threshold": alert.threshold,
            "time_window": alert.time_window_minutes,
            "message": tracked.message,
        }

        for channel in alert.channels:
            if channel == AlertChannel.LOG:
                logger.error(alert_message, extra={"email_event": alert_context})
            else:
                # TODO: deliver email/webhook alerts once an admin alert recipient is configurable
                logger.error(f"{alert_message} ({channel.value} alert not delivered)",
                             extra={"email_event": alert_context})

    def _cleanup_old_errors(self) -> None:
        overflow = len(self._errors) - self.max_stored_errors
        if overflow <= 0:
            return

        oldest = sorted(self._errors.values(), key=lambda e: e.timestamp)[:overflow]
        for tracked in oldest:
            del self._errors[tracked.id]
            if self._by_fingerprint.get(tracked.fingerprint) == tracked.id:
                del self._by_fingerprint[tracked.fingerprint]

        logger.info(f"Cleaned up {overflow} old errors, {len(self._errors)} remaining")
