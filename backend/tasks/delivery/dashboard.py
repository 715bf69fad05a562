# backend/tasks/delivery/dashboard.py - EMAIL DASHBOARD AGGREGATION
"""
Collects health, error and email metrics into one dashboard payload and
rolls them into a headline summary.

Every section is an explicit model with zeroed defaults. A section that
fails to collect is replaced by a placeholder carrying `status="unknown"`
and the error message, so the rest of the dashboard still renders.
"""
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .monitoring import HealthStatus, escalate_status

if TYPE_CHECKING:
    from core.dependencies import EmailServices

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthSummary(BaseModel):
    total: int = 0
    healthy: int = 0
    degraded: int = 0
    unhealthy: int = 0
    critical_issues: int = 0


class HealthSection(BaseModel):
    status: HealthStatus = HealthStatus.UNKNOWN
    timestamp: Optional[str] = None
    uptime: Optional[int] = None
    version: Optional[str] = None
    environment: Optional[str] = None
    components: List[Dict[str, Any]] = Field(default_factory=list)
    summary: HealthSummary = Field(default_factory=HealthSummary)
    message: Optional[str] = None
    error: Optional[str] = None


class ErrorStats(BaseModel):
    total: int = 0
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)
    resolved: int = 0
    unresolved: int = 0
    top_errors: List[Dict[str, Any]] = Field(default_factory=list)


class ErrorsSection(BaseModel):
    recent: List[Dict[str, Any]] = Field(default_factory=list)
    stats: Optional[ErrorStats] = None
    error: Optional[str] = None


class SystemHealthSnapshot(BaseModel):
    status: HealthStatus = HealthStatus.UNKNOWN
    current_operations: int = 0
    recent_errors: int = 0
    success_rate_24h: float = 0.0
    avg_response_time: float = 0.0
    recommendations: List[str] = Field(default_factory=list)


class PerformanceSnapshot(BaseModel):
    timeframe: str = "24h"
    total_operations: int = 0
    total_emails_sent: int = 0
    total_errors: int = 0
    success_rate: float = 0.0
    avg_emails_per_operation: float = 0.0
    avg_duration_per_operation: float = 0.0
    most_common_errors: List[Dict[str, Any]] = Field(default_factory=list)
    slowest_operations: List[Dict[str, Any]] = Field(default_factory=list)


class MetricsSection(CamelModel):
    status: Optional[HealthStatus] = None
    system_health: Optional[SystemHealthSnapshot] = None
    performance_insights: Optional[PerformanceSnapshot] = None
    recent_operations: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None


class DashboardSummary(CamelModel):
    overall_status: HealthStatus = HealthStatus.HEALTHY
    critical_issues: int = 0
    total_errors: int = 0
    emails_sent: int = 0
    success_rate: float = 0.0
    avg_response_time: float = 0.0


class DashboardData(CamelModel):
    timestamp: str
    time_window: int
    health: Optional[HealthSection] = None
    errors: Optional[ErrorsSection] = None
    metrics: Optional[MetricsSection] = None
    summary: Optional[DashboardSummary] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def generate_dashboard_summary(data: DashboardData) -> DashboardSummary:
    """Headline numbers for a dashboard; missing sections contribute zeros"""
    overall_status = HealthStatus.HEALTHY

    if data.health is not None:
        overall_status = escalate_status(overall_status, data.health.status)

    system_health = data.metrics.system_health if data.metrics else None
    if system_health is not None:
        overall_status = escalate_status(overall_status, system_health.status)

    critical_issues = data.health.summary.critical_issues if data.health else 0

    errors_stats = data.errors.stats if data.errors else None
    total_errors = errors_stats.unresolved if errors_stats else 0

    insights = data.metrics.performance_insights if data.metrics else None

    return DashboardSummary(
        overall_status=overall_status,
        critical_issues=critical_issues,
        total_errors=total_errors,
        emails_sent=insights.total_emails_sent if insights else 0,
        success_rate=system_health.success_rate_24h if system_health else 0.0,
        avg_response_time=system_health.avg_response_time if system_health else 0.0,
    )


async def collect_health_section(services: "EmailServices") -> HealthSection:
    try:
        report = await services.health_checker.check_system_health()
        return HealthSection.model_validate(report)
    except Exception as e:
        logger.error(f"Failed to get health data for dashboard: {e}", exc_info=True)
        return HealthSection(status=HealthStatus.UNKNOWN, message="Health check failed", error=str(e))


def collect_errors_section(services: "EmailServices", time_window: int) -> ErrorsSection:
    try:
        recent = services.error_tracker.get_recent_errors(time_window, limit=20)
        return ErrorsSection(
            recent=[tracked.to_dict() for tracked in recent],
            stats=ErrorStats.model_validate(services.error_tracker.get_error_stats(time_window)),
        )
    except Exception as e:
        logger.error(f"Failed to get error data for dashboard: {e}", exc_info=True)
        return ErrorsSection(error=str(e))


def collect_metrics_section(services: "EmailServices") -> MetricsSection:
    try:
        monitoring = services.monitoring
        return MetricsSection(
            system_health=SystemHealthSnapshot.model_validate(monitoring.get_system_health()),
            performance_insights=PerformanceSnapshot.model_validate(monitoring.get_performance_insights("24h")),
            recent_operations=[op.to_dict() for op in monitoring.get_recent_operations(20)],
        )
    except Exception as e:
        logger.error(f"Failed to get email metrics for dashboard: {e}", exc_info=True)
        return MetricsSection(status=HealthStatus.UNKNOWN, error=str(e))


async def collect_dashboard_data(
    services: "EmailServices",
    time_window: int = 24,
    include_health: bool = True,
    include_errors: bool = True,
    include_metrics: bool = True,
) -> DashboardData:
    data = DashboardData(
        timestamp=datetime.now(timezone.utc).isoformat(),
        time_window=time_window,
    )

    if include_health:
        data.health = await collect_health_section(services)
    if include_errors:
        data.errors = collect_errors_section(services, time_window)
    if include_metrics:
        data.metrics = collect_metrics_section(services)

    data.summary = generate_dashboard_summary(data)
    return data
