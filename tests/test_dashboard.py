"""
Tests for dashboard aggregation and summary escalation.
"""

from types import SimpleNamespace

import pytest

from tasks.delivery.dashboard import (
    DashboardData,
    ErrorsSection,
    ErrorStats,
    HealthSection,
    HealthSummary,
    MetricsSection,
    PerformanceSnapshot,
    SystemHealthSnapshot,
    collect_dashboard_data,
    generate_dashboard_summary,
)
from tasks.delivery.error_tracking import ErrorCategory, ErrorSeverity, ErrorTrackingService
from tasks.delivery.monitoring import EmailMonitoringService, EmailOperationType, HealthStatus


class FakeHealthChecker:

    def __init__(self, report=None, error=None):
        self.report = report
        self.error = error

    async def check_system_health(self):
        if self.error:
            raise self.error
        return self.report


def healthy_report(status="healthy", critical_issues=0):
    return {
        "status": status,
        "timestamp": "2026-01-01T00:00:00+00:00",
        "uptime": 10,
        "version": "1.0.0",
        "environment": "test",
        "components": [],
        "summary": {"total": 6, "healthy": 6, "degraded": 0, "unhealthy": 0, "critical_issues": critical_issues},
    }


def make_data(**sections):
    return DashboardData(timestamp="2026-01-01T00:00:00+00:00", time_window=24, **sections)


class TestGenerateSummary:

    def test_no_sections_yields_zeroed_healthy_summary(self):
        summary = generate_dashboard_summary(make_data())

        assert summary.overall_status == HealthStatus.HEALTHY
        assert summary.critical_issues == 0
        assert summary.total_errors == 0
        assert summary.emails_sent == 0
        assert summary.success_rate == 0.0
        assert summary.avg_response_time == 0.0

    def test_degraded_health_then_unhealthy_metrics(self):
        data = make_data(
            health=HealthSection(status=HealthStatus.DEGRADED),
            metrics=MetricsSection(system_health=SystemHealthSnapshot(status=HealthStatus.UNHEALTHY)),
        )

        assert generate_dashboard_summary(data).overall_status == HealthStatus.UNHEALTHY

    def test_healthy_signal_never_downgrades(self):
        data = make_data(
            health=HealthSection(status=HealthStatus.UNHEALTHY),
            metrics=MetricsSection(system_health=SystemHealthSnapshot(status=HealthStatus.HEALTHY)),
        )

        assert generate_dashboard_summary(data).overall_status == HealthStatus.UNHEALTHY

    def test_unknown_section_status_is_ignored(self):
        data = make_data(health=HealthSection(status=HealthStatus.UNKNOWN, error="boom"))

        assert generate_dashboard_summary(data).overall_status == HealthStatus.HEALTHY

    def test_extracts_headline_numbers(self):
        data = make_data(
            health=HealthSection(status=HealthStatus.HEALTHY, summary=HealthSummary(critical_issues=2)),
            errors=ErrorsSection(stats=ErrorStats(total=9, unresolved=4)),
            metrics=MetricsSection(
                system_health=SystemHealthSnapshot(
                    status=HealthStatus.HEALTHY, success_rate_24h=97.5, avg_response_time=1200,
                ),
                performance_insights=PerformanceSnapshot(total_emails_sent=120),
            ),
        )

        summary = generate_dashboard_summary(data)

        assert summary.critical_issues == 2
        assert summary.total_errors == 4
        assert summary.emails_sent == 120
        assert summary.success_rate == 97.5
        assert summary.avg_response_time == 1200

    def test_errors_section_without_stats(self):
        data = make_data(errors=ErrorsSection(error="store unavailable"))

        assert generate_dashboard_summary(data).total_errors == 0

    def test_summary_serializes_with_camel_case_keys(self):
        payload = generate_dashboard_summary(make_data()).model_dump(mode="json", by_alias=True)

        assert payload == {
            "overallStatus": "healthy",
            "criticalIssues": 0,
            "totalErrors": 0,
            "emailsSent": 0,
            "successRate": 0.0,
            "avgResponseTime": 0.0,
        }


class TestCollectDashboardData:

    @pytest.fixture
    def services(self, clock):
        monitoring = EmailMonitoringService(clock=clock)
        tracker = ErrorTrackingService(clock=clock)
        return SimpleNamespace(
            health_checker=FakeHealthChecker(healthy_report()),
            monitoring=monitoring,
            error_tracker=tracker,
        )

    async def test_collects_all_sections(self, services):
        operation_id = services.monitoring.start_operation(EmailOperationType.SUMMARY, 3, 2)
        services.monitoring.complete_operation(operation_id, True, 2, 0)
        services.error_tracker.track_error("db slow", ErrorSeverity.MEDIUM, ErrorCategory.DATABASE)

        data = await collect_dashboard_data(services, time_window=24)

        assert data.health.status == HealthStatus.HEALTHY
        assert data.errors.stats.unresolved == 1
        assert len(data.errors.recent) == 1
        assert data.metrics.performance_insights.total_emails_sent == 2
        assert data.metrics.recent_operations[0]["id"] == operation_id
        assert data.summary.overall_status == HealthStatus.HEALTHY
        assert data.summary.total_errors == 1

    async def test_failing_section_becomes_placeholder(self, services):
        services.health_checker = FakeHealthChecker(error=RuntimeError("supabase unreachable"))

        data = await collect_dashboard_data(services)

        assert data.health.status == HealthStatus.UNKNOWN
        assert data.health.error == "supabase unreachable"
        assert data.metrics is not None
        assert data.summary.overall_status == HealthStatus.HEALTHY

    async def test_failing_metrics_and_errors(self, services):
        services.monitoring = None
        services.error_tracker = None

        data = await collect_dashboard_data(services)

        assert data.metrics.status == HealthStatus.UNKNOWN
        assert data.metrics.error
        assert data.errors.error
        assert data.errors.recent == []

    async def test_excluded_sections_are_omitted(self, services):
        data = await collect_dashboard_data(
            services, include_health=False, include_errors=False, include_metrics=False
        )

        payload = data.to_response()

        assert set(payload) == {"timestamp", "timeWindow", "summary"}
        assert payload["summary"]["overallStatus"] == "healthy"

    async def test_degraded_health_report_escalates(self, services):
        services.health_checker = FakeHealthChecker(healthy_report("degraded", critical_issues=1))

        data = await collect_dashboard_data(services)

        assert data.summary.overall_status == HealthStatus.DEGRADED
        assert data.summary.critical_issues == 1
