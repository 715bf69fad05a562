"""
Tests for email operation monitoring and status escalation.
"""

import pytest

from tasks.delivery.monitoring import (
    EmailErrorCategory,
    EmailMonitoringService,
    EmailOperationStatus,
    EmailOperationType,
    HealthStatus,
    escalate_status,
)


@pytest.fixture
def monitoring(clock):
    return EmailMonitoringService(clock=clock)


def run_operation(monitoring, clock, sent, failed, duration=1.0, op_type=EmailOperationType.SUMMARY):
    operation_id = monitoring.start_operation(op_type, 1, sent + failed)
    monitoring.update_operation_status(operation_id, EmailOperationStatus.IN_PROGRESS)
    clock.advance(duration)
    monitoring.complete_operation(operation_id, failed == 0, sent, failed)
    return operation_id


class TestEscalateStatus:

    def test_escalates_and_never_downgrades(self):
        status = HealthStatus.HEALTHY
        status = escalate_status(status, "degraded")
        assert status == HealthStatus.DEGRADED

        status = escalate_status(status, "unhealthy")
        assert status == HealthStatus.UNHEALTHY

        status = escalate_status(status, "healthy")
        assert status == HealthStatus.UNHEALTHY

        status = escalate_status(status, "degraded")
        assert status == HealthStatus.UNHEALTHY

    @pytest.mark.parametrize("candidate", ["unknown", "bogus", None, 42])
    def test_unknown_values_leave_status_unchanged(self, candidate):
        assert escalate_status(HealthStatus.DEGRADED, candidate) == HealthStatus.DEGRADED


class TestOperationLifecycle:

    def test_start_operation_is_pending(self, monitoring):
        operation_id = monitoring.start_operation(EmailOperationType.REMINDER, 12, 40, initiated_by="cron")

        operation = monitoring.get_operation(operation_id)
        assert operation_id.startswith("email_op_")
        assert operation.status == EmailOperationStatus.PENDING
        assert operation.total_emails == 40
        assert operation.is_active
        assert monitoring.active_operation_count() == 1

    def test_duration_counts_from_in_progress(self, monitoring, clock):
        operation_id = monitoring.start_operation(EmailOperationType.SUMMARY, 1, 2)
        clock.advance(10)
        monitoring.update_operation_status(operation_id, EmailOperationStatus.IN_PROGRESS)
        clock.advance(2)

        monitoring.complete_operation(operation_id, True, 2, 0)

        operation = monitoring.get_operation(operation_id)
        assert operation.status == EmailOperationStatus.COMPLETED
        assert operation.duration_ms == pytest.approx(2000)
        assert not operation.is_active

    def test_failed_completion_records_errors(self, monitoring):
        operation_id = monitoring.start_operation(EmailOperationType.SUMMARY, 1, 2)

        monitoring.complete_operation(operation_id, False, 1, 1, errors=["Resend 500"])

        operation = monitoring.get_operation(operation_id)
        assert operation.status == EmailOperationStatus.FAILED
        assert [e.message for e in operation.errors] == ["Resend 500"]

    def test_unknown_operation_is_ignored(self, monitoring):
        monitoring.update_operation_status("missing", EmailOperationStatus.FAILED)
        monitoring.record_error("missing", EmailErrorCategory.SENDING, "x")
        monitoring.complete_operation("missing", True, 1, 0)

        assert monitoring.get_all_operations() == []

    def test_error_log_names_the_category_value(self, monitoring, caplog):
        operation_id = monitoring.start_operation(EmailOperationType.SUMMARY, 1, 1)

        monitoring.record_error(operation_id, EmailErrorCategory.VALIDATION, "bad address")

        assert f"{operation_id}: [validation] bad address" in caplog.text
        assert "EmailErrorCategory" not in caplog.text

    def test_errors_per_operation_are_capped(self, clock):
        monitoring = EmailMonitoringService(max_errors_per_operation=3, clock=clock)
        operation_id = monitoring.start_operation(EmailOperationType.SUMMARY, 1, 10)

        for i in range(5):
            monitoring.record_error(operation_id, EmailErrorCategory.SENDING, f"error {i}")

        messages = [e.message for e in monitoring.get_operation(operation_id).errors]
        assert messages == ["error 2", "error 3", "error 4"]

    def test_history_is_capped_oldest_first(self, clock):
        monitoring = EmailMonitoringService(max_operations=3, clock=clock)
        ids = []
        for _ in range(5):
            ids.append(monitoring.start_operation(EmailOperationType.SUMMARY, 1, 1))
            clock.advance(1)

        remaining = {op.id for op in monitoring.get_all_operations()}
        assert remaining == set(ids[2:])

    def test_operation_metrics(self, monitoring, clock):
        operation_id = run_operation(monitoring, clock, sent=8, failed=2, duration=5)

        metrics = monitoring.get_operation_metrics(operation_id)

        assert metrics["emails_per_second"] == pytest.approx(2.0)
        assert metrics["average_email_send_time"] == pytest.approx(500)
        assert metrics["success_rate"] == pytest.approx(80)

    def test_metrics_unavailable_until_complete(self, monitoring):
        operation_id = monitoring.start_operation(EmailOperationType.SUMMARY, 1, 1)

        assert monitoring.get_operation_metrics(operation_id) is None


class TestSystemHealth:

    def test_no_operations_is_healthy(self, monitoring):
        health = monitoring.get_system_health()

        assert health["status"] == "healthy"
        assert health["success_rate_24h"] == 100.0
        assert health["recommendations"] == ["System operating normally"]

    def test_low_success_rate_is_degraded(self, monitoring, clock):
        run_operation(monitoring, clock, sent=90, failed=10)

        health = monitoring.get_system_health()

        assert health["status"] == "degraded"
        assert health["success_rate_24h"] == 90.0

    def test_critical_success_rate_stays_unhealthy(self, monitoring, clock):
        """Later degraded-level findings must not pull unhealthy back down."""
        run_operation(monitoring, clock, sent=50, failed=50)
        for _ in range(6):
            monitoring.start_operation(EmailOperationType.NOTIFICATION, None, 1)

        health = monitoring.get_system_health()

        assert health["status"] == "unhealthy"
        assert health["current_operations"] == 6
        assert len(health["recommendations"]) == 3

    def test_operations_older_than_a_day_are_ignored(self, monitoring, clock):
        run_operation(monitoring, clock, sent=0, failed=10)
        clock.advance(25 * 3600)

        assert monitoring.get_system_health()["status"] == "healthy"


class TestPerformanceInsights:

    def test_aggregates_timeframe(self, monitoring, clock):
        slow = run_operation(monitoring, clock, sent=10, failed=0, duration=4)
        run_operation(monitoring, clock, sent=5, failed=5, duration=2)
        monitoring.record_error(slow, EmailErrorCategory.RATE_LIMIT, "429")

        insights = monitoring.get_performance_insights("1h")

        assert insights["total_operations"] == 2
        assert insights["total_emails_sent"] == 15
        assert insights["success_rate"] == 75.0
        assert insights["avg_duration_per_operation"] == 3000
        assert insights["most_common_errors"] == [{"category": "rate_limit", "count": 1}]
        assert insights["slowest_operations"][0]["id"] == slow

    def test_invalid_timeframe(self, monitoring):
        with pytest.raises(ValueError):
            monitoring.get_performance_insights("2w")
