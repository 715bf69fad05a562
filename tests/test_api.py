"""
Tests for the HTTP endpoints.
"""

import base64
import hashlib
import hmac
import json
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from core.dependencies import build_email_services
from main import create_app
from tasks.delivery.health_monitor import HealthCheck
from tasks.delivery.monitoring import EmailOperationType, HealthStatus

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


def fixed_check(status):
    async def check():
        return status, f"{status.value}", {}
    return check


def unreachable(request):
    raise AssertionError(f"unexpected outbound request to {request.url}")


@pytest.fixture
def services(test_settings):
    services = build_email_services(
        test_settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
    )
    services.rate_limiter.min_delay_ms = 1
    services.health_checker.health_checks = {
        "database": HealthCheck("database", fixed_check(HealthStatus.HEALTHY), critical=True),
        "email_service": HealthCheck("email_service", fixed_check(HealthStatus.HEALTHY), critical=True),
    }
    return services


@pytest.fixture
def client(test_settings, services):
    return TestClient(create_app(test_settings, services))


def record_operation(services, sent, failed):
    monitoring = services.monitoring
    operation_id = monitoring.start_operation(EmailOperationType.SUMMARY, 1, sent + failed)
    monitoring.complete_operation(operation_id, failed == 0, sent, failed)


class TestServiceEndpoints:

    def test_liveness(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Process-Time" in response.headers

    def test_root_lists_endpoints(self, client):
        assert client.get("/").json()["endpoints"]["dashboard"] == "/api/email-dashboard"


class TestEmailDashboard:

    def test_full_dashboard(self, client, services):
        record_operation(services, sent=4, failed=0)

        response = client.get("/api/email-dashboard")

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"timestamp", "timeWindow", "health", "errors", "metrics", "summary"}
        assert body["timeWindow"] == 24
        assert body["summary"]["overallStatus"] == "healthy"
        assert body["summary"]["emailsSent"] == 4
        assert body["metrics"]["systemHealth"]["status"] == "healthy"

    def test_summary_format(self, client, services):
        services.health_checker.health_checks["database"] = HealthCheck(
            "database", fixed_check(HealthStatus.UNHEALTHY), critical=True
        )

        response = client.get("/api/email-dashboard", params={"format": "summary", "timeWindow": 6})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "unhealthy"
        assert body["summary"]["criticalIssues"] == 1

    def test_sections_can_be_excluded(self, client):
        response = client.get("/api/email-dashboard", params={
            "includeHealth": "false", "includeErrors": "false", "includeMetrics": "false",
        })

        assert set(response.json()) == {"timestamp", "timeWindow", "summary"}

    def test_invalid_format(self, client):
        assert client.get("/api/email-dashboard", params={"format": "xml"}).status_code == 422

    def test_refresh_action(self, client):
        response = client.post("/api/email-dashboard", json={"action": "refresh"})

        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    def test_test_health_action(self, client):
        response = client.post("/api/email-dashboard", json={"action": "test-health"})

        assert response.json()["result"] == {"status": "healthy", "message": "System operational"}

    def test_unknown_action(self, client):
        response = client.post("/api/email-dashboard", json={"action": "explode"})

        assert response.status_code == 400
        assert response.json()["validActions"] == ["refresh", "test-health"]


class TestEmailHealth:

    def test_healthy(self, client):
        response = client.get("/api/email-health")

        assert response.status_code == 200
        body = response.json()
        assert body["health"]["system_status"] == "healthy"
        assert body["performance"]["metrics"]["success_rate"] == "0.0%"

    def test_degraded_returns_206(self, client, services):
        record_operation(services, sent=90, failed=10)

        assert client.get("/api/email-health").status_code == 206

    def test_unhealthy_returns_503(self, client, services):
        record_operation(services, sent=10, failed=90)

        response = client.get("/api/email-health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_performance_insights(self, client, services):
        record_operation(services, sent=3, failed=1)

        response = client.post("/api/email-health", json={"timeframe": "7d"})

        assert response.status_code == 200
        assert response.json()["insights"]["total_emails_sent"] == 3

    @pytest.mark.parametrize("body", [{"timeframe": "2w"}, {}, {"timeframe": ["1h"]}])
    def test_invalid_timeframe(self, client, body):
        response = client.post("/api/email-health", json=body)

        assert response.status_code == 400
        assert "1h, 24h, 7d, 30d" in response.json()["message"]


class TestSystemHealth:

    def test_healthy(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["summary"]["total"] == 2

    def test_critical_failure_returns_503(self, client, services):
        services.health_checker.health_checks["email_service"] = HealthCheck(
            "email_service", fixed_check(HealthStatus.UNHEALTHY), critical=True
        )

        assert client.get("/api/health").status_code == 503

    def test_quick(self, client):
        response = client.get("/api/health/quick")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestCronAuth:

    def test_missing_secret(self, client):
        assert client.get("/api/cron/email-health-check").status_code == 401

    def test_wrong_secret(self, client):
        response = client.get("/api/cron/email-health-check", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_bearer_secret(self, client):
        response = client.get("/api/cron/email-health-check", headers=CRON_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["rate_limiter"]["queue_size"] == 0

    def test_header_secret(self, client):
        response = client.get("/api/cron/email-health-check", headers={"x-cron-secret": "test-cron-secret"})

        assert response.status_code == 200

    def test_unconfigured_secret_is_server_error(self, test_settings, services):
        test_settings.CRON_SECRET = None
        client = TestClient(create_app(test_settings, services))

        response = client.get("/api/cron/email-health-check", headers=CRON_HEADERS)

        assert response.status_code == 500


class TestSendBatch:

    def test_requires_cron_secret(self, client):
        response = client.post("/api/admin/email/send-batch", json={
            "email_type": "summary", "messages": [{"to": "a@example.com", "subject": "s", "html": "h"}],
        })

        assert response.status_code == 401

    def test_sends_in_test_mode(self, client, services):
        response = client.post("/api/admin/email/send-batch", headers=CRON_HEADERS, json={
            "email_type": "reminder",
            "round_id": 12,
            "messages": [
                {"to": "a@example.com", "subject": "Round 12 closes soon", "html": "<p>Bet now</p>"},
                {"to": ["broken"], "subject": "Round 12 closes soon", "html": "<p>Bet now</p>"},
            ],
        })

        assert response.status_code == 200
        body = response.json()
        assert (body["total"], body["successful"], body["failed"]) == (2, 1, 1)
        assert body["results"][0]["message_id"].startswith("test_")

        operation = services.monitoring.get_operation(body["operation_id"])
        assert operation.round_id == 12

    def test_rejects_unknown_email_type(self, client):
        response = client.post("/api/admin/email/send-batch", headers=CRON_HEADERS, json={
            "email_type": "newsletter", "messages": [{"to": "a@example.com", "subject": "s", "html": "h"}],
        })

        assert response.status_code == 422


def sign(secret_bytes, msg_id, timestamp, body):
    content = f"{msg_id}.{timestamp}.".encode() + body
    signature = base64.b64encode(hmac.new(secret_bytes, content, hashlib.sha256).digest()).decode()
    return {"svix-id": msg_id, "svix-timestamp": str(timestamp), "svix-signature": f"v1,{signature}"}


class TestResendWebhook:

    def event(self, event_type="email.delivered"):
        return {
            "type": event_type,
            "created_at": "2026-01-01T12:00:00Z",
            "data": {"email_id": "re_abc", "to": ["player@example.com"], "subject": "Round 7"},
        }

    def test_delivered_event(self, client, services):
        response = client.post("/api/webhooks/resend", json=self.event())

        assert response.status_code == 200
        assert response.json()["event_type"] == "email.delivered"
        assert services.error_tracker.get_errors() == []

    def test_bounce_is_tracked(self, client, services):
        client.post("/api/webhooks/resend", json=self.event("email.bounced"))

        errors = services.error_tracker.get_errors()
        assert len(errors) == 1
        assert "bounced" in errors[0].tags

    def test_stats_are_kept_per_service_container(self, client, services, test_settings):
        client.post("/api/webhooks/resend", json=self.event())
        client.post("/api/webhooks/resend", json=self.event("email.bounced"))

        stats = client.get("/api/webhooks/stats").json()["stats"]
        assert stats["total_requests"] == 2
        assert stats["email.bounced"] == 1
        assert services.webhook_stats["successful_requests"] == 2

        other = TestClient(create_app(test_settings, build_email_services(test_settings)))
        assert other.get("/api/webhooks/stats").json()["stats"] == {}

    def test_invalid_payload(self, client):
        response = client.post("/api/webhooks/resend", content=b"not json",
                               headers={"content-type": "application/json"})

        assert response.status_code == 400

    def test_signature_required_when_secret_configured(self, test_settings, services):
        secret_bytes = b"webhook-signing-key"
        test_settings.RESEND_WEBHOOK_SECRET = "whsec_" + base64.b64encode(secret_bytes).decode()
        client = TestClient(create_app(test_settings, services))
        body = json.dumps(self.event()).encode()

        unsigned = client.post("/api/webhooks/resend", content=body)
        assert unsigned.status_code == 401

        signed = client.post(
            "/api/webhooks/resend", content=body,
            headers=sign(secret_bytes, "msg_1", int(time.time()), body),
        )
        assert signed.status_code == 200

    def test_stale_signature_rejected(self, test_settings, services):
        secret_bytes = b"webhook-signing-key"
        test_settings.RESEND_WEBHOOK_SECRET = "whsec_" + base64.b64encode(secret_bytes).decode()
        client = TestClient(create_app(test_settings, services))
        body = json.dumps(self.event()).encode()

        response = client.post(
            "/api/webhooks/resend", content=body,
            headers=sign(secret_bytes, "msg_1", int(time.time()) - 3600, body),
        )

        assert response.status_code == 401
