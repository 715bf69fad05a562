# backend/tasks/delivery/health_monitor.py - SYSTEM HEALTH CHECKS
"""
Component health checks for the email service: data store, email provider,
football data API, memory, disk and required configuration.
"""
import asyncio
import logging
import os
import tempfile
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import psutil

from core.config import Settings
from .error_tracking import ErrorCategory, ErrorSeverity, ErrorTrackingService
from .monitoring import HealthStatus

logger = logging.getLogger(__name__)

CheckResult = Tuple[HealthStatus, str, Dict[str, Any]]


class HealthCheck:
    def __init__(self, name: str, check_func: Callable[[], Awaitable[CheckResult]],
                 critical: bool = False, timeout: float = 5.0):
        self.name = name
        self.check_func = check_func
        self.critical = critical
        self.timeout = timeout
        self.last_result: Optional[Dict[str, Any]] = None


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthCheckService:
    """Runs registered component checks and rolls them into one report"""

    def __init__(
        self,
        settings: Settings,
        error_tracker: Optional[ErrorTrackingService] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        self.settings = settings
        self.error_tracker = error_tracker
        self.http_client = http_client
        self.environ = environ if environ is not None else os.environ
        self.start_time = time.time()
        self.health_checks: Dict[str, HealthCheck] = {}
        self._register_health_checks()

    def _register_health_checks(self):
        """Register all health check functions"""
        self.health_checks = {
            "database": HealthCheck("database", self._check_database, critical=True, timeout=5.0),
            "email_service": HealthCheck("email_service", self._check_email_service, critical=True, timeout=3.0),
            "football_api": HealthCheck("football_api", self._check_football_api, critical=False, timeout=10.0),
            "memory_usage": HealthCheck("memory_usage", self._check_memory_usage, critical=False, timeout=1.0),
            "disk_space": HealthCheck("disk_space", self._check_disk_space, critical=False, timeout=1.0),
            "environment_variables": HealthCheck(
                "environment_variables", self._check_environment_variables, critical=True, timeout=0.5
            ),
        }

    def register(self, check: HealthCheck) -> None:
        self.health_checks[check.name] = check

    # ------------------------------------------------------------------
    # HTTP helper
    # ------------------------------------------------------------------

    async def _get(self, url: str, headers: Dict[str, str]) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.get(url, headers=headers)
        async with httpx.AsyncClient(timeout=10.0) as client:
            return await client.get(url, headers=headers)

    # ------------------------------------------------------------------
    # Component checks
    # ------------------------------------------------------------------

    async def _check_database(self) -> CheckResult:
        """Supabase REST ping against the betting rounds table"""
        if not self.settings.SUPABASE_URL or not self.settings.SUPABASE_SERVICE_ROLE_KEY:
            return HealthStatus.UNHEALTHY, "Database connection not configured", {"configured": False}

        key = self.settings.SUPABASE_SERVICE_ROLE_KEY
        url = f"{self.settings.SUPABASE_URL.rstrip('/')}/rest/v1/betting_rounds?select=id&limit=1"
        start = time.time()
        try:
            response = await self._get(url, {"apikey": key, "Authorization": f"Bearer {key}"})
        except httpx.HTTPError as e:
            return HealthStatus.UNHEALTHY, f"Database connection failed: {e}", {"error": str(e)}

        query_time = round((time.time() - start) * 1000, 2)
        if response.status_code >= 400:
            return (
                HealthStatus.UNHEALTHY,
                f"Database query failed: HTTP {response.status_code}",
                {"status_code": response.status_code, "query_time": query_time},
            )

        rows = response.json()
        return (
            HealthStatus.HEALTHY,
            "Database is responsive and accessible",
            {"query_time": query_time, "has_data": bool(rows)},
        )

    async def _check_email_service(self) -> CheckResult:
        """Authenticated Resend call that does not send anything"""
        if self.settings.EMAIL_TEST_MODE:
            return HealthStatus.HEALTHY, "Email service in test mode", {"test_mode": True}

        api_key = self.settings.RESEND_API_KEY
        if not api_key:
            return HealthStatus.UNHEALTHY, "Resend API key not configured", {"configured": False}

        start = time.time()
        try:
            response = await self._get(
                f"{self.settings.RESEND_API_URL.rstrip('/')}/domains",
                {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            return HealthStatus.UNHEALTHY, f"Email service check failed: {e}", {"error": str(e)}

        response_time = round((time.time() - start) * 1000, 2)
        if response.status_code >= 400:
            return (
                HealthStatus.UNHEALTHY,
                f"Email service API error: {response.status_code} {response.reason_phrase}",
                {"status_code": response.status_code, "response_time": response_time},
            )

        domains = response.json().get("data") or []
        return (
            HealthStatus.HEALTHY,
            "Email service is accessible and authenticated",
            {"response_time": response_time, "domains": len(domains), "authenticated": True},
        )

    async def _check_football_api(self) -> CheckResult:
        api_key = self.settings.FOOTBALL_API_KEY
        if not api_key:
            return HealthStatus.DEGRADED, "Football API key not configured", {"configured": False}

        start = time.time()
        try:
            response = await self._get(
                f"{self.settings.FOOTBALL_API_URL.rstrip('/')}/status",
                {"X-RapidAPI-Key": api_key, "X-RapidAPI-Host": "api-football-v1.p.rapidapi.com"},
            )
        except httpx.HTTPError as e:
            return HealthStatus.DEGRADED, f"Football API check failed: {e}", {"error": str(e)}

        response_time = round((time.time() - start) * 1000, 2)
        if response.status_code >= 400:
            return (
                HealthStatus.DEGRADED,
                f"Football API error: {response.status_code} {response.reason_phrase}",
                {"status_code": response.status_code, "response_time": response_time},
            )

        payload = response.json().get("response") or {}
        return (
            HealthStatus.HEALTHY,
            "Football API is accessible",
            {"response_time": response_time, "requests": payload.get("requests", {})},
        )

    async def _check_memory_usage(self) -> CheckResult:
        process = psutil.Process()
        rss_mb = round(process.memory_info().rss / (1024 * 1024), 2)
        memory = psutil.virtual_memory()
        usage_percent = memory.percent

        status = HealthStatus.HEALTHY
        message = f"Memory usage: {usage_percent}% (process RSS {rss_mb}MB)"
        if usage_percent > self.settings.MEMORY_UNHEALTHY_PERCENT:
            status = HealthStatus.UNHEALTHY
            message = f"Critical memory usage: {usage_percent}%"
        elif usage_percent > self.settings.MEMORY_DEGRADED_PERCENT:
            status = HealthStatus.DEGRADED
            message = f"High memory usage: {usage_percent}%"

        return status, message, {
            "usage_percent": usage_percent,
            "process_rss_mb": rss_mb,
            "available_gb": round(memory.available / (1024 ** 3), 2),
        }

    async def _check_disk_space(self) -> CheckResult:
        tmp_dir = self.settings.HEALTH_CHECK_TMP_DIR or tempfile.gettempdir()
        test_file = os.path.join(tmp_dir, f"health-check-{uuid.uuid4().hex}.tmp")

        try:
            with open(test_file, "w") as handle:
                handle.write("health check test")
            os.remove(test_file)
        except OSError as e:
            return HealthStatus.DEGRADED, f"Disk write test failed: {e}", {"error": str(e), "writable": False}

        disk = psutil.disk_usage(tmp_dir)
        usage_percent = round(disk.percent, 2)
        if usage_percent >= self.settings.DISK_DEGRADED_PERCENT:
            return HealthStatus.DEGRADED, f"High disk usage: {usage_percent}%", {
                "writable": True, "usage_percent": usage_percent,
            }

        return HealthStatus.HEALTHY, "Temporary file system is writable", {
            "writable": True,
            "usage_percent": usage_percent,
            "free_gb": round(disk.free / (1024 ** 3), 2),
        }

    async def _check_environment_variables(self) -> CheckResult:
        required = self.settings.REQUIRED_ENV_VARS
        optional = self.settings.OPTIONAL_ENV_VARS

        missing = [name for name in required if not self.environ.get(name)]
        present_optional = [name for name in optional if self.environ.get(name)]

        if self.settings.EMAIL_TEST_MODE and "RESEND_API_KEY" in missing:
            missing.remove("RESEND_API_KEY")

        details = {
            "required": {
                "total": len(required),
                "present": len(required) - len(missing),
                "missing": len(missing),
                "missing_vars": missing,
            },
            "optional": {
                "total": len(optional),
                "present": len(present_optional),
                "present_vars": present_optional,
            },
            "feature_flags": self.settings.get_feature_flags(),
        }

        if missing:
            return HealthStatus.UNHEALTHY, f"Missing required environment variables: {', '.join(missing)}", details

        return (
            HealthStatus.HEALTHY,
            f"Environment: {len(required)}/{len(required)} required variables configured",
            details,
        )

    # ------------------------------------------------------------------
    # Running checks
    # ------------------------------------------------------------------

    async def run_health_check(self, check_name: str) -> Dict[str, Any]:
        """Run a specific health check, bounded by its timeout"""
        if check_name not in self.health_checks:
            return {"name": check_name, "status": HealthStatus.UNKNOWN.value,
                    "message": f"Health check '{check_name}' not found"}

        health_check = self.health_checks[check_name]
        start = time.time()

        try:
            status, message, details = await asyncio.wait_for(health_check.check_func(), health_check.timeout)
        except asyncio.TimeoutError:
            status, message, details = HealthStatus.UNHEALTHY, "Health check failed: Health check timeout", None
            self._track_check_failure(health_check, "Health check timeout", start)
        except Exception as e:
            logger.error(f"Health check '{check_name}' failed: {e}", exc_info=True)
            status, message, details = HealthStatus.UNHEALTHY, f"Health check failed: {e}", None
            self._track_check_failure(health_check, str(e), start)

        result = {
            "name": check_name,
            "status": HealthStatus(status).value,
            "response_time": round((time.time() - start) * 1000, 2),
            "message": message,
            "details": details,
            "last_checked": _utc_now(),
            "critical": health_check.critical,
        }
        health_check.last_result = result
        return result

    def _track_check_failure(self, health_check: HealthCheck, error_message: str, start: float) -> None:
        if not self.error_tracker:
            return
        self.error_tracker.track_error(
            f"Health check failed for {health_check.name}: {error_message}",
            ErrorSeverity.HIGH if health_check.critical else ErrorSeverity.MEDIUM,
            ErrorCategory.SYSTEM,
            {"metadata": {"response_time": round((time.time() - start) * 1000, 2),
                          "component": health_check.name}},
            ["health_check", health_check.name],
        )

    async def check_system_health(self) -> Dict[str, Any]:
        """Run all health checks concurrently and return a full report"""
        logger.info("Starting comprehensive system health check")
        timestamp = _utc_now()
        started = time.time()

        components = list(await asyncio.gather(
            *(self.run_health_check(name) for name in self.health_checks)
        ))

        summary = calculate_summary(components)
        overall_status = determine_overall_status(components)

        logger.info(
            f"System health check completed: {overall_status.value} "
            f"({summary['healthy']}/{summary['total']} healthy) in {round((time.time() - started) * 1000)}ms"
        )

        return {
            "status": overall_status.value,
            "timestamp": timestamp,
            "uptime": int(time.time() - self.start_time),
            "version": self.settings.APP_VERSION,
            "environment": self.settings.ENVIRONMENT,
            "components": components,
            "summary": summary,
        }

    async def get_quick_health_status(self) -> Dict[str, str]:
        """Lightweight status: only the data store ping"""
        result = await self.run_health_check("database")
        if result["status"] == HealthStatus.HEALTHY.value:
            return {"status": HealthStatus.HEALTHY.value, "message": "System operational"}
        return {"status": HealthStatus.UNHEALTHY.value, "message": "Database connectivity issues"}


def calculate_summary(components: List[Dict[str, Any]]) -> Dict[str, int]:
    summary = {"total": len(components), "healthy": 0, "degraded": 0, "unhealthy": 0, "critical_issues": 0}

    for component in components:
        status = component.get("status")
        if status == HealthStatus.HEALTHY.value:
            summary["healthy"] += 1
        elif status in (HealthStatus.DEGRADED.value, HealthStatus.UNHEALTHY.value):
            summary[status] += 1
            if component.get("critical"):
                summary["critical_issues"] += 1

    return summary


def determine_overall_status(components: List[Dict[str, Any]]) -> HealthStatus:
    statuses = [(c.get("status"), c.get("critical", False)) for c in components]

    if any(critical and status == HealthStatus.UNHEALTHY.value for status, critical in statuses):
        return HealthStatus.UNHEALTHY
    if any(status in (HealthStatus.UNHEALTHY.value, HealthStatus.DEGRADED.value) for status, _ in statuses):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY
