import os
from typing import Optional, Dict, Any, List
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    """Unified application settings for the email delivery service"""

    # ===== BASIC APP SETTINGS =====
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    ENABLE_STRUCTURED_LOGGING: bool = _env_flag("ENABLE_STRUCTURED_LOGGING", "false")
    APP_NAME: str = "TippSlottet Email Service"
    APP_VERSION: str = os.getenv("APP_VERSION", "1.0.0")

    # ===== CRON / ADMIN AUTH =====
    CRON_SECRET: Optional[str] = os.getenv("CRON_SECRET")
    WHITELIST_ENABLED: bool = _env_flag("WHITELIST_ENABLED", "false")

    # ===== SUPABASE (opaque data store) =====
    SUPABASE_URL: Optional[str] = os.getenv("NEXT_PUBLIC_SUPABASE_URL")
    SUPABASE_ANON_KEY: Optional[str] = os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

    # ===== EMAIL PROVIDER (RESEND) =====
    RESEND_API_KEY: Optional[str] = os.getenv("RESEND_API_KEY")
    RESEND_API_URL: str = os.getenv("RESEND_API_URL", "https://api.resend.com")
    EMAIL_TEST_MODE: bool = _env_flag("EMAIL_TEST_MODE", "false")
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "noreply@tippslottet.com")
    EMAIL_REPLY_TO: str = os.getenv("EMAIL_REPLY_TO", "support@tippslottet.com")
    EMAIL_SEND_TIMEOUT_SECONDS: int = int(os.getenv("EMAIL_SEND_TIMEOUT_SECONDS", "30"))
    RESEND_WEBHOOK_SECRET: Optional[str] = os.getenv("RESEND_WEBHOOK_SECRET")

    # ===== RATE LIMITING =====
    # Resend allows 2 requests/second; stay at ~1.8 to avoid edge cases
    RATE_LIMIT_MIN_DELAY_MS: int = 550

    # ===== RETRIES =====
    MAX_EMAIL_RETRIES: int = int(os.getenv("MAX_EMAIL_RETRIES", "3"))
    RETRY_BACKOFF_BASE_MS: int = int(os.getenv("RETRY_BACKOFF_BASE_MS", "1000"))
    RETRY_BACKOFF_MAX_MS: int = 30000

    # ===== OTHER INTEGRATIONS =====
    FOOTBALL_API_KEY: Optional[str] = os.getenv("FOOTBALL_API_KEY")
    FOOTBALL_API_URL: str = os.getenv("FOOTBALL_API_URL", "https://api-football-v1.p.rapidapi.com/v3")
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")

    # ===== MONITORING =====
    MONITORING_MAX_OPERATIONS: int = 1000
    MONITORING_MAX_ERRORS_PER_OPERATION: int = 50
    ERROR_TRACKING_MAX_STORED: int = 1000
    DEFAULT_DASHBOARD_WINDOW_HOURS: int = 24
    SLOW_REQUEST_THRESHOLD_SECONDS: float = 2.0

    # ===== HEALTH CHECK THRESHOLDS =====
    MEMORY_DEGRADED_PERCENT: float = float(os.getenv("MEMORY_DEGRADED_PERCENT", "80.0"))
    MEMORY_UNHEALTHY_PERCENT: float = float(os.getenv("MEMORY_UNHEALTHY_PERCENT", "90.0"))
    DISK_DEGRADED_PERCENT: float = float(os.getenv("DISK_DEGRADED_PERCENT", "90.0"))
    HEALTH_CHECK_TMP_DIR: str = os.getenv("HEALTH_CHECK_TMP_DIR", "/tmp")

    # ===== CORS =====
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    REQUIRED_ENV_VARS: List[str] = [
        "NEXT_PUBLIC_SUPABASE_URL",
        "NEXT_PUBLIC_SUPABASE_ANON_KEY",
        "SUPABASE_SERVICE_ROLE_KEY",
        "RESEND_API_KEY",
    ]
    OPTIONAL_ENV_VARS: List[str] = [
        "FOOTBALL_API_KEY",
        "CRON_SECRET",
        "ANTHROPIC_API_KEY",
    ]

    def __init__(self):
        """Initialize and validate settings"""
        self._validate_critical_settings()

    def _validate_critical_settings(self):
        """Validate critical configuration values"""
        errors = []

        if self.is_production():
            if not self.RESEND_API_KEY and not self.EMAIL_TEST_MODE:
                errors.append("RESEND_API_KEY is required when not in test mode")
            if not self.CRON_SECRET:
                errors.append("CRON_SECRET is required in production")

        if self.MAX_EMAIL_RETRIES < 0:
            errors.append("MAX_EMAIL_RETRIES must not be negative")

        if self.MEMORY_DEGRADED_PERCENT >= self.MEMORY_UNHEALTHY_PERCENT:
            errors.append("MEMORY_DEGRADED_PERCENT must be less than MEMORY_UNHEALTHY_PERCENT")

        if errors:
            error_message = "Configuration validation failed:\n" + "\n".join(f"  - {err}" for err in errors)
            raise ValueError(error_message)

    # ============================================
    # HELPER METHODS
    # ============================================

    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def is_feature_enabled(self, feature: str) -> bool:
        """Check if a specific feature is enabled"""
        feature_map = {
            'whitelist': self.WHITELIST_ENABLED,
            'email_test_mode': self.EMAIL_TEST_MODE,
            'structured_logging': self.ENABLE_STRUCTURED_LOGGING,
        }
        return feature_map.get(feature.lower(), False)

    def get_feature_flags(self) -> Dict[str, bool]:
        return {
            "whitelist": self.WHITELIST_ENABLED,
            "email_test_mode": self.EMAIL_TEST_MODE,
            "structured_logging": self.ENABLE_STRUCTURED_LOGGING,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (excluding sensitive data)"""
        sensitive_keys = {
            'CRON_SECRET', 'RESEND_API_KEY', 'SUPABASE_ANON_KEY',
            'SUPABASE_SERVICE_ROLE_KEY', 'FOOTBALL_API_KEY', 'ANTHROPIC_API_KEY',
            'RESEND_WEBHOOK_SECRET',
        }

        config_dict = {}
        for key in dir(self):
            if key.isupper() and key not in sensitive_keys:
                config_dict[key] = getattr(self, key)

        return config_dict


# ============================================
# GLOBAL SETTINGS INSTANCE
# ============================================

settings = Settings()


__all__ = [
    'settings',
    'Settings',
]
