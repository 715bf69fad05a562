"""
Pytest configuration and fixtures for all tests.
"""

import os
import sys

import pytest

# Add backend to Python path before any imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../backend'))

# Set up test environment variables before importing any modules
os.environ.setdefault('ENVIRONMENT', 'test')
os.environ.setdefault('LOG_LEVEL', 'INFO')
os.environ.setdefault('EMAIL_TEST_MODE', 'true')
os.environ.setdefault('CRON_SECRET', 'test-cron-secret')
os.environ.setdefault('NEXT_PUBLIC_SUPABASE_URL', 'https://supabase.test')
os.environ.setdefault('NEXT_PUBLIC_SUPABASE_ANON_KEY', 'anon-key')
os.environ.setdefault('SUPABASE_SERVICE_ROLE_KEY', 'service-role-key')

from core.config import Settings  # noqa: E402


class FakeClock:
    """Manually advanced replacement for time.time"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    settings = Settings()
    settings.EMAIL_TEST_MODE = True
    settings.CRON_SECRET = 'test-cron-secret'
    settings.RESEND_WEBHOOK_SECRET = None
    return settings
