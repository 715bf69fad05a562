# backend/tasks/delivery/__init__.py
"""
Email delivery pipeline.

Modules are imported directly (`from tasks.delivery.rate_limiter import
RateLimiter`); this package does not re-export them.
"""
