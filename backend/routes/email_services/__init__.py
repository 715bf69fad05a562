# backend/routes/email_services/__init__.py
from .base_email_service import BaseEmailService, EmailOptions, EmailResult
from .resend_email_service import ResendEmailService, validate_email, validate_email_options
from .email_service_factory import get_email_service

__all__ = [
    'BaseEmailService',
    'EmailOptions',
    'EmailResult',
    'ResendEmailService',
    'validate_email',
    'validate_email_options',
    'get_email_service',
]
