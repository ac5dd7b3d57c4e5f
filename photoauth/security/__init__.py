"""
Security Module for the Authorization Server

Provides:
- Input validation for OAuth endpoint parameters
- Security audit logging
"""

from .validators import InputValidator, OAuthValidator, ValidationError
from .audit_logger import SecurityAuditLogger, AuditEvent, AuditEventType

__all__ = [
    'InputValidator',
    'OAuthValidator',
    'ValidationError',
    'SecurityAuditLogger',
    'AuditEvent',
    'AuditEventType',
]
