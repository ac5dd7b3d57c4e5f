"""
Security Audit Logging for the Authorization Server

Structured audit trail for security events:
- Client authentication failures
- Authorization code issuance, exchange and replay
- Token issuance, refresh and revocation
- Access denials at the resource server
"""

import hashlib
import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional

# Security events go to their own logger, separate from application logs
security_logger = logging.getLogger("security_audit")


class AuditEventType(Enum):
    """Types of security audit events"""

    # Authentication events
    AUTH_FAILURE = "auth_failure"
    AUTH_INVALID_CLIENT = "auth_invalid_client"

    # Authorization events
    AUTHZ_TOKEN_ISSUED = "authz_token_issued"
    AUTHZ_TOKEN_REFRESHED = "authz_token_refreshed"
    AUTHZ_TOKEN_REVOKED = "authz_token_revoked"
    AUTHZ_ACCESS_DENIED = "authz_access_denied"

    # OAuth specific events
    OAUTH_CODE_ISSUED = "oauth_code_issued"
    OAUTH_CODE_EXCHANGED = "oauth_code_exchanged"
    OAUTH_PKCE_FAILURE = "oauth_pkce_failure"
    OAUTH_INVALID_REDIRECT = "oauth_invalid_redirect"
    OAUTH_CONSENT_DENIED = "oauth_consent_denied"

    # Security events
    SECURITY_REPLAY_DETECTED = "security_replay_detected"


BASE_RISK_SCORES = {
    AuditEventType.AUTH_FAILURE: 30,
    AuditEventType.AUTH_INVALID_CLIENT: 50,
    AuditEventType.AUTHZ_ACCESS_DENIED: 40,
    AuditEventType.OAUTH_PKCE_FAILURE: 60,
    AuditEventType.OAUTH_INVALID_REDIRECT: 60,
    AuditEventType.SECURITY_REPLAY_DETECTED: 90,
}


@dataclass
class AuditEvent:
    """Security audit event data structure"""

    event_type: AuditEventType
    timestamp: datetime
    owner_id: Optional[str] = None
    client_id: Optional[str] = None
    scope: Optional[str] = None
    success: bool = True
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    risk_score: int = 0  # 0-100, higher = more suspicious

    def __post_init__(self):
        if self.details is None:
            self.details = {}

        if not self.timestamp.tzinfo:
            self.timestamp = self.timestamp.replace(tzinfo=timezone.utc)


class SecurityAuditLogger:
    """
    Security audit logger

    Features:
    - One JSON line per event
    - Risk scoring, with replay detection always at the top of the scale
    - Resource owner ids hashed before they reach the log
    """

    def __init__(self,
                 logger_name: str = "security_audit",
                 enabled: bool = True,
                 enable_pii_hashing: bool = True,
                 hash_salt: str = "photoauth-audit-salt",
                 max_details_length: int = 2048):
        """
        Args:
            logger_name: Logger instance name
            enabled: When False, events are dropped
            enable_pii_hashing: Whether to hash owner ids
            hash_salt: Salt for PII hashing
            max_details_length: Maximum length for details field
        """
        self.logger = logging.getLogger(logger_name)
        self.enabled = enabled
        self.enable_pii_hashing = enable_pii_hashing
        self.hash_salt = hash_salt
        self.max_details_length = max_details_length

    def log_event(self, event: AuditEvent) -> None:
        """
        Log security audit event

        Args:
            event: AuditEvent to log
        """
        if not self.enabled:
            return

        if event.risk_score == 0:
            event.risk_score = self._calculate_risk_score(event)

        if self.enable_pii_hashing and event.owner_id:
            event = replace(event, owner_id=self._hash_value(event.owner_id))

        log_entry = self._format_log_entry(event)

        if event.success and event.risk_score < 30:
            self.logger.info(log_entry)
        elif not event.success or event.risk_score >= 70:
            self.logger.error(log_entry)
        else:
            self.logger.warning(log_entry)

    def log_authentication_failure(self,
                                   client_id: str = None,
                                   error_code: str = None,
                                   error_message: str = None,
                                   **kwargs) -> None:
        """Log client authentication failure"""
        self.log_event(AuditEvent(
            event_type=AuditEventType.AUTH_INVALID_CLIENT,
            timestamp=datetime.now(timezone.utc),
            client_id=client_id,
            success=False,
            error_code=error_code,
            error_message=error_message,
            details=kwargs
        ))

    def log_invalid_redirect(self, client_id: str, redirect_uri: str) -> None:
        self.log_event(AuditEvent(
            event_type=AuditEventType.OAUTH_INVALID_REDIRECT,
            timestamp=datetime.now(timezone.utc),
            client_id=client_id,
            success=False,
            error_code="invalid_request",
            details={"redirect_uri": redirect_uri}
        ))

    def log_code_issued(self, owner_id: str, client_id: str, scope: str = None) -> None:
        self.log_event(AuditEvent(
            event_type=AuditEventType.OAUTH_CODE_ISSUED,
            timestamp=datetime.now(timezone.utc),
            owner_id=owner_id,
            client_id=client_id,
            scope=scope
        ))

    def log_consent_denied(self, owner_id: str, client_id: str) -> None:
        self.log_event(AuditEvent(
            event_type=AuditEventType.OAUTH_CONSENT_DENIED,
            timestamp=datetime.now(timezone.utc),
            owner_id=owner_id,
            client_id=client_id,
            error_code="access_denied"
        ))

    def log_pkce_failure(self, client_id: str) -> None:
        self.log_event(AuditEvent(
            event_type=AuditEventType.OAUTH_PKCE_FAILURE,
            timestamp=datetime.now(timezone.utc),
            client_id=client_id,
            success=False,
            error_code="invalid_grant"
        ))

    def log_token_issued(self,
                         owner_id: str,
                         client_id: str,
                         scope: str = None,
                         grant_type: str = None,
                         refreshed: bool = False,
                         **kwargs) -> None:
        """Log token issuance"""
        event_type = AuditEventType.AUTHZ_TOKEN_REFRESHED if refreshed else AuditEventType.AUTHZ_TOKEN_ISSUED
        if grant_type == "authorization_code":
            event_type = AuditEventType.OAUTH_CODE_EXCHANGED

        self.log_event(AuditEvent(
            event_type=event_type,
            timestamp=datetime.now(timezone.utc),
            owner_id=owner_id,
            client_id=client_id,
            scope=scope,
            details={"grant_type": grant_type, **kwargs}
        ))

    def log_token_revoked(self, client_id: str, reason: str = "client_request", count: int = 1) -> None:
        self.log_event(AuditEvent(
            event_type=AuditEventType.AUTHZ_TOKEN_REVOKED,
            timestamp=datetime.now(timezone.utc),
            client_id=client_id,
            details={"reason": reason, "count": count}
        ))

    def log_access_denied(self,
                          client_id: str = None,
                          reason: str = None,
                          **kwargs) -> None:
        """Log access denied events at the resource server"""
        self.log_event(AuditEvent(
            event_type=AuditEventType.AUTHZ_ACCESS_DENIED,
            timestamp=datetime.now(timezone.utc),
            client_id=client_id,
            success=False,
            error_code="invalid_token",
            error_message=reason,
            details=kwargs
        ))

    def log_replay_detected(self,
                            artifact: str,
                            client_id: str = None,
                            revoked_count: int = 0) -> None:
        """
        Log reuse of a consumed authorization code or rotated refresh token

        A replay means the artifact has most likely been intercepted; it is
        recorded as a security event, not as an ordinary client error.
        """
        self.log_event(AuditEvent(
            event_type=AuditEventType.SECURITY_REPLAY_DETECTED,
            timestamp=datetime.now(timezone.utc),
            client_id=client_id,
            success=False,
            error_code="invalid_grant",
            error_message=f"{artifact} replay detected",
            details={"artifact": artifact, "revoked_tokens": revoked_count}
        ))

    def _calculate_risk_score(self, event: AuditEvent) -> int:
        score = BASE_RISK_SCORES.get(event.event_type, 10)

        if not event.success:
            score += 20

        return min(score, 100)

    def _hash_value(self, value: str) -> str:
        salted_value = f"{value}{self.hash_salt}"
        return hashlib.sha256(salted_value.encode()).hexdigest()[:16]

    def _format_log_entry(self, event: AuditEvent) -> str:
        log_data = {
            "event_type": event.event_type.value,
            "timestamp": event.timestamp.isoformat(),
            "success": event.success,
            "risk_score": event.risk_score
        }

        optional_fields = [
            "owner_id", "client_id", "scope", "error_code", "error_message"
        ]

        for field_name in optional_fields:
            value = getattr(event, field_name)
            if value:
                log_data[field_name] = value

        if event.details:
            details_str = json.dumps(event.details, default=str)
            if len(details_str) > self.max_details_length:
                details_str = details_str[:self.max_details_length] + "..."
            log_data["details"] = details_str

        return json.dumps(log_data, separators=(',', ':'))
