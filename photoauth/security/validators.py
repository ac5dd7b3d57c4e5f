"""
Input Validation for OAuth 2.0 Endpoints

Provides syntactic validation for:
- Authorization request parameters
- Token, revocation and introspection request parameters
- General string and URL checks

Semantic checks (is the client registered, does the code match) belong to
the grant engine; these validators only reject malformed input early.
"""

import re
import logging
from typing import Dict, Any, Optional, List, Mapping
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

TOKEN_GRANT_TYPES = ("authorization_code", "refresh_token", "password")


class ValidationError(Exception):
    """Input validation error"""
    def __init__(self, field: str, message: str, error: str = "invalid_request"):
        self.field = field
        self.message = message
        self.error = error
        super().__init__(f"{field}: {message}")


class InputValidator:
    """
    General input validation
    """

    # Common regex patterns
    PATTERNS = {
        "client_id": re.compile(r"^[a-zA-Z0-9._-]{1,64}$"),
        "scope": re.compile(r"^[\x21\x23-\x5b\x5d-\x7e]+( [\x21\x23-\x5b\x5d-\x7e]+)*$"),
        "base64url": re.compile(r"^[A-Za-z0-9_-]+$"),
    }

    @classmethod
    def validate_string(cls,
                        value: Any,
                        field_name: str,
                        pattern: Optional[str] = None,
                        min_length: int = 0,
                        max_length: int = 1000,
                        required: bool = True) -> Optional[str]:
        """
        Validate string input with pattern matching

        Args:
            value: Value to validate
            field_name: Name of the field for error messages
            pattern: Regex pattern name or custom pattern
            min_length: Minimum string length
            max_length: Maximum string length
            required: Whether field is required

        Returns:
            Validated string or None if optional and empty

        Raises:
            ValidationError: If validation fails
        """
        if value is None or value == "":
            if required:
                raise ValidationError(field_name, "Field is required")
            return None

        if not isinstance(value, str):
            raise ValidationError(field_name, f"Must be string, got {type(value).__name__}")

        if len(value) < min_length:
            raise ValidationError(field_name, f"Minimum length {min_length}, got {len(value)}")

        if len(value) > max_length:
            raise ValidationError(field_name, f"Maximum length {max_length}, got {len(value)}")

        if pattern:
            regex = cls.PATTERNS.get(pattern) or re.compile(pattern)
            if not regex.match(value):
                raise ValidationError(field_name, f"Invalid format for {pattern}")

        return value

    @classmethod
    def validate_url(cls,
                     url: Any,
                     field_name: str,
                     allowed_schemes: List[str] = None,
                     required: bool = True) -> Optional[str]:
        """
        Validate URL format and scheme

        Args:
            url: URL to validate
            field_name: Field name for errors
            allowed_schemes: List of allowed schemes (default: ['https'])
            required: Whether field is required

        Returns:
            Validated URL

        Raises:
            ValidationError: If URL is invalid
        """
        if allowed_schemes is None:
            allowed_schemes = ['https']

        url = cls.validate_string(url, field_name, max_length=2048, required=required)
        if url is None:
            return None

        try:
            parsed = urlparse(url)
        except ValueError as e:
            raise ValidationError(field_name, f"Invalid URL format: {e}")

        if not parsed.scheme:
            raise ValidationError(field_name, "URL missing scheme")

        if parsed.scheme not in allowed_schemes:
            raise ValidationError(
                field_name,
                f"URL scheme must be one of {allowed_schemes}, got {parsed.scheme}"
            )

        if not parsed.netloc:
            raise ValidationError(field_name, "URL missing hostname")

        if parsed.fragment:
            raise ValidationError(field_name, "URL must not contain a fragment")

        return url


class OAuthValidator:
    """
    OAuth 2.0 specific parameter validation
    """

    @classmethod
    def validate_authorization_request(cls, params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Validate the parameters that identify the client and its redirect target

        Everything else is checked by the grant engine once the redirect URI
        is trusted, so those errors can be returned to the client.

        Raises:
            ValidationError: If client_id or redirect_uri is malformed
        """
        validated = {}

        validated["client_id"] = InputValidator.validate_string(
            params.get("client_id"), "client_id", pattern="client_id", required=True
        )

        validated["redirect_uri"] = InputValidator.validate_url(
            params.get("redirect_uri"), "redirect_uri", allowed_schemes=["https", "http"]
        )

        return validated

    @classmethod
    def validate_token_request(cls, params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Validate token request parameters

        Args:
            params: Token request form

        Returns:
            Validated parameters for the requested grant type

        Raises:
            ValidationError: If validation fails
        """
        validated = {}

        grant_type = InputValidator.validate_string(
            params.get("grant_type"), "grant_type", max_length=64, required=True
        )
        if grant_type not in TOKEN_GRANT_TYPES:
            raise ValidationError(
                "grant_type",
                f"Grant type '{grant_type}' is not supported",
                error="unsupported_grant_type"
            )
        validated["grant_type"] = grant_type

        if grant_type == "authorization_code":
            validated["code"] = InputValidator.validate_string(
                params.get("code"), "code", pattern="base64url", max_length=512, required=True
            )
            validated["redirect_uri"] = InputValidator.validate_url(
                params.get("redirect_uri"), "redirect_uri", allowed_schemes=["https", "http"]
            )
            # A malformed verifier fails PKCE verification as invalid_grant
            validated["code_verifier"] = InputValidator.validate_string(
                params.get("code_verifier"), "code_verifier", max_length=256, required=False
            )

        elif grant_type == "refresh_token":
            validated["refresh_token"] = InputValidator.validate_string(
                params.get("refresh_token"), "refresh_token", max_length=512, required=True
            )

        elif grant_type == "password":
            validated["username"] = InputValidator.validate_string(
                params.get("username"), "username", max_length=256, required=True
            )
            validated["password"] = InputValidator.validate_string(
                params.get("password"), "password", max_length=1024, required=True
            )

        validated["scope"] = InputValidator.validate_string(
            params.get("scope"), "scope", pattern="scope", max_length=1024, required=False
        )

        return validated

    @classmethod
    def validate_token_reference(cls, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate the token parameters of revocation and introspection requests"""
        return {
            "token": InputValidator.validate_string(
                params.get("token"), "token", max_length=4096, required=True
            ),
            "token_type_hint": InputValidator.validate_string(
                params.get("token_type_hint"), "token_type_hint", max_length=64, required=False
            ),
        }
