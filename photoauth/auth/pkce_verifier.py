"""
PKCE (Proof Key for Code Exchange) Implementation

Implements RFC 7636 for the authorization code grant:
- Challenge stored at authorization time, verifier checked at exchange
- S256 and plain methods
- Once a challenge is stored the verifier is mandatory
- Client-side helpers for generating verifier/challenge pairs
"""

import base64
import hashlib
import re
import secrets
import string
from dataclasses import dataclass
from typing import Literal, Optional
import logging

from .errors import InvalidRequest

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ("S256", "plain")


@dataclass(frozen=True)
class PKCEChallenge:
    """Stored PKCE challenge, optionally with the verifier that produced it"""
    code_challenge: str
    code_challenge_method: Literal["S256", "plain"]
    code_verifier: Optional[str] = None


class PKCEError(Exception):
    """PKCE-related errors"""
    pass


class PKCEVerifier:
    """
    PKCE verification per RFC 7636

    Requirements:
    - code_verifier: 43-128 characters
    - Allowed characters: A-Z, a-z, 0-9, "-", ".", "_", "~"
    - code_challenge_method: "S256" (recommended) or "plain"
    """

    # Valid characters for code_verifier per RFC 7636
    VALID_CHARS = string.ascii_letters + string.digits + "-._~"
    VALID_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")

    MIN_VERIFIER_LENGTH = 43
    MAX_VERIFIER_LENGTH = 128

    @classmethod
    def store_challenge(cls,
                        code_challenge: Optional[str],
                        code_challenge_method: Optional[str] = None) -> Optional[PKCEChallenge]:
        """
        Validate a challenge presented at the authorization endpoint

        Args:
            code_challenge: Challenge sent by the client, or None
            code_challenge_method: "S256" or "plain" (defaults to "plain" per RFC 7636)

        Returns:
            PKCEChallenge to persist on the grant, or None when PKCE is not used

        Raises:
            InvalidRequest: If the challenge or method is malformed
        """
        if not code_challenge:
            if code_challenge_method:
                raise InvalidRequest("code_challenge_method given without code_challenge")
            return None

        method = code_challenge_method or "plain"
        if method not in SUPPORTED_METHODS:
            raise InvalidRequest(
                "Invalid code_challenge_method. Must be 'S256' or 'plain'"
            )

        if not cls.VALID_PATTERN.match(code_challenge):
            raise InvalidRequest("Malformed code_challenge")

        if method == "plain":
            logger.warning("Client using 'plain' PKCE method - S256 recommended")

        return PKCEChallenge(code_challenge=code_challenge, code_challenge_method=method)

    @classmethod
    def verify(cls,
               code_verifier: Optional[str],
               stored_challenge: Optional[str],
               method: Optional[str]) -> bool:
        """
        Check a verifier presented at the token endpoint

        No stored challenge means PKCE was not requested and the check passes.
        A stored challenge makes the verifier mandatory.

        Args:
            code_verifier: Verifier sent with the token request
            stored_challenge: Challenge recorded on the grant
            method: Method recorded on the grant

        Returns:
            True if verification succeeds, False otherwise
        """
        if not stored_challenge:
            return True

        if not code_verifier:
            logger.warning("PKCE verification failed - verifier missing")
            return False

        try:
            expected_challenge = cls.generate_code_challenge(code_verifier, method or "plain")
        except PKCEError as e:
            logger.warning(f"PKCE verification failed - {e}")
            return False

        # Constant-time comparison to prevent timing attacks
        is_valid = secrets.compare_digest(
            expected_challenge.encode("ascii"),
            stored_challenge.encode("ascii")
        )

        if is_valid:
            logger.debug("PKCE verification successful")
        else:
            logger.warning("PKCE verification failed - challenge mismatch")

        return is_valid

    @classmethod
    def generate_code_verifier(cls, length: int = 128) -> str:
        """
        Generate cryptographically secure code verifier

        Args:
            length: Length of code verifier (43-128 characters)

        Returns:
            Cryptographically random code verifier string

        Raises:
            PKCEError: If length is invalid
        """
        if not (cls.MIN_VERIFIER_LENGTH <= length <= cls.MAX_VERIFIER_LENGTH):
            raise PKCEError(
                f"Code verifier length must be between {cls.MIN_VERIFIER_LENGTH} "
                f"and {cls.MAX_VERIFIER_LENGTH} characters"
            )

        return ''.join(secrets.choice(cls.VALID_CHARS) for _ in range(length))

    @classmethod
    def generate_code_challenge(
        cls,
        code_verifier: str,
        method: str = "S256"
    ) -> str:
        """
        Generate code challenge from code verifier

        Raises:
            PKCEError: If verifier is invalid or method unsupported
        """
        cls._validate_code_verifier(code_verifier)

        if method == "S256":
            digest = hashlib.sha256(code_verifier.encode('ascii')).digest()
            return base64.urlsafe_b64encode(digest).decode('ascii').rstrip('=')

        if method == "plain":
            return code_verifier

        raise PKCEError(f"Unsupported code challenge method: {method}")

    @classmethod
    def create_pkce_challenge(
        cls,
        verifier_length: int = 128,
        method: Literal["S256", "plain"] = "S256"
    ) -> PKCEChallenge:
        """Create complete PKCE challenge with verifier and challenge"""
        code_verifier = cls.generate_code_verifier(verifier_length)
        code_challenge = cls.generate_code_challenge(code_verifier, method)

        return PKCEChallenge(
            code_challenge=code_challenge,
            code_challenge_method=method,
            code_verifier=code_verifier
        )

    @classmethod
    def _validate_code_verifier(cls, code_verifier: str) -> None:
        if not code_verifier:
            raise PKCEError("Code verifier cannot be empty")

        if not (cls.MIN_VERIFIER_LENGTH <= len(code_verifier) <= cls.MAX_VERIFIER_LENGTH):
            raise PKCEError(
                f"Code verifier length must be between {cls.MIN_VERIFIER_LENGTH} "
                f"and {cls.MAX_VERIFIER_LENGTH} characters, got {len(code_verifier)}"
            )

        invalid_chars = set(code_verifier) - set(cls.VALID_CHARS)
        if invalid_chars:
            raise PKCEError(
                f"Code verifier contains invalid characters: {sorted(invalid_chars)}"
            )


def create_pkce_pair() -> PKCEChallenge:
    """Create PKCE challenge pair with secure defaults"""
    return PKCEVerifier.create_pkce_challenge(verifier_length=128, method="S256")
