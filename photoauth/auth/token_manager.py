"""
Self-contained Access Token Signing

Encodes access tokens as HS256 JWTs so resource servers can validate them
from their own claims:
- iss/sub/client_id/scope/exp/iat/jti claims
- Unverified claim parsing for the validator's ordered checks
- Signature verification under the configured key
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Any, FrozenSet

import jwt

from .models import format_scope

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
TOKEN_TYPE = "access_token"


class TokenError(Exception):
    """Token-related errors"""
    pass


class JWTTokenSigner:
    """HS256 signer and verifier for self-contained access tokens"""

    def __init__(self, secret_key: str, issuer: str = "photoauth"):
        """
        Args:
            secret_key: Secret key for token signing
            issuer: Token issuer identifier
        """
        if not secret_key or len(secret_key) < 32:
            raise ValueError("JWT signing key must be at least 32 characters")
        self.secret_key = secret_key
        self.issuer = issuer

    def encode(self,
               jti: str,
               owner_id: str,
               client_id: str,
               scope: FrozenSet[str],
               issued_at: datetime,
               expires_at: datetime) -> str:
        """Sign a new access token"""
        payload = {
            "iss": self.issuer,
            "sub": owner_id,
            "client_id": client_id,
            "scope": format_scope(scope),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": jti,
            "token_type": TOKEN_TYPE,
        }
        return jwt.encode(payload, self.secret_key, algorithm=ALGORITHM)

    @staticmethod
    def looks_like_jwt(token: str) -> bool:
        return token.count(".") == 2

    def read_claims(self, token: str) -> Dict[str, Any]:
        """
        Parse claims without checking the signature or expiry

        Raises:
            TokenError: If the token is not a well-formed JWT with the required claims
        """
        try:
            header = jwt.get_unverified_header(token)
            claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
        except jwt.InvalidTokenError as e:
            raise TokenError(f"Malformed token: {e}")

        if header.get("alg") != ALGORITHM:
            raise TokenError(f"Unexpected signing algorithm: {header.get('alg')}")

        missing = [c for c in ("exp", "iat", "iss", "sub", "jti", "client_id") if c not in claims]
        if missing:
            raise TokenError(f"Token missing claims: {missing}")

        return claims

    def verify_signature(self, token: str) -> Dict[str, Any]:
        """
        Verify the signature and issuer; expiry is checked by the caller

        Raises:
            TokenError: If the signature, issuer or token type is wrong
        """
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={"verify_exp": False, "verify_iat": False, "require": ["iss", "jti"]},
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"JWT verification failed: {e}")
            raise TokenError(f"Invalid token: {e}")

        if claims.get("token_type") != TOKEN_TYPE:
            raise TokenError("Invalid token type")

        return claims

    @staticmethod
    def expiry_of(claims: Dict[str, Any]) -> datetime:
        return datetime.fromtimestamp(int(claims["exp"]), timezone.utc)
