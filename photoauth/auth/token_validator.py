"""
Bearer Token Validation

Turns a presented access token into a Principal for the resource server.
Checks run in a fixed order:
1. the token is well-formed
2. it has not expired
3. it has not been revoked (store record, or deny-list for JWTs)
4. for self-contained tokens, the signature verifies under the expected key
"""

import logging
import re
from datetime import datetime
from typing import Callable, Optional

from .errors import InvalidToken
from .models import Principal, parse_scope
from .token_manager import JWTTokenSigner, TokenError
from .token_store import TokenStore, utcnow

logger = logging.getLogger(__name__)

HANDLE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{22,512}$")


class TokenValidator:
    """Validates handle-based and self-contained access tokens"""

    def __init__(self,
                 token_store: TokenStore,
                 signer: Optional[JWTTokenSigner] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.token_store = token_store
        self.signer = signer
        self.clock = clock

    def validate(self, presented: Optional[str]) -> Principal:
        """
        Validate a presented bearer token

        Args:
            presented: Token string from the Authorization header

        Returns:
            Principal with the resolved owner, client and scope

        Raises:
            InvalidToken: If any check fails
        """
        if not presented:
            raise InvalidToken("Missing token")

        if self.signer is not None and self.signer.looks_like_jwt(presented):
            principal = self._validate_self_contained(presented)
        else:
            principal = self._validate_handle(presented)

        logger.debug(f"Token validation successful for client {principal.client_id}")
        return principal

    def _validate_handle(self, handle: str) -> Principal:
        if not HANDLE_PATTERN.match(handle):
            raise InvalidToken("Malformed token")

        # lookup_access checks expiry before the revocation flag
        access_token = self.token_store.lookup_access(handle)

        return Principal(
            owner_id=access_token.owner_id,
            client_id=access_token.client_id,
            scope=access_token.scope,
            valid_until=access_token.expires_at,
            token_id=access_token.token_id,
        )

    def _validate_self_contained(self, token: str) -> Principal:
        try:
            claims = self.signer.read_claims(token)
        except TokenError as e:
            raise InvalidToken(str(e))

        valid_until = self.signer.expiry_of(claims)
        if self.clock() >= valid_until:
            raise InvalidToken("Token has expired")

        if self.token_store.is_denied(claims["jti"]):
            raise InvalidToken("Token has been revoked")

        try:
            self.signer.verify_signature(token)
        except TokenError as e:
            raise InvalidToken(str(e))

        return Principal(
            owner_id=claims["sub"],
            client_id=claims["client_id"],
            scope=parse_scope(claims.get("scope")),
            valid_until=valid_until,
            token_id=claims["jti"],
        )
