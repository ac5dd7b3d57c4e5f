"""
Token Endpoint Client Authentication

Supports the client authentication methods of RFC 6749 section 2.3:
- client_secret_basic: HTTP Basic authentication
- client_secret_post: client_id/client_secret form parameters
- none: public clients identify themselves with client_id only
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Literal, Mapping
from urllib.parse import unquote_plus

from .client_registry import Client, ClientRegistry
from .errors import InvalidClient, InvalidRequest

logger = logging.getLogger(__name__)


@dataclass
class ClientContext:
    """Client authentication context"""
    client: Client
    client_type: Literal["confidential", "public"]
    auth_method: str
    authenticated: bool
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def client_id(self) -> str:
        return self.client.client_id


class ClientAuthenticationError(InvalidClient):
    """Client authentication errors"""

    def __init__(self, description: str = "", auth_method: str = ""):
        self.auth_method = auth_method
        super().__init__(description)


class ClientAuthenticator:
    """
    Client authentication handler for the token, revocation and
    introspection endpoints
    """

    def __init__(self, client_registry: ClientRegistry):
        self.client_registry = client_registry

    def authenticate_request(self,
                             authorization_header: Optional[str],
                             form: Mapping[str, Any]) -> ClientContext:
        """
        Authenticate the client making a token endpoint request

        Args:
            authorization_header: Raw Authorization header, if any
            form: Form-encoded request body

        Returns:
            ClientContext with authentication result

        Raises:
            InvalidRequest: If more than one authentication method is used
            ClientAuthenticationError: If authentication fails
        """
        has_basic = bool(authorization_header and authorization_header.startswith("Basic "))
        has_post_secret = bool(form.get("client_secret"))

        if has_basic and has_post_secret:
            raise InvalidRequest("Multiple client authentication methods used")

        if has_basic:
            return self._authenticate_client_secret_basic(authorization_header, form)
        if has_post_secret:
            return self._authenticate_client_secret_post(form)
        return self._authenticate_public_client(form)

    def _authenticate_client_secret_basic(self,
                                          auth_header: str,
                                          form: Mapping[str, Any]) -> ClientContext:
        """Authenticate using HTTP Basic authentication"""
        try:
            encoded_creds = auth_header[6:]  # Remove "Basic "
            decoded_creds = base64.b64decode(encoded_creds, validate=True).decode("utf-8")
            raw_id, raw_secret = decoded_creds.split(":", 1)
        except (ValueError, binascii.Error, UnicodeDecodeError) as e:
            raise ClientAuthenticationError(f"Invalid Basic auth format: {e}", "client_secret_basic")

        # RFC 6749 2.3.1: credentials are form-urlencoded before Basic encoding
        client_id, client_secret = unquote_plus(raw_id), unquote_plus(raw_secret)

        body_client_id = form.get("client_id")
        if body_client_id and body_client_id != client_id:
            raise InvalidRequest("client_id in body does not match Basic credentials")

        client = self._verify_secret(client_id, client_secret, "client_secret_basic")
        return self._context(client, "client_secret_basic")

    def _authenticate_client_secret_post(self, form: Mapping[str, Any]) -> ClientContext:
        """Authenticate using POST parameters"""
        client_id = form.get("client_id")
        if not client_id:
            raise ClientAuthenticationError("Missing client_id", "client_secret_post")

        client = self._verify_secret(client_id, form.get("client_secret"), "client_secret_post")
        return self._context(client, "client_secret_post")

    def _authenticate_public_client(self, form: Mapping[str, Any]) -> ClientContext:
        """Identify a public client; confidential clients must present a secret"""
        client_id = form.get("client_id")
        if not client_id:
            raise ClientAuthenticationError("Client authentication required", "none")

        client = self._lookup(client_id, "none")
        if not client.is_public:
            logger.warning(f"Confidential client {client_id} attempted to authenticate without a secret")
            raise ClientAuthenticationError("Client authentication required", "none")

        return ClientContext(
            client=client,
            client_type="public",
            auth_method="none",
            authenticated=False,
        )

    def _verify_secret(self, client_id: str, client_secret: Optional[str], method: str) -> Client:
        client = self._lookup(client_id, method)

        if client.is_public:
            raise ClientAuthenticationError("Client not configured for secret authentication", method)

        if not self.client_registry.authenticate(client_id, client_secret):
            logger.warning(f"Invalid client credentials for {client_id} via {method}")
            raise ClientAuthenticationError("Invalid client credentials", method)

        logger.info(f"Client authenticated via {method}: {client_id}")
        return client

    def _lookup(self, client_id: str, method: str) -> Client:
        try:
            return self.client_registry.lookup(client_id)
        except InvalidClient:
            raise ClientAuthenticationError("Unknown client", method)

    @staticmethod
    def _context(client: Client, method: str) -> ClientContext:
        return ClientContext(
            client=client,
            client_type="confidential",
            auth_method=method,
            authenticated=True,
            metadata={
                "auth_time": datetime.now(timezone.utc).isoformat()
            }
        )
