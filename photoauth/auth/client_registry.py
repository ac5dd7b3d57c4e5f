"""
OAuth Client Registry

Holds the known OAuth clients:
- Exact-match redirect URI registration (no prefix or partial matching)
- Salted PBKDF2 secret hashes with constant-time verification
- Allowed grant types, allowed scopes and trust level per client
- Administrative registration and update
"""

import base64
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, Optional
from urllib.parse import urlparse

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import InvalidClient

logger = logging.getLogger(__name__)

SUPPORTED_GRANT_TYPES = frozenset({
    "authorization_code",
    "implicit",
    "password",
    "refresh_token",
})

HASH_SCHEME = "pbkdf2_sha256"
HASH_ITERATIONS = 260000


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _unb64(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )


def hash_client_secret(secret: str, iterations: int = HASH_ITERATIONS) -> str:
    """
    Hash a client secret for storage

    Returns:
        String of the form pbkdf2_sha256$<iterations>$<salt>$<hash>
    """
    salt = secrets.token_bytes(16)
    derived = _kdf(salt, iterations).derive(secret.encode("utf-8"))
    return f"{HASH_SCHEME}${iterations}${_b64(salt)}${_b64(derived)}"


def verify_client_secret(secret: str, secret_hash: str) -> bool:
    """Constant-time check of a presented secret against a stored hash"""
    try:
        scheme, iterations, salt, expected = secret_hash.split("$")
        if scheme != HASH_SCHEME:
            logger.error(f"Unsupported secret hash scheme: {scheme}")
            return False
        _kdf(_unb64(salt), int(iterations)).verify(secret.encode("utf-8"), _unb64(expected))
        return True
    except InvalidKey:
        return False
    except ValueError as e:
        logger.error(f"Malformed client secret hash: {e}")
        return False


@dataclass(frozen=True)
class Client:
    """Registered OAuth client"""
    client_id: str
    registered_redirect_uris: FrozenSet[str]
    allowed_grant_types: FrozenSet[str] = frozenset({"authorization_code", "refresh_token"})
    allowed_scopes: FrozenSet[str] = frozenset()
    secret_hash: Optional[str] = None
    trusted: bool = False
    name: str = ""

    @property
    def is_public(self) -> bool:
        return self.secret_hash is None

    @property
    def client_type(self) -> str:
        return "public" if self.is_public else "confidential"

    def allows_grant(self, grant_type: str) -> bool:
        return grant_type in self.allowed_grant_types


class ClientRegistrationError(Exception):
    """Administrative registration errors"""
    def __init__(self, error: str, description: str = ""):
        self.error = error
        self.description = description
        super().__init__(f"{error}: {description}")


class ClientRegistry(ABC):
    """Read interface the grant engine depends on"""

    @abstractmethod
    def lookup(self, client_id: str) -> Client:
        """Return the client or raise InvalidClient"""

    @abstractmethod
    def authenticate(self, client_id: str, secret: str) -> bool:
        """Check a client secret"""

    def is_redirect_registered(self, client_id: str, uri: str) -> bool:
        """Exact-match check of a redirect URI against the registration"""
        try:
            client = self.lookup(client_id)
        except InvalidClient:
            return False
        return uri in client.registered_redirect_uris


class InMemoryClientRegistry(ClientRegistry):
    """
    Dict-backed client registry

    Features:
    - O(1) lookup by client_id
    - Registration-time validation of redirect URIs and grant types
    - Immutable Client records, replaced wholesale on update
    """

    def __init__(self, clients: Optional[Iterable[Client]] = None):
        self._clients: Dict[str, Client] = {}
        for client in clients or []:
            self.register(client)

        logger.info(f"InMemoryClientRegistry initialized with {len(self._clients)} clients")

    def lookup(self, client_id: str) -> Client:
        client = self._clients.get(client_id) if client_id else None
        if client is None:
            raise InvalidClient("Unknown client identifier")
        return client

    def authenticate(self, client_id: str, secret: str) -> bool:
        """
        Authenticate a confidential client

        Args:
            client_id: Client identifier
            secret: Presented client secret

        Returns:
            True if the client exists, is confidential and the secret matches
        """
        client = self._clients.get(client_id)
        if client is None or client.secret_hash is None or secret is None:
            return False
        return verify_client_secret(secret, client.secret_hash)

    def register(self, client: Client) -> Client:
        """
        Register a client (administrative)

        Raises:
            ClientRegistrationError: If the registration is invalid or a duplicate
        """
        if client.client_id in self._clients:
            raise ClientRegistrationError("invalid_client_metadata", f"Duplicate client: {client.client_id}")

        self._validate(client)
        self._clients[client.client_id] = client

        logger.info(f"Client registered: {client.client_id} ({client.client_type})")
        return client

    def update(self, client_id: str, **changes) -> Client:
        """
        Replace fields of an existing registration (administrative)

        Raises:
            InvalidClient: If the client is unknown
            ClientRegistrationError: If the updated registration is invalid
        """
        current = self.lookup(client_id)
        if "client_id" in changes and changes["client_id"] != client_id:
            raise ClientRegistrationError("invalid_client_metadata", "client_id is immutable")

        updated = replace(current, **changes)
        self._validate(updated)
        self._clients[client_id] = updated

        logger.info(f"Client updated: {client_id}")
        return updated

    def _validate(self, client: Client) -> None:
        if not client.client_id:
            raise ClientRegistrationError("invalid_client_metadata", "client_id is required")

        unknown_grants = set(client.allowed_grant_types) - SUPPORTED_GRANT_TYPES
        if unknown_grants:
            raise ClientRegistrationError(
                "invalid_client_metadata",
                f"Unsupported grant types: {sorted(unknown_grants)}"
            )

        redirect_grants = {"authorization_code", "implicit"}
        if redirect_grants & set(client.allowed_grant_types) and not client.registered_redirect_uris:
            raise ClientRegistrationError("invalid_redirect_uri", "redirect_uris is required")

        for uri in client.registered_redirect_uris:
            parsed = urlparse(uri)
            if not parsed.scheme or not parsed.netloc:
                raise ClientRegistrationError("invalid_redirect_uri", f"Invalid URI: {uri}")
            if parsed.fragment:
                raise ClientRegistrationError("invalid_redirect_uri", f"Redirect URI must not contain a fragment: {uri}")


def build_client(client_id: str,
                 redirect_uris: Iterable[str] = (),
                 secret: Optional[str] = None,
                 grant_types: Iterable[str] = ("authorization_code", "refresh_token"),
                 scopes: Iterable[str] = (),
                 trusted: bool = False,
                 name: str = "") -> Client:
    """Convenience constructor that hashes a plaintext secret"""
    return Client(
        client_id=client_id,
        registered_redirect_uris=frozenset(redirect_uris),
        allowed_grant_types=frozenset(grant_types),
        allowed_scopes=frozenset(scopes),
        secret_hash=hash_client_secret(secret) if secret else None,
        trusted=trusted,
        name=name or client_id,
    )
