"""
OAuth 2.0 Authorization Server

Single entry point for the protocol endpoints:
- Authorization endpoint and consent callback
- Token endpoint (authorization_code, refresh_token, password)
- Bearer validation hook for the resource server
- Token revocation (RFC 7009) and introspection (RFC 7662)
- Authorization server metadata (RFC 8414)

Endpoint methods return status, body and headers; they never let a raw
exception reach the client.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from ..security.audit_logger import SecurityAuditLogger
from ..security.validators import OAuthValidator, ValidationError
from .client_authenticator import ClientAuthenticationError, ClientAuthenticator, ClientContext
from .client_registry import InMemoryClientRegistry
from .code_generator import CodeGenerator
from .errors import (
    InvalidClient, InvalidGrant, InvalidRedirect, InvalidRequest, InvalidToken,
    OAuth2Error, UnsupportedGrantType,
)
from .grant_engine import (
    AuthorizationRequest, AuthorizationResult, GrantEngine, OwnerCredentialVerifier,
)
from .models import Principal, format_scope
from .token_manager import JWTTokenSigner
from .token_store import InMemoryTokenStore, TokenStore, utcnow
from .token_validator import TokenValidator
from .transactions import InMemoryTransactionStore

if TYPE_CHECKING:
    from ..config.server_config import AuthServerConfig

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


@dataclass
class TokenEndpointResponse:
    """Status, JSON body and headers for a token-endpoint style response"""
    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=lambda: dict(NO_STORE_HEADERS))


class AuthorizationServer:
    """
    OAuth 2.0 authorization server facade

    Features:
    - Client authentication via HTTP Basic, form secret or public client_id
    - Redirect-borne errors once the redirect URI is trusted
    - RFC 6749 error bodies with no-store caching headers
    """

    def __init__(self,
                 issuer: str,
                 grant_engine: GrantEngine,
                 client_authenticator: ClientAuthenticator,
                 token_validator: TokenValidator,
                 token_store: TokenStore,
                 transaction_store: InMemoryTransactionStore,
                 audit_logger: Optional[SecurityAuditLogger] = None,
                 scopes_supported: Optional[Iterable[str]] = None,
                 clock: Callable = utcnow):
        """
        Initialize the authorization server

        Args:
            issuer: Authorization server issuer identifier
            grant_engine: Protocol state machine
            client_authenticator: Token endpoint client authentication
            token_validator: Bearer token validation
            token_store: Token storage, used for revocation and introspection
            transaction_store: In-flight authorization requests
            audit_logger: Security audit trail
            scopes_supported: Scopes advertised in the metadata document
            clock: Returns the current UTC time
        """
        self.issuer = issuer.rstrip("/")
        self.grant_engine = grant_engine
        self.client_authenticator = client_authenticator
        self.token_validator = token_validator
        self.token_store = token_store
        self.transaction_store = transaction_store
        self.audit_logger = audit_logger or SecurityAuditLogger()
        self.scopes_supported = sorted(set(scopes_supported or ()))
        self.clock = clock

        logger.info(f"AuthorizationServer initialized for issuer: {self.issuer}")

    # Authorization endpoint

    def authorize(self,
                  params: Mapping[str, Any],
                  owner_id: Optional[str] = None) -> AuthorizationResult:
        """
        Handle an authorization endpoint request

        Args:
            params: Query parameters of the request
            owner_id: Logged-in resource owner, if known

        Returns:
            AuthorizationResult with a redirect or a transaction awaiting consent

        Raises:
            InvalidClient: If the client is unknown; show to the user
            InvalidRedirect: If the redirect URI is not trusted; show to the user
        """
        try:
            OAuthValidator.validate_authorization_request(params)
        except ValidationError as e:
            logger.warning(f"Malformed authorization request: {e}")
            if e.field == "client_id":
                raise InvalidClient(e.message)
            raise InvalidRedirect(e.message)

        return self.grant_engine.start_authorization(AuthorizationRequest.from_params(params), owner_id)

    def decide(self,
               transaction_id: str,
               owner_id: Optional[str],
               approved: bool,
               approved_scope: Union[str, Iterable[str], None] = None) -> AuthorizationResult:
        """Consent callback; see GrantEngine.decide"""
        return self.grant_engine.decide(transaction_id, owner_id, approved, approved_scope)

    # Token endpoint

    def token(self,
              form: Mapping[str, Any],
              authorization_header: Optional[str] = None) -> TokenEndpointResponse:
        """
        Handle a token endpoint request

        Args:
            form: Form-encoded request body
            authorization_header: Raw Authorization header, if any

        Returns:
            TokenEndpointResponse with the token payload or an error body
        """
        try:
            params = self._validate(OAuthValidator.validate_token_request, form)
            context = self._authenticate(authorization_header, form)
            client = context.client
            grant_type = params["grant_type"]

            if grant_type == "authorization_code":
                response = self.grant_engine.exchange_code(
                    client, params["code"], params["redirect_uri"], params["code_verifier"]
                )
            elif grant_type == "refresh_token":
                response = self.grant_engine.refresh(client, params["refresh_token"], params["scope"])
            elif grant_type == "password":
                response = self.grant_engine.password_grant(
                    client, params["username"], params["password"], params["scope"]
                )
            else:
                raise UnsupportedGrantType(f"Grant type '{grant_type}' not supported")

        except OAuth2Error as e:
            logger.info(f"Token request failed: {e}")
            return self._error_response(e, authorization_header)

        logger.info(f"Token issued to client {client.client_id} via {grant_type}")
        return TokenEndpointResponse(status_code=200, body=response.to_dict())

    # Resource server hook

    def validate_bearer(self, authorization_header: Optional[str]) -> Principal:
        """
        Validate the Authorization header of a protected resource request

        Returns:
            Principal for the presented token

        Raises:
            InvalidToken: If the header is missing or malformed, or the token invalid
        """
        try:
            if not authorization_header:
                raise InvalidToken("Missing bearer token")

            scheme, _, credentials = authorization_header.partition(" ")
            if scheme.lower() != "bearer" or not credentials.strip():
                raise InvalidToken("Authorization header must use the Bearer scheme")

            return self.token_validator.validate(credentials.strip())

        except InvalidToken as e:
            self.audit_logger.log_access_denied(reason=e.description)
            raise

    # Revocation and introspection

    def revoke(self,
               form: Mapping[str, Any],
               authorization_header: Optional[str] = None) -> TokenEndpointResponse:
        """
        Revoke an access or refresh token (RFC 7009)

        An authenticated client always receives 200, whether or not the token
        existed; only tokens issued to that client are revoked. Revoking a
        refresh token also revokes the access tokens of its grant chain.
        """
        try:
            context = self._authenticate(authorization_header, form)
            params = self._validate(OAuthValidator.validate_token_reference, form)
            token = params["token"]

            access_token = self.token_store.find_access(token)
            refresh_token = None
            if access_token is None:
                try:
                    refresh_token = self.token_store.lookup_refresh(token)
                except InvalidGrant:
                    refresh_token = None

            if access_token is not None and access_token.client_id == context.client_id:
                self.token_store.revoke(token)
                self.audit_logger.log_token_revoked(context.client_id)
            elif refresh_token is not None and refresh_token.client_id == context.client_id:
                count = self.token_store.revoke_all_for_grant(refresh_token.grant_id)
                self.audit_logger.log_token_revoked(context.client_id, count=count)
            elif access_token is not None or refresh_token is not None:
                logger.warning(f"Client {context.client_id} attempted to revoke another client's token")

        except OAuth2Error as e:
            return self._error_response(e, authorization_header)

        return TokenEndpointResponse(status_code=200, body={})

    def introspect(self,
                   form: Mapping[str, Any],
                   authorization_header: Optional[str] = None) -> TokenEndpointResponse:
        """
        Token introspection (RFC 7662)

        Only confidential clients may introspect. Access tokens are visible
        to any of them (resource servers); refresh tokens only to the client
        they were issued to. Anything invalid is reported as inactive.
        """
        try:
            context = self._authenticate(authorization_header, form)
            if not context.authenticated:
                raise InvalidClient("Introspection requires client authentication")
            params = self._validate(OAuthValidator.validate_token_reference, form)
        except OAuth2Error as e:
            return self._error_response(e, authorization_header)

        token = params["token"]
        body = self._introspect_access(token)
        if body is None:
            body = self._introspect_refresh(token, context)

        return TokenEndpointResponse(status_code=200, body=body or {"active": False})

    def _introspect_access(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            principal = self.token_validator.validate(token)
        except InvalidToken:
            return None

        return {
            "active": True,
            "scope": format_scope(principal.scope),
            "client_id": principal.client_id,
            "sub": principal.owner_id,
            "exp": int(principal.valid_until.timestamp()),
            "token_type": "Bearer",
            "iss": self.issuer,
        }

    def _introspect_refresh(self, token: str, context: ClientContext) -> Optional[Dict[str, Any]]:
        try:
            record = self.token_store.lookup_refresh(token)
        except InvalidGrant:
            return None

        if record.client_id != context.client_id or record.revoked or record.is_expired(self.clock()):
            return None

        return {
            "active": True,
            "scope": format_scope(record.scope),
            "client_id": record.client_id,
            "sub": record.owner_id,
            "exp": int(record.expires_at.timestamp()),
            "iat": int(record.issued_at.timestamp()),
            "token_type": "refresh_token",
            "iss": self.issuer,
        }

    # Metadata

    def metadata(self) -> Dict[str, Any]:
        """
        Get OAuth Authorization Server Metadata (RFC 8414)
        """
        return {
            "issuer": self.issuer,
            "authorization_endpoint": f"{self.issuer}/oauth/authorize",
            "token_endpoint": f"{self.issuer}/oauth/token",
            "revocation_endpoint": f"{self.issuer}/oauth/revoke",
            "introspection_endpoint": f"{self.issuer}/oauth/introspect",
            "response_types_supported": ["code", "token"],
            "response_modes_supported": ["query", "fragment"],
            "grant_types_supported": ["authorization_code", "implicit", "refresh_token", "password"],
            "code_challenge_methods_supported": ["S256", "plain"],
            "token_endpoint_auth_methods_supported": [
                "client_secret_basic",
                "client_secret_post",
                "none",
            ],
            "revocation_endpoint_auth_methods_supported": [
                "client_secret_basic",
                "client_secret_post",
                "none",
            ],
            "introspection_endpoint_auth_methods_supported": [
                "client_secret_basic",
                "client_secret_post",
            ],
            "scopes_supported": self.scopes_supported,
        }

    # Helpers

    def _authenticate(self, authorization_header: Optional[str], form: Mapping[str, Any]) -> ClientContext:
        try:
            return self.client_authenticator.authenticate_request(authorization_header, form)
        except ClientAuthenticationError as e:
            self.audit_logger.log_authentication_failure(
                client_id=form.get("client_id"),
                error_code=e.error,
                error_message=e.description,
                auth_method=e.auth_method,
            )
            raise

    @staticmethod
    def _validate(validator: Callable[[Mapping[str, Any]], Dict[str, Any]],
                  form: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            return validator(form)
        except ValidationError as e:
            if e.error == "unsupported_grant_type":
                raise UnsupportedGrantType(e.message)
            raise InvalidRequest(str(e))

    @staticmethod
    def _error_response(error: OAuth2Error, authorization_header: Optional[str]) -> TokenEndpointResponse:
        headers = dict(NO_STORE_HEADERS)
        used_basic = bool(authorization_header and authorization_header.startswith("Basic "))
        if isinstance(error, InvalidClient) and used_basic:
            headers["WWW-Authenticate"] = 'Basic realm="photoauth"'

        return TokenEndpointResponse(
            status_code=error.status_code,
            body=error.to_dict(),
            headers=headers,
        )


# Convenience function
def build_authorization_server(
    config: "AuthServerConfig",
    owner_verifier: Optional[OwnerCredentialVerifier] = None,
    clock: Callable = utcnow,
    code_generator: Optional[CodeGenerator] = None,
) -> AuthorizationServer:
    """Create an authorization server wired from configuration"""
    tokens = config.tokens
    code_generator = code_generator or CodeGenerator()

    signer = None
    if tokens.access_token_format == "jwt":
        signer = JWTTokenSigner(tokens.signing_key, issuer=tokens.issuer)

    client_registry = InMemoryClientRegistry(c.to_client() for c in config.clients)
    token_store = InMemoryTokenStore(
        code_generator,
        access_token_ttl=tokens.access_token_ttl,
        refresh_token_ttl=tokens.refresh_token_ttl,
        signer=signer,
        clock=clock,
        timeout=config.store.store_timeout,
    )
    transaction_store = InMemoryTransactionStore(timeout=config.store.store_timeout)
    audit_logger = SecurityAuditLogger(enabled=config.logging.audit_logging_enabled)

    grant_engine = GrantEngine(
        client_registry,
        token_store,
        transaction_store,
        code_generator,
        owner_verifier=owner_verifier,
        audit_logger=audit_logger,
        authorization_code_ttl=tokens.authorization_code_ttl,
        transaction_ttl=tokens.transaction_ttl,
        rotate_refresh_tokens=tokens.rotate_refresh_tokens,
        revoke_chain_on_refresh_reuse=tokens.revoke_chain_on_refresh_reuse,
        require_pkce_for_public_clients=tokens.require_pkce_for_public_clients,
        clock=clock,
    )

    scopes: List[str] = [s for c in config.clients for s in c.scopes]

    return AuthorizationServer(
        issuer=tokens.issuer,
        grant_engine=grant_engine,
        client_authenticator=ClientAuthenticator(client_registry),
        token_validator=TokenValidator(token_store, signer=signer, clock=clock),
        token_store=token_store,
        transaction_store=transaction_store,
        audit_logger=audit_logger,
        scopes_supported=scopes,
        clock=clock,
    )
