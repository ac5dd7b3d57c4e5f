"""
Grant Engine

The protocol state machine behind every grant type:
- Authorization requests (code and implicit) and the consent decision
- Authorization code exchange with redirect and PKCE binding checks
- Refresh token redemption with optional rotation
- Resource owner password credentials for trusted first-party clients

Replay of a consumed code revokes every token issued from its grant chain.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Any, FrozenSet, Iterable, Mapping, Optional, Union
from urllib.parse import urlencode, urlparse, urlunparse

from ..security.audit_logger import SecurityAuditLogger
from .client_registry import Client, ClientRegistry
from .code_generator import CodeGenerator
from .errors import (
    GrantReplay, InvalidGrant, InvalidRedirect, InvalidRequest, InvalidScope,
    OAuth2Error, AccessDenied, UnauthorizedClient, UnsupportedGrantType,
    UnsupportedResponseType,
)
from .models import AuthorizationGrant, TokenResponse, format_scope, parse_scope
from .pkce_verifier import PKCEVerifier
from .token_store import TokenStore, utcnow
from .transactions import AuthorizationTransaction, InMemoryTransactionStore, TransactionState

logger = logging.getLogger(__name__)

# Maps (username, password) to a resource owner id, or None when the credentials are wrong
OwnerCredentialVerifier = Callable[[str, str], Optional[str]]

RESPONSE_TYPE_GRANTS = {
    "code": "authorization_code",
    "token": "implicit",
}


@dataclass
class AuthorizationRequest:
    """Parameters of an authorization endpoint request"""
    response_type: Optional[str]
    client_id: Optional[str]
    redirect_uri: Optional[str]
    scope: Optional[str] = None
    state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "AuthorizationRequest":
        return cls(
            response_type=params.get("response_type"),
            client_id=params.get("client_id"),
            redirect_uri=params.get("redirect_uri"),
            scope=params.get("scope"),
            state=params.get("state"),
            code_challenge=params.get("code_challenge"),
            code_challenge_method=params.get("code_challenge_method"),
        )


@dataclass
class AuthorizationResult:
    """
    Outcome of an authorization step

    Either a redirect back to the client (success or a redirect-borne
    error), or a transaction waiting for the resource owner's consent.
    """
    redirect_url: Optional[str] = None
    transaction: Optional[AuthorizationTransaction] = None
    error: Optional[str] = None

    @property
    def consent_required(self) -> bool:
        return self.redirect_url is None


def build_redirect(redirect_uri: str, params: Dict[str, str], fragment: bool = False) -> str:
    """Append response parameters to a redirect URI, in the query or the fragment"""
    params = {k: v for k, v in params.items() if v is not None}
    encoded = urlencode(params)
    parsed = urlparse(redirect_uri)

    if fragment:
        return urlunparse(parsed._replace(fragment=encoded))

    query = f"{parsed.query}&{encoded}" if parsed.query else encoded
    return urlunparse(parsed._replace(query=query))


class GrantEngine:
    """
    OAuth 2.0 grant state machine

    Features:
    - Exact-match redirect binding from authorization to exchange
    - Single-use codes consumed atomically in the token store
    - Full-chain revocation on code replay
    - Refresh rotation, with replay of a rotated token refused
    """

    def __init__(self,
                 client_registry: ClientRegistry,
                 token_store: TokenStore,
                 transaction_store: InMemoryTransactionStore,
                 code_generator: CodeGenerator,
                 owner_verifier: Optional[OwnerCredentialVerifier] = None,
                 audit_logger: Optional[SecurityAuditLogger] = None,
                 authorization_code_ttl: int = 60,
                 transaction_ttl: int = 600,
                 rotate_refresh_tokens: bool = True,
                 revoke_chain_on_refresh_reuse: bool = False,
                 require_pkce_for_public_clients: bool = False,
                 clock: Callable[[], datetime] = utcnow):
        """
        Args:
            client_registry: Registered clients
            token_store: Grant and token storage
            transaction_store: In-flight authorization requests
            code_generator: Source of codes and identifiers
            owner_verifier: Checks resource owner credentials for the password grant
            audit_logger: Security audit trail
            authorization_code_ttl: Code lifetime in seconds
            transaction_ttl: Seconds the owner has to answer the consent prompt
            rotate_refresh_tokens: Issue a new refresh token on every redemption
            revoke_chain_on_refresh_reuse: Also revoke the chain when a rotated
                refresh token is presented again
            require_pkce_for_public_clients: Refuse code requests from public
                clients that carry no code_challenge
            clock: Returns the current UTC time
        """
        self.client_registry = client_registry
        self.token_store = token_store
        self.transaction_store = transaction_store
        self.code_generator = code_generator
        self.owner_verifier = owner_verifier
        self.audit_logger = audit_logger or SecurityAuditLogger()
        self.authorization_code_ttl = authorization_code_ttl
        self.transaction_ttl = transaction_ttl
        self.rotate_refresh_tokens = rotate_refresh_tokens
        self.revoke_chain_on_refresh_reuse = revoke_chain_on_refresh_reuse
        self.require_pkce_for_public_clients = require_pkce_for_public_clients
        self.clock = clock

    # Authorization endpoint

    def start_authorization(self,
                            request: AuthorizationRequest,
                            owner_id: Optional[str] = None) -> AuthorizationResult:
        """
        Validate an authorization request and open a transaction

        Args:
            request: Authorization endpoint parameters
            owner_id: Logged-in resource owner, if the session layer knows one

        Returns:
            AuthorizationResult awaiting consent, or a redirect

        Raises:
            InvalidClient: If the client is unknown
            InvalidRedirect: If the redirect URI is missing or not registered
        """
        client = self.client_registry.lookup(request.client_id)

        redirect_uri = request.redirect_uri
        if not redirect_uri or not self.client_registry.is_redirect_registered(client.client_id, redirect_uri):
            self.audit_logger.log_invalid_redirect(client.client_id, redirect_uri or "")
            raise InvalidRedirect("redirect_uri is not registered for this client")

        use_fragment = request.response_type == "token"
        try:
            transaction = self._open_transaction(client, request)
        except OAuth2Error as e:
            logger.warning(f"Authorization request from {client.client_id} rejected: {e}")
            return self._error_redirect(request.redirect_uri, e, request.state, use_fragment)

        if client.trusted and owner_id:
            logger.info(f"Auto-approving trusted client {client.client_id}")
            return self.decide(transaction.transaction_id, owner_id, True)

        return AuthorizationResult(transaction=transaction)

    def _open_transaction(self, client: Client, request: AuthorizationRequest) -> AuthorizationTransaction:
        grant_type = RESPONSE_TYPE_GRANTS.get(request.response_type)
        if grant_type is None:
            raise UnsupportedResponseType(f"Unsupported response_type: {request.response_type}")

        if not client.allows_grant(grant_type):
            raise UnauthorizedClient(f"Client is not allowed to use the {grant_type} grant")

        if not request.state:
            raise InvalidRequest("state is required")

        scope = self._resolve_scope(client, request.scope)

        challenge = PKCEVerifier.store_challenge(request.code_challenge, request.code_challenge_method)
        if challenge is not None and grant_type == "implicit":
            raise InvalidRequest("PKCE applies to the authorization code flow only")
        if (challenge is None and grant_type == "authorization_code"
                and client.is_public and self.require_pkce_for_public_clients):
            raise InvalidRequest("code_challenge is required for public clients")

        now = self.clock()
        transaction = AuthorizationTransaction(
            transaction_id=self.code_generator.new_transaction_id(),
            client_id=client.client_id,
            redirect_uri=request.redirect_uri,
            response_type=request.response_type,
            requested_scope=scope,
            state=request.state,
            created_at=now,
            expires_at=now + timedelta(seconds=self.transaction_ttl),
            code_challenge=challenge.code_challenge if challenge else None,
            code_challenge_method=challenge.code_challenge_method if challenge else None,
        )
        self.transaction_store.save(transaction)
        self.transaction_store.transition(transaction, TransactionState.AWAITING_CONSENT)

        logger.info(f"Authorization request from {client.client_id} awaiting consent")
        return transaction

    def decide(self,
               transaction_id: str,
               owner_id: Optional[str],
               approved: bool,
               approved_scope: Union[str, Iterable[str], None] = None) -> AuthorizationResult:
        """
        Apply the resource owner's consent decision

        Args:
            transaction_id: Transaction awaiting consent
            owner_id: Resource owner who answered
            approved: Whether access was granted
            approved_scope: Scope the owner agreed to; defaults to the full request

        Returns:
            Redirect carrying a code, an implicit token or an error

        Raises:
            InvalidRequest: If the transaction is unknown or already decided
            InvalidScope: If the approved scope exceeds the requested scope
        """
        transaction = self.transaction_store.get(transaction_id)
        if transaction is None:
            raise InvalidRequest("Unknown or expired authorization request")

        use_fragment = transaction.response_type == "token"

        if transaction.is_expired(self.clock()):
            self.transaction_store.transition(transaction, TransactionState.EXPIRED)
            return self._error_redirect(
                transaction.redirect_uri,
                InvalidRequest("Authorization request has expired"),
                transaction.state,
                use_fragment,
            )

        if not owner_id:
            raise InvalidRequest("Resource owner is required")

        if not approved:
            self.transaction_store.transition(transaction, TransactionState.DENIED)
            self.audit_logger.log_consent_denied(owner_id, transaction.client_id)
            return self._error_redirect(
                transaction.redirect_uri,
                AccessDenied("The resource owner denied the request"),
                transaction.state,
                use_fragment,
            )

        scope = transaction.requested_scope if approved_scope is None else parse_scope(approved_scope)
        if not scope or not scope <= transaction.requested_scope:
            raise InvalidScope("Approved scope must be a non-empty subset of the requested scope")

        self.transaction_store.transition(transaction, TransactionState.APPROVED)
        transaction.owner_id = owner_id
        transaction.approved_scope = scope

        if use_fragment:
            return self._complete_implicit(transaction)
        return self._complete_code(transaction)

    def _complete_code(self, transaction: AuthorizationTransaction) -> AuthorizationResult:
        now = self.clock()
        grant = AuthorizationGrant(
            code=self.code_generator.new_code(),
            grant_id=self.code_generator.new_grant_id(),
            client_id=transaction.client_id,
            redirect_uri=transaction.redirect_uri,
            resource_owner_id=transaction.owner_id,
            scope=transaction.approved_scope,
            issued_at=now,
            expires_at=now + timedelta(seconds=self.authorization_code_ttl),
            transaction_id=transaction.transaction_id,
            code_challenge=transaction.code_challenge,
            code_challenge_method=transaction.code_challenge_method,
        )
        self.token_store.save_grant(grant)
        self.transaction_store.transition(transaction, TransactionState.CODE_ISSUED)

        self.audit_logger.log_code_issued(grant.resource_owner_id, grant.client_id, format_scope(grant.scope))
        return AuthorizationResult(
            redirect_url=build_redirect(transaction.redirect_uri, {
                "code": grant.code,
                "state": transaction.state,
            }),
            transaction=transaction,
        )

    def _complete_implicit(self, transaction: AuthorizationTransaction) -> AuthorizationResult:
        access_token = self.token_store.issue_access(
            transaction.owner_id,
            transaction.client_id,
            transaction.approved_scope,
            self.code_generator.new_grant_id(),
        )
        self.transaction_store.transition(transaction, TransactionState.EXCHANGED)

        self.audit_logger.log_token_issued(
            transaction.owner_id, transaction.client_id,
            scope=format_scope(access_token.scope), grant_type="implicit"
        )
        # The implicit grant never carries a refresh token
        return AuthorizationResult(
            redirect_url=build_redirect(transaction.redirect_uri, {
                "access_token": access_token.token,
                "token_type": "Bearer",
                "expires_in": str(access_token.expires_in),
                "scope": format_scope(access_token.scope),
                "state": transaction.state,
            }, fragment=True),
            transaction=transaction,
        )

    # Token endpoint

    def exchange_code(self,
                      client: Client,
                      code: Optional[str],
                      redirect_uri: Optional[str],
                      code_verifier: Optional[str] = None) -> TokenResponse:
        """
        Exchange an authorization code for tokens

        The code is consumed only after every binding check passes, so a
        request with the wrong redirect or verifier leaves it redeemable.

        Args:
            client: Authenticated (or identified public) client
            code: Authorization code
            redirect_uri: Redirect URI from the token request
            code_verifier: PKCE verifier

        Returns:
            TokenResponse with an access token and, when allowed, a refresh token

        Raises:
            InvalidGrant: If the code is unknown, expired, mis-bound or replayed
        """
        if not client.allows_grant("authorization_code"):
            raise UnauthorizedClient("Client is not allowed to use the authorization_code grant")
        if not code:
            raise InvalidRequest("Missing code")

        grant = self.token_store.get_grant(code)
        if grant is None:
            raise InvalidGrant("Invalid authorization code")

        try:
            if grant.consumed:
                raise GrantReplay("Authorization code already used", grant_id=grant.grant_id)

            self._check_binding(client, grant, redirect_uri, code_verifier)
            grant = self.token_store.consume_grant(code)
        except GrantReplay as e:
            self._handle_replay("authorization_code", client.client_id, e.grant_id, revoke_chain=True)
            raise

        response = self._issue_tokens(client, grant.resource_owner_id, grant.scope, grant.grant_id)

        transaction = self.transaction_store.get(grant.transaction_id)
        if transaction is not None and transaction.state_tag == TransactionState.CODE_ISSUED:
            self.transaction_store.transition(transaction, TransactionState.EXCHANGED)

        self.audit_logger.log_token_issued(
            grant.resource_owner_id, client.client_id,
            scope=format_scope(grant.scope), grant_type="authorization_code"
        )
        return response

    def _check_binding(self,
                       client: Client,
                       grant: AuthorizationGrant,
                       redirect_uri: Optional[str],
                       code_verifier: Optional[str]) -> None:
        if grant.client_id != client.client_id:
            raise InvalidGrant("Authorization code was issued to another client")

        if grant.is_expired(self.clock()):
            raise InvalidGrant("Authorization code has expired")

        if (redirect_uri != grant.redirect_uri
                or not self.client_registry.is_redirect_registered(client.client_id, redirect_uri)):
            self.audit_logger.log_invalid_redirect(client.client_id, redirect_uri or "")
            raise InvalidGrant("redirect_uri does not match the authorization request")

        if not PKCEVerifier.verify(code_verifier, grant.code_challenge, grant.code_challenge_method):
            self.audit_logger.log_pkce_failure(client.client_id)
            raise InvalidGrant("PKCE verification failed")

    def refresh(self,
                client: Client,
                refresh_token: Optional[str],
                scope: Union[str, Iterable[str], None] = None) -> TokenResponse:
        """
        Redeem a refresh token

        Args:
            client: Authenticated client
            refresh_token: Refresh token handle
            scope: Optional narrower scope for the new access token

        Returns:
            TokenResponse; the refresh token is new when rotation is on

        Raises:
            InvalidGrant: If the token is unknown, revoked, expired, already
                rotated or issued to another client
            InvalidScope: If the requested scope is wider than the token's
        """
        if not client.allows_grant("refresh_token"):
            raise UnauthorizedClient("Client is not allowed to use the refresh_token grant")
        if not refresh_token:
            raise InvalidRequest("Missing refresh_token")

        record = self.token_store.lookup_refresh(refresh_token)
        if record.client_id != client.client_id:
            raise InvalidGrant("Refresh token was issued to another client")

        narrowed = None
        if scope:
            narrowed = parse_scope(scope)
            if not narrowed <= record.scope:
                raise InvalidScope("Requested scope exceeds the scope of the refresh token")

        if self.rotate_refresh_tokens:
            try:
                access_token, new_refresh = self.token_store.rotate_refresh(refresh_token, narrowed)
            except GrantReplay as e:
                self._handle_replay(
                    "refresh_token", client.client_id, e.grant_id,
                    revoke_chain=self.revoke_chain_on_refresh_reuse,
                )
                raise
        else:
            if record.revoked:
                raise InvalidGrant("Refresh token has been revoked")
            if record.is_expired(self.clock()):
                raise InvalidGrant("Refresh token has expired")
            access_token = self.token_store.issue_access(
                record.owner_id, record.client_id,
                narrowed if narrowed is not None else record.scope, record.grant_id
            )
            new_refresh = record

        self.audit_logger.log_token_issued(
            record.owner_id, client.client_id,
            scope=format_scope(access_token.scope), grant_type="refresh_token", refreshed=True
        )
        return TokenResponse(access_token=access_token, refresh_token=new_refresh)

    def password_grant(self,
                       client: Client,
                       username: Optional[str],
                       password: Optional[str],
                       scope: Union[str, Iterable[str], None] = None) -> TokenResponse:
        """
        Resource owner password credentials grant

        Raises:
            UnauthorizedClient: If the client is not trusted or not allowed the grant
            InvalidGrant: If the owner credentials are rejected
        """
        if not (client.trusted and client.allows_grant("password")):
            raise UnauthorizedClient("Password grant is restricted to trusted first-party clients")
        if self.owner_verifier is None:
            raise UnsupportedGrantType("Password grant is not enabled on this server")
        if not username or not password:
            raise InvalidRequest("username and password are required")

        granted = self._resolve_scope(client, scope)

        owner_id = self.owner_verifier(username, password)
        if not owner_id:
            self.audit_logger.log_authentication_failure(
                client_id=client.client_id,
                error_code="invalid_grant",
                error_message="Resource owner credentials rejected",
            )
            raise InvalidGrant("Invalid resource owner credentials")

        # Every password login starts a fresh grant chain
        grant_id = self.code_generator.new_grant_id()
        response = self._issue_tokens(client, owner_id, granted, grant_id)

        self.audit_logger.log_token_issued(
            owner_id, client.client_id, scope=format_scope(granted), grant_type="password"
        )
        return response

    # Helpers

    def _resolve_scope(self, client: Client, requested: Union[str, Iterable[str], None]) -> FrozenSet[str]:
        scope = parse_scope(requested) or client.allowed_scopes
        if not scope:
            raise InvalidScope("No scope requested and the client has no default scope")
        if not scope <= client.allowed_scopes:
            raise InvalidScope(f"Scope not allowed for this client: {format_scope(scope - client.allowed_scopes)}")
        return frozenset(scope)

    def _issue_tokens(self,
                      client: Client,
                      owner_id: str,
                      scope: FrozenSet[str],
                      grant_id: str) -> TokenResponse:
        access_token = self.token_store.issue_access(owner_id, client.client_id, scope, grant_id)
        refresh_token = None
        if client.allows_grant("refresh_token"):
            refresh_token = self.token_store.issue_refresh(owner_id, client.client_id, scope, grant_id)
        return TokenResponse(access_token=access_token, refresh_token=refresh_token)

    def _handle_replay(self, artifact: str, client_id: str, grant_id: str, revoke_chain: bool) -> None:
        revoked = self.token_store.revoke_all_for_grant(grant_id) if revoke_chain else 0
        logger.warning(f"Replay of {artifact} by client {client_id}; revoked {revoked} tokens")
        self.audit_logger.log_replay_detected(artifact, client_id=client_id, revoked_count=revoked)

    @staticmethod
    def _error_redirect(redirect_uri: str,
                        error: OAuth2Error,
                        state: Optional[str],
                        fragment: bool) -> AuthorizationResult:
        params = {"error": error.error, "error_description": error.description or None, "state": state}
        return AuthorizationResult(
            redirect_url=build_redirect(redirect_uri, params, fragment=fragment),
            error=error.error,
        )
