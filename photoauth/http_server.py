"""
FastAPI HTTP Adapter for the Authorization Server

Exposes the authorization server facade over HTTP:
- OAuth endpoints (authorize, consent, token, revoke, introspect)
- Authorization server metadata
- A sample protected route guarded by bearer validation
- Periodic sweep of expired tokens and transactions

The logged-in resource owner is supplied by the session layer in front of
this app through the X-Resource-Owner header.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth.authorization_server import AuthorizationServer, TokenEndpointResponse, build_authorization_server
from .auth.errors import InvalidToken, OAuth2Error, StoreUnavailable
from .auth.grant_engine import AuthorizationResult, OwnerCredentialVerifier
from .auth.models import Principal, format_scope
from .config.server_config import AuthServerConfig, configure_logging, get_server_config

logger = logging.getLogger(__name__)

OWNER_HEADER = "X-Resource-Owner"

# auto_error=False so a missing header is reported as invalid_token, not 403
security = HTTPBearer(auto_error=False)


class PhotoAuthHTTPServer:
    """HTTP server for the photo gallery authorization server"""

    def __init__(self,
                 config: AuthServerConfig,
                 authorization_server: Optional[AuthorizationServer] = None,
                 owner_verifier: Optional[OwnerCredentialVerifier] = None):
        self.config = config
        self.authorization_server = authorization_server or build_authorization_server(
            config, owner_verifier=owner_verifier
        )

        self.app = FastAPI(
            title="PhotoAuth Authorization Server",
            description="OAuth 2.0 authorization server for the picture gallery API",
            version="1.0.0",
            lifespan=self.lifespan
        )

        self._setup_middleware()
        self._setup_exception_handlers()
        self._setup_routes()

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        """Manage application lifecycle"""
        logger.info("Starting authorization server...")

        sweeper = None
        if self.config.store.sweep_interval > 0:
            sweeper = asyncio.create_task(self.sweep_loop(self.config.store.sweep_interval))

        yield

        logger.info("Shutting down authorization server...")
        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper

    async def sweep_loop(self, interval: float) -> None:
        """Periodically drop expired tokens, grants and transactions"""
        while True:
            await asyncio.sleep(interval)
            self.sweep_once()

    def sweep_once(self) -> int:
        server = self.authorization_server
        try:
            removed = server.token_store.sweep_expired()
            removed += server.transaction_store.discard_expired(server.clock())
        except StoreUnavailable as e:
            logger.warning(f"Sweep skipped: {e}")
            return 0

        if removed:
            logger.debug(f"Sweep removed {removed} records")
        return removed

    def _setup_middleware(self):
        """Setup FastAPI middleware"""
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.server.cors_origins,
            allow_credentials=False,
            allow_methods=["GET", "POST"],
            allow_headers=["Authorization", "Content-Type"],
        )

    def _setup_exception_handlers(self):
        @self.app.exception_handler(OAuth2Error)
        async def oauth_error_handler(request: Request, exc: OAuth2Error):
            headers = {"Cache-Control": "no-store"}
            if isinstance(exc, InvalidToken):
                headers["WWW-Authenticate"] = 'Bearer error="invalid_token"'
            return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    async def require_principal(self,
                                credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Principal:
        """FastAPI dependency resolving the bearer token to a Principal"""
        header = f"{credentials.scheme} {credentials.credentials}" if credentials else None
        try:
            return self.authorization_server.validate_bearer(header)
        except InvalidToken as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=e.description,
                headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
            )

    def _setup_routes(self):
        """Setup FastAPI routes"""
        server = self.authorization_server

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint"""
            return {"status": "healthy", "timestamp": datetime.now(timezone.utc)}

        @self.app.get("/.well-known/oauth-authorization-server")
        async def authorization_server_metadata():
            return server.metadata()

        @self.app.get("/oauth/authorize")
        async def authorize(request: Request):
            """Authorization endpoint"""
            owner_id = request.headers.get(OWNER_HEADER)
            result = server.authorize(dict(request.query_params), owner_id=owner_id)
            return self._authorization_response(result)

        @self.app.post("/oauth/consent")
        async def consent(request: Request):
            """Consent callback from the consent UI"""
            form = await request.form()
            owner_id = request.headers.get(OWNER_HEADER)
            approved = str(form.get("approved", "")).lower() in ("1", "true", "yes", "on")
            result = server.decide(
                str(form.get("transaction_id", "")),
                owner_id,
                approved,
                form.get("scope") or None,
            )
            return self._authorization_response(result)

        @self.app.post("/oauth/token")
        async def token(request: Request):
            """Token endpoint"""
            form = await request.form()
            return self._endpoint_response(
                server.token(form, request.headers.get("Authorization"))
            )

        @self.app.post("/oauth/revoke")
        async def revoke(request: Request):
            """Token revocation endpoint (RFC 7009)"""
            form = await request.form()
            return self._endpoint_response(
                server.revoke(form, request.headers.get("Authorization"))
            )

        @self.app.post("/oauth/introspect")
        async def introspect(request: Request):
            """Token introspection endpoint (RFC 7662)"""
            form = await request.form()
            return self._endpoint_response(
                server.introspect(form, request.headers.get("Authorization"))
            )

        @self.app.get("/api/me")
        async def me(principal: Principal = Depends(self.require_principal)):
            """Sample protected resource"""
            return {
                "owner_id": principal.owner_id,
                "client_id": principal.client_id,
                "scope": format_scope(principal.scope),
                "valid_until": principal.valid_until,
            }

    @staticmethod
    def _authorization_response(result: AuthorizationResult):
        if result.consent_required:
            transaction = result.transaction
            body: Dict[str, Any] = {
                "consent_required": True,
                "transaction_id": transaction.transaction_id,
                "client_id": transaction.client_id,
                "scope": format_scope(transaction.requested_scope),
            }
            return JSONResponse(status_code=200, content=body, headers={"Cache-Control": "no-store"})
        return RedirectResponse(result.redirect_url, status_code=status.HTTP_302_FOUND)

    @staticmethod
    def _endpoint_response(response: TokenEndpointResponse) -> JSONResponse:
        return JSONResponse(
            status_code=response.status_code,
            content=response.body,
            headers=response.headers,
        )

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """Run the HTTP server"""
        uvicorn.run(
            self.app,
            host=host or self.config.server.host,
            port=port or self.config.server.port,
            log_config=None,
        )


def create_app(config: Optional[AuthServerConfig] = None,
               owner_verifier: Optional[OwnerCredentialVerifier] = None) -> FastAPI:
    """Create the FastAPI application from configuration"""
    config = config or get_server_config()
    configure_logging(config.logging)
    return PhotoAuthHTTPServer(config, owner_verifier=owner_verifier).app
