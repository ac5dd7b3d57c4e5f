"""
Authorization Server Configuration

Configuration for the photo gallery authorization server: token lifetimes,
store behaviour, the HTTP listener, logging and the statically registered
OAuth clients.
"""

import json
import logging
import os
import sys
from typing import Optional, List, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..auth.client_registry import Client, build_client

logger = logging.getLogger(__name__)

ENV_PREFIX = "PHOTOAUTH_"


class ClientConfig(BaseModel):
    """Statically registered OAuth client"""
    client_id: str = Field(description="OAuth client ID")
    redirect_uris: List[str] = Field(default_factory=list, description="Exact redirect URIs")
    client_secret: Optional[str] = Field(default=None, description="Client secret; hashed at load, None for public clients")
    grant_types: List[str] = Field(
        default=["authorization_code", "refresh_token"],
        description="Allowed grant types"
    )
    scopes: List[str] = Field(default_factory=list, description="Allowed scopes")
    trusted: bool = Field(default=False, description="First-party client: auto-approve and password grant")
    name: str = Field(default="", description="Display name")

    def to_client(self) -> Client:
        return build_client(
            client_id=self.client_id,
            redirect_uris=self.redirect_uris,
            secret=self.client_secret,
            grant_types=self.grant_types,
            scopes=self.scopes,
            trusted=self.trusted,
            name=self.name,
        )


class TokenConfig(BaseModel):
    """Artifact lifetimes and token issuance policy"""
    access_token_ttl: int = Field(default=3600, description="Access token lifetime in seconds")
    refresh_token_ttl: int = Field(default=1209600, description="Refresh token lifetime in seconds")
    authorization_code_ttl: int = Field(default=60, description="Authorization code lifetime in seconds")
    transaction_ttl: int = Field(default=600, description="Seconds allowed for the consent step")

    rotate_refresh_tokens: bool = Field(default=True, description="Issue a new refresh token on each redemption")
    revoke_chain_on_refresh_reuse: bool = Field(
        default=False,
        description="Revoke the whole grant chain when a rotated refresh token is reused"
    )
    require_pkce_for_public_clients: bool = Field(default=False, description="Reject public code requests without PKCE")

    access_token_format: Literal["opaque", "jwt"] = Field(default="opaque", description="Handle or self-contained JWT")
    signing_key: Optional[str] = Field(default=None, description="HS256 key for self-contained tokens")
    issuer: str = Field(default="http://localhost:8000", description="Issuer identifier and endpoint base URL")

    @field_validator("access_token_ttl", "refresh_token_ttl", "authorization_code_ttl", "transaction_ttl")
    @classmethod
    def positive_ttl(cls, v):
        if v <= 0:
            raise ValueError("lifetimes must be positive")
        return v

    @model_validator(mode="after")
    def signing_key_for_jwt(self):
        if self.access_token_format == "jwt" and (not self.signing_key or len(self.signing_key) < 32):
            raise ValueError("access_token_format 'jwt' requires a signing_key of at least 32 characters")
        return self


class StoreConfig(BaseModel):
    """Token store configuration"""
    store_timeout: float = Field(default=2.0, description="Seconds to wait for the store lock")
    sweep_interval: int = Field(default=300, description="Seconds between expired-record sweeps (0 disables)")


class ServerConfig(BaseModel):
    """HTTP server configuration"""
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    workers: int = Field(default=1, description="Number of worker processes")
    cors_origins: List[str] = Field(default=["*"], description="CORS allowed origins")


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json/text)")
    audit_logging_enabled: bool = Field(default=True, description="Enable security audit logging")

    @field_validator("level")
    @classmethod
    def known_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


class AuthServerConfig(BaseModel):
    """
    Complete authorization server configuration

    Loaded once at startup; the registry, stores and engine are built from it.
    """

    environment: str = Field(default="production", description="Environment (development/production)")

    tokens: TokenConfig = Field(default_factory=TokenConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    clients: List[ClientConfig] = Field(default_factory=list, description="Clients to register at startup")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    return _env(name, str(default)).lower() in ("1", "true", "yes")


def get_server_config() -> AuthServerConfig:
    """
    Load authorization server configuration from environment variables

    Environment Variables:
        PHOTOAUTH_ENVIRONMENT: Environment (development/production)
        PHOTOAUTH_ISSUER: Issuer identifier / public base URL
        PHOTOAUTH_ACCESS_TOKEN_TTL: Access token lifetime in seconds
        PHOTOAUTH_REFRESH_TOKEN_TTL: Refresh token lifetime in seconds
        PHOTOAUTH_CODE_TTL: Authorization code lifetime in seconds
        PHOTOAUTH_ROTATE_REFRESH_TOKENS: Enable refresh rotation
        PHOTOAUTH_TOKEN_FORMAT: opaque or jwt
        PHOTOAUTH_SIGNING_KEY: HS256 key for jwt access tokens
        PHOTOAUTH_CLIENTS: JSON list of client registrations
        PHOTOAUTH_HOST / PHOTOAUTH_PORT: Listener address
        PHOTOAUTH_LOG_LEVEL / PHOTOAUTH_LOG_FORMAT: Logging

    Returns:
        AuthServerConfig instance with loaded configuration

    Raises:
        ValueError: If PHOTOAUTH_CLIENTS is not a valid list of client registrations
    """
    environment = _env("ENVIRONMENT", "production")

    clients = []
    clients_json = _env("CLIENTS")
    if clients_json:
        try:
            clients = [ClientConfig(**c) for c in json.loads(clients_json)]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.error(f"Invalid PHOTOAUTH_CLIENTS: {e}")
            raise ValueError(f"Invalid PHOTOAUTH_CLIENTS: {e}") from e

    config = AuthServerConfig(
        environment=environment,
        tokens=TokenConfig(
            access_token_ttl=int(_env("ACCESS_TOKEN_TTL", "3600")),
            refresh_token_ttl=int(_env("REFRESH_TOKEN_TTL", "1209600")),
            authorization_code_ttl=int(_env("CODE_TTL", "60")),
            transaction_ttl=int(_env("TRANSACTION_TTL", "600")),
            rotate_refresh_tokens=_env_bool("ROTATE_REFRESH_TOKENS", True),
            revoke_chain_on_refresh_reuse=_env_bool("REVOKE_CHAIN_ON_REFRESH_REUSE", False),
            require_pkce_for_public_clients=_env_bool("REQUIRE_PKCE", environment == "production"),
            access_token_format=_env("TOKEN_FORMAT", "opaque"),
            signing_key=_env("SIGNING_KEY"),
            issuer=_env("ISSUER", "http://localhost:8000"),
        ),
        store=StoreConfig(
            store_timeout=float(_env("STORE_TIMEOUT", "2.0")),
            sweep_interval=int(_env("SWEEP_INTERVAL", "300")),
        ),
        server=ServerConfig(
            host=_env("HOST", "0.0.0.0"),
            port=int(_env("PORT", "8000")),
            cors_origins=_env("CORS_ORIGINS", "*").split(","),
        ),
        logging=LoggingConfig(
            level=_env("LOG_LEVEL", "INFO"),
            format=_env("LOG_FORMAT", "json"),
            audit_logging_enabled=_env_bool("AUDIT_LOGGING", True),
        ),
        clients=clients,
    )

    logger.info(
        f"Authorization server configuration loaded: env={environment}, "
        f"clients={len(config.clients)}, token_format={config.tokens.access_token_format}"
    )
    return config


def get_development_config() -> AuthServerConfig:
    """Get development-friendly configuration with the sample print client"""
    return AuthServerConfig(
        environment="development",
        tokens=TokenConfig(issuer="http://localhost:8000"),
        server=ServerConfig(host="127.0.0.1", port=8000),
        logging=LoggingConfig(level="DEBUG", format="text"),
        clients=[
            ClientConfig(
                client_id="print",
                client_secret="print-dev-secret",
                redirect_uris=["http://photoprint:3000/callback"],
                scopes=["view_gallery"],
                name="Photo Print Service",
            ),
        ],
    )


class JSONLogFormatter(logging.Formatter):
    """One JSON object per log record"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(config: LoggingConfig) -> None:
    """Configure root logging at startup"""
    handler = logging.StreamHandler(sys.stderr)
    if config.format == "json":
        handler.setFormatter(JSONLogFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(config.level)

    # Audit entries are already JSON lines
    audit = logging.getLogger("security_audit")
    audit.disabled = not config.audit_logging_enabled
