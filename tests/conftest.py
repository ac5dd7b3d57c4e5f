"""
Test configuration and fixtures for the authorization server tests
"""

import base64
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qs, urlparse

import pytest

from photoauth.auth.authorization_server import AuthorizationServer
from photoauth.auth.client_authenticator import ClientAuthenticator
from photoauth.auth.client_registry import InMemoryClientRegistry, build_client
from photoauth.auth.code_generator import CodeGenerator
from photoauth.auth.grant_engine import AuthorizationRequest, GrantEngine
from photoauth.auth.token_store import InMemoryTokenStore
from photoauth.auth.token_validator import TokenValidator
from photoauth.auth.transactions import InMemoryTransactionStore
from photoauth.security.audit_logger import SecurityAuditLogger

PRINT_REDIRECT = "http://photoprint:3000/callback"
MOBILE_REDIRECT = "https://mobile.photos.test/callback"
FIRSTPARTY_REDIRECT = "https://photos.test/callback"

PRINT_SECRET = "print-secret-value"
FIRSTPARTY_SECRET = "firstparty-secret-value"

OWNERS = {"alice": "wonderland", "bob": "builder"}


class FakeClock:
    """Controllable UTC clock"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def verify_owner(username: str, password: str) -> Optional[str]:
    if OWNERS.get(username) == password:
        return f"owner-{username}"
    return None


def basic_auth(client_id: str, secret: str) -> str:
    return "Basic " + base64.b64encode(f"{client_id}:{secret}".encode()).decode()


def redirect_params(url: str, fragment: bool = False) -> dict:
    parsed = urlparse(url)
    raw = parsed.fragment if fragment else parsed.query
    return {k: v[0] for k, v in parse_qs(raw).items()}


@pytest.fixture(scope="session")
def clients():
    """Client registrations; secrets are hashed once per session"""
    return [
        build_client(
            "print",
            redirect_uris=[PRINT_REDIRECT],
            secret=PRINT_SECRET,
            scopes=["view_gallery"],
            name="Photo Print Service",
        ),
        build_client(
            "mobile",
            redirect_uris=[MOBILE_REDIRECT],
            grant_types=["authorization_code", "refresh_token", "implicit"],
            scopes=["view_gallery", "upload_photos"],
            name="Photos Mobile",
        ),
        build_client(
            "firstparty",
            redirect_uris=[FIRSTPARTY_REDIRECT],
            secret=FIRSTPARTY_SECRET,
            grant_types=["authorization_code", "refresh_token", "password"],
            scopes=["view_gallery", "upload_photos", "manage_albums"],
            trusted=True,
            name="Photos Web",
        ),
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clients):
    return InMemoryClientRegistry(clients)


@pytest.fixture
def code_generator():
    return CodeGenerator()


@pytest.fixture
def token_store(code_generator, clock):
    return InMemoryTokenStore(code_generator, clock=clock)


@pytest.fixture
def transaction_store():
    return InMemoryTransactionStore()


@pytest.fixture
def audit_logger():
    return SecurityAuditLogger()


@pytest.fixture
def engine(registry, token_store, transaction_store, code_generator, audit_logger, clock):
    return GrantEngine(
        registry,
        token_store,
        transaction_store,
        code_generator,
        owner_verifier=verify_owner,
        audit_logger=audit_logger,
        clock=clock,
    )


@pytest.fixture
def validator(token_store, clock):
    return TokenValidator(token_store, clock=clock)


@pytest.fixture
def server(engine, registry, validator, token_store, transaction_store, audit_logger, clock):
    return AuthorizationServer(
        issuer="http://auth.photos.test",
        grant_engine=engine,
        client_authenticator=ClientAuthenticator(registry),
        token_validator=validator,
        token_store=token_store,
        transaction_store=transaction_store,
        audit_logger=audit_logger,
        scopes_supported=["view_gallery", "upload_photos", "manage_albums"],
        clock=clock,
    )


@pytest.fixture
def obtain_code(engine):
    """Run the authorization and consent steps and return the issued code"""

    def _obtain(client_id: str = "print",
                redirect_uri: str = PRINT_REDIRECT,
                scope: str = "view_gallery",
                owner_id: str = "owner-alice",
                state: str = "xyz",
                code_challenge: Optional[str] = None,
                code_challenge_method: Optional[str] = None) -> str:
        result = engine.start_authorization(AuthorizationRequest(
            response_type="code",
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        ))
        assert result.consent_required
        decision = engine.decide(result.transaction.transaction_id, owner_id, True)
        return redirect_params(decision.redirect_url)["code"]

    return _obtain
