"""
Authorization artifacts

Data structures shared by the grant engine, token store and validator.
Scopes are carried as frozensets internally and rendered as the
space-delimited strings OAuth uses on the wire.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Iterable, Optional, Union


def parse_scope(scope: Union[str, Iterable[str], None]) -> FrozenSet[str]:
    """Parse a space-delimited scope string into a set of scope tokens"""
    if not scope:
        return frozenset()
    if isinstance(scope, str):
        return frozenset(s for s in scope.split(" ") if s)
    return frozenset(scope)


def format_scope(scope: Iterable[str]) -> str:
    """Render a scope set in a stable, space-delimited form"""
    return " ".join(sorted(scope))


@dataclass
class AuthorizationGrant:
    """The authorization code artifact"""
    code: str
    grant_id: str
    client_id: str
    redirect_uri: str
    resource_owner_id: str
    scope: FrozenSet[str]
    issued_at: datetime
    expires_at: datetime
    transaction_id: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class AccessToken:
    """
    Issued access token

    `token` is what the client presents: an opaque handle, or a signed JWT
    when `self_contained` is set. `token_id` is the handle or the JWT `jti`.
    """
    token: str
    token_id: str
    owner_id: str
    client_id: str
    scope: FrozenSet[str]
    issued_at: datetime
    expires_at: datetime
    grant_id: str
    self_contained: bool = False
    revoked: bool = False

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class RefreshToken:
    """Issued refresh token; `rotated_from` is an audit back-reference only"""
    handle: str
    owner_id: str
    client_id: str
    scope: FrozenSet[str]
    issued_at: datetime
    expires_at: datetime
    grant_id: str
    rotated_from: Optional[str] = None
    rotated_to: Optional[str] = None
    revoked: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class Principal:
    """Resolved view of a valid bearer token, handed to the resource server"""
    owner_id: str
    client_id: str
    scope: FrozenSet[str]
    valid_until: datetime
    token_id: str = ""

    def has_scope(self, *required: str) -> bool:
        return set(required).issubset(self.scope)


@dataclass
class TokenResponse:
    """Successful token endpoint payload"""
    access_token: AccessToken
    refresh_token: Optional[RefreshToken] = None
    token_type: str = "Bearer"

    def to_dict(self) -> dict:
        body = {
            "access_token": self.access_token.token,
            "token_type": self.token_type,
            "expires_in": self.access_token.expires_in,
            "scope": format_scope(self.access_token.scope),
        }
        if self.refresh_token is not None:
            body["refresh_token"] = self.refresh_token.handle
        return body
