"""
Token Store

Persists authorization grants, access tokens and refresh tokens:
- O(1) lookup by code, handle or JWT id
- Atomic consume of authorization codes and rotation of refresh tokens
- Chain index so every token derived from a grant can be revoked together;
  a revoked chain refuses any later issuance
- Deny-list for self-contained (JWT) access tokens
- Lazy reaping at lookup time plus an explicit sweep

The in-memory implementation serializes writers on one lock. Lock
acquisition is bounded; a timeout surfaces as StoreUnavailable and the
caller must not retry a redemption blindly.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, FrozenSet, Optional, Set, Tuple

from .code_generator import CodeGenerator
from .errors import GrantReplay, InvalidGrant, InvalidToken, StoreUnavailable
from .models import AccessToken, AuthorizationGrant, RefreshToken
from .token_manager import JWTTokenSigner, TokenError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenStore(ABC):
    """Storage interface the grant engine and validator depend on"""

    signer: Optional[JWTTokenSigner] = None

    @abstractmethod
    def save_grant(self, grant: AuthorizationGrant) -> None:
        """Persist a freshly issued authorization code"""

    @abstractmethod
    def get_grant(self, code: str) -> Optional[AuthorizationGrant]:
        """Return the grant for a code, consumed or not"""

    @abstractmethod
    def consume_grant(self, code: str) -> AuthorizationGrant:
        """Atomically mark a grant consumed; raises GrantReplay if it already was"""

    @abstractmethod
    def issue_access(self, owner_id: str, client_id: str,
                     scope: FrozenSet[str], grant_id: str) -> AccessToken:
        """Mint and record an access token"""

    @abstractmethod
    def issue_refresh(self, owner_id: str, client_id: str, scope: FrozenSet[str],
                      grant_id: str, rotated_from: Optional[str] = None) -> RefreshToken:
        """Mint and record a refresh token"""

    @abstractmethod
    def lookup_access(self, token_id: str) -> AccessToken:
        """Return a live access token or raise InvalidToken"""

    @abstractmethod
    def lookup_refresh(self, handle: str) -> RefreshToken:
        """Return a refresh token record or raise InvalidGrant"""

    @abstractmethod
    def rotate_refresh(self, old_handle: str,
                       scope: Optional[FrozenSet[str]] = None) -> Tuple[AccessToken, RefreshToken]:
        """Atomically retire a refresh token and issue its successor"""

    @abstractmethod
    def find_access(self, token: str) -> Optional[AccessToken]:
        """Resolve a presented access token value to its record, without validity checks"""

    @abstractmethod
    def revoke(self, handle: str) -> bool:
        """Revoke an access token (handle or JWT) or a refresh token"""

    @abstractmethod
    def revoke_all_for_grant(self, grant_id: str) -> int:
        """Revoke every token carrying the grant chain id"""

    @abstractmethod
    def is_denied(self, jti: str) -> bool:
        """Whether a self-contained token id is on the deny-list"""

    @abstractmethod
    def sweep_expired(self) -> int:
        """Drop expired records; returns the number removed"""


class InMemoryTokenStore(TokenStore):
    """
    Thread-safe in-memory token store

    Revocation is visible to the next lookup as soon as revoke() returns.
    """

    def __init__(self,
                 code_generator: CodeGenerator,
                 access_token_ttl: int = 3600,
                 refresh_token_ttl: int = 1209600,
                 signer: Optional[JWTTokenSigner] = None,
                 clock: Callable[[], datetime] = utcnow,
                 timeout: float = 2.0,
                 consumed_grant_retention: Optional[int] = None):
        """
        Args:
            code_generator: Source of token handles
            access_token_ttl: Access token lifetime in seconds
            refresh_token_ttl: Refresh token lifetime in seconds
            signer: When set, access tokens are issued as signed JWTs
            clock: Returns the current UTC time
            timeout: Seconds to wait for the store lock
            consumed_grant_retention: Seconds to keep consumed codes for replay
                detection (defaults to the refresh token lifetime)
        """
        self.code_generator = code_generator
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.signer = signer
        self.clock = clock
        self.timeout = timeout
        self.consumed_grant_retention = (
            consumed_grant_retention if consumed_grant_retention is not None else refresh_token_ttl
        )

        self._lock = threading.RLock()
        self._grants: Dict[str, AuthorizationGrant] = {}
        self._access: Dict[str, AccessToken] = {}
        self._refresh: Dict[str, RefreshToken] = {}
        self._access_by_grant: Dict[str, Set[str]] = {}
        self._refresh_by_grant: Dict[str, Set[str]] = {}
        self._deny_list: Dict[str, datetime] = {}
        # grant_id -> time after which the revoked chain is forgotten
        self._revoked_grants: Dict[str, datetime] = {}

        logger.info(
            f"InMemoryTokenStore initialized: access_ttl={access_token_ttl}s, "
            f"refresh_ttl={refresh_token_ttl}s, self_contained={signer is not None}"
        )

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=self.timeout):
            logger.error(f"Token store lock not acquired within {self.timeout}s")
            raise StoreUnavailable("Token store did not respond in time")
        try:
            yield
        finally:
            self._lock.release()

    # Authorization grants

    def save_grant(self, grant: AuthorizationGrant) -> None:
        with self._locked():
            self._grants[grant.code] = grant

    def get_grant(self, code: str) -> Optional[AuthorizationGrant]:
        return self._grants.get(code) if code else None

    def consume_grant(self, code: str) -> AuthorizationGrant:
        with self._locked():
            grant = self._grants.get(code)
            if grant is None:
                raise InvalidGrant("Invalid authorization code")

            if grant.consumed:
                raise GrantReplay("Authorization code already used", grant_id=grant.grant_id)

            if grant.is_expired(self.clock()):
                del self._grants[code]
                raise InvalidGrant("Authorization code has expired")

            grant.consumed = True
            return grant

    # Issuance

    def issue_access(self, owner_id: str, client_id: str,
                     scope: FrozenSet[str], grant_id: str) -> AccessToken:
        token_id = self.code_generator.new_token_handle()
        issued_at = self.clock()
        expires_at = issued_at + timedelta(seconds=self.access_token_ttl)

        if self.signer is not None:
            token = self.signer.encode(
                jti=token_id,
                owner_id=owner_id,
                client_id=client_id,
                scope=scope,
                issued_at=issued_at,
                expires_at=expires_at,
            )
        else:
            token = token_id

        access_token = AccessToken(
            token=token,
            token_id=token_id,
            owner_id=owner_id,
            client_id=client_id,
            scope=frozenset(scope),
            issued_at=issued_at,
            expires_at=expires_at,
            grant_id=grant_id,
            self_contained=self.signer is not None,
        )

        with self._locked():
            self._ensure_chain_live(grant_id)
            self._access[token_id] = access_token
            self._access_by_grant.setdefault(grant_id, set()).add(token_id)

        logger.info(f"Issued access token for client {client_id}")
        return access_token

    def issue_refresh(self, owner_id: str, client_id: str, scope: FrozenSet[str],
                      grant_id: str, rotated_from: Optional[str] = None) -> RefreshToken:
        with self._locked():
            return self._issue_refresh_locked(owner_id, client_id, scope, grant_id, rotated_from)

    def _issue_refresh_locked(self, owner_id, client_id, scope, grant_id, rotated_from) -> RefreshToken:
        self._ensure_chain_live(grant_id)
        issued_at = self.clock()
        refresh_token = RefreshToken(
            handle=self.code_generator.new_token_handle(),
            owner_id=owner_id,
            client_id=client_id,
            scope=frozenset(scope),
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=self.refresh_token_ttl),
            grant_id=grant_id,
            rotated_from=rotated_from,
        )
        self._refresh[refresh_token.handle] = refresh_token
        self._refresh_by_grant.setdefault(grant_id, set()).add(refresh_token.handle)

        logger.info(f"Issued refresh token for client {client_id}")
        return refresh_token

    # Lookup

    def lookup_access(self, token_id: str) -> AccessToken:
        access_token = self._access.get(token_id) if token_id else None
        if access_token is None:
            raise InvalidToken("Token not found")

        if access_token.is_expired(self.clock()):
            with self._locked():
                self._reap_access(token_id)
            raise InvalidToken("Token has expired")

        if access_token.revoked:
            raise InvalidToken("Token has been revoked")

        return access_token

    def lookup_refresh(self, handle: str) -> RefreshToken:
        refresh_token = self._refresh.get(handle) if handle else None
        if refresh_token is None:
            raise InvalidGrant("Invalid refresh token")
        return refresh_token

    def find_access(self, token: str) -> Optional[AccessToken]:
        if not token:
            return None

        if self.signer is not None and self.signer.looks_like_jwt(token):
            try:
                jti = self.signer.read_claims(token)["jti"]
            except TokenError:
                return None
            record = self._access.get(jti)
            # The record must match the exact JWT; a forged token reusing a jti does not
            if record is None or record.token != token:
                return None
            return record

        return self._access.get(token)

    # Rotation

    def rotate_refresh(self, old_handle: str,
                       scope: Optional[FrozenSet[str]] = None) -> Tuple[AccessToken, RefreshToken]:
        with self._locked():
            old = self._refresh.get(old_handle)
            if old is None:
                raise InvalidGrant("Invalid refresh token")

            if old.rotated_to is not None:
                raise GrantReplay("Refresh token already used", grant_id=old.grant_id)

            if old.revoked:
                raise InvalidGrant("Refresh token has been revoked")

            if old.is_expired(self.clock()):
                self._reap_refresh(old_handle)
                raise InvalidGrant("Refresh token has expired")

            new_refresh = self._issue_refresh_locked(
                old.owner_id, old.client_id, old.scope, old.grant_id, rotated_from=old.handle
            )
            old.revoked = True
            old.rotated_to = new_refresh.handle

            access_token = self.issue_access(
                old.owner_id, old.client_id, scope if scope is not None else old.scope, old.grant_id
            )

        logger.info(f"Rotated refresh token for client {old.client_id}")
        return access_token, new_refresh

    # Revocation

    def revoke(self, handle: str) -> bool:
        with self._locked():
            access_token = self.find_access(handle)
            if access_token is not None:
                self._revoke_access_locked(access_token)
                logger.info(f"Access token revoked for client {access_token.client_id}")
                return True

            refresh_token = self._refresh.get(handle)
            if refresh_token is not None:
                refresh_token.revoked = True
                logger.info(f"Refresh token revoked for client {refresh_token.client_id}")
                return True

        return False

    def revoke_all_for_grant(self, grant_id: str) -> int:
        revoked = 0
        with self._locked():
            for token_id in self._access_by_grant.get(grant_id, set()):
                access_token = self._access.get(token_id)
                if access_token is not None and not access_token.revoked:
                    self._revoke_access_locked(access_token)
                    revoked += 1

            for handle in self._refresh_by_grant.get(grant_id, set()):
                refresh_token = self._refresh.get(handle)
                if refresh_token is not None and not refresh_token.revoked:
                    refresh_token.revoked = True
                    revoked += 1

            self._revoked_grants[grant_id] = self.clock() + timedelta(seconds=self.refresh_token_ttl)

        logger.warning(f"Revoked {revoked} tokens for grant chain")
        return revoked

    def _ensure_chain_live(self, grant_id: str) -> None:
        # Refuses issuance that lost the race against a chain revocation
        if grant_id in self._revoked_grants:
            logger.warning("Refused to issue a token on a revoked grant chain")
            raise InvalidGrant("Grant has been revoked")

    def _revoke_access_locked(self, access_token: AccessToken) -> None:
        access_token.revoked = True
        if access_token.self_contained:
            self._deny_list[access_token.token_id] = access_token.expires_at

    def is_denied(self, jti: str) -> bool:
        return jti in self._deny_list

    # Reaping

    def sweep_expired(self) -> int:
        """
        Clean up expired records

        Returns:
            Number of records removed
        """
        now = self.clock()
        cleaned_count = 0

        with self._locked():
            for token_id in [t for t, a in self._access.items() if a.is_expired(now)]:
                self._reap_access(token_id)
                cleaned_count += 1

            for handle in [h for h, r in self._refresh.items() if r.is_expired(now)]:
                self._reap_refresh(handle)
                cleaned_count += 1

            retention = timedelta(seconds=self.consumed_grant_retention)
            for code, grant in list(self._grants.items()):
                if (not grant.consumed and grant.is_expired(now)) or now >= grant.expires_at + retention:
                    del self._grants[code]
                    cleaned_count += 1

            # A denied JWT past its own exp is rejected on expiry alone
            for jti in [j for j, exp in self._deny_list.items() if now >= exp]:
                del self._deny_list[jti]

            for grant_id in [g for g, until in self._revoked_grants.items() if now >= until]:
                del self._revoked_grants[grant_id]

        if cleaned_count > 0:
            logger.info(f"Cleaned up {cleaned_count} expired records")

        return cleaned_count

    def _reap_access(self, token_id: str) -> None:
        access_token = self._access.pop(token_id, None)
        if access_token is not None:
            self._discard_indexed(self._access_by_grant, access_token.grant_id, token_id)

    def _reap_refresh(self, handle: str) -> None:
        refresh_token = self._refresh.pop(handle, None)
        if refresh_token is not None:
            self._discard_indexed(self._refresh_by_grant, refresh_token.grant_id, handle)

    @staticmethod
    def _discard_indexed(index: Dict[str, Set[str]], grant_id: str, key: str) -> None:
        keys = index.get(grant_id)
        if keys is None:
            return
        keys.discard(key)
        if not keys:
            del index[grant_id]
