"""
OAuth 2.0 Error Taxonomy

Every protocol failure is an OAuth2Error carrying the RFC 6749 error code,
a human readable description and the HTTP status the token endpoint
answers with. EntropySourceUnavailable sits outside this hierarchy: it is
a process-level failure and is never turned into a client-facing error
response.
"""

from typing import Dict, Any


class OAuth2Error(Exception):
    """Base class for OAuth 2.0 protocol errors"""
    error = "server_error"
    status_code = 400

    def __init__(self, description: str = "", error_uri: str = ""):
        self.description = description
        self.error_uri = error_uri
        super().__init__(f"{self.error}: {description}")

    def to_dict(self) -> Dict[str, Any]:
        """Render as an OAuth error payload"""
        payload = {"error": self.error}
        if self.description:
            payload["error_description"] = self.description
        if self.error_uri:
            payload["error_uri"] = self.error_uri
        return payload


class InvalidRequest(OAuth2Error):
    error = "invalid_request"


class InvalidClient(OAuth2Error):
    """Unknown client, or client authentication failed"""
    error = "invalid_client"
    status_code = 401


class InvalidRedirect(OAuth2Error):
    """
    Redirect URI is not registered for the client.

    Never delivered via redirect: the URI itself is untrusted.
    """
    error = "invalid_request"


class InvalidGrant(OAuth2Error):
    """Unknown, expired, consumed or mis-bound code or refresh token"""
    error = "invalid_grant"


class GrantReplay(InvalidGrant):
    """An already consumed authorization code was presented again"""

    def __init__(self, description: str = "", grant_id: str = ""):
        self.grant_id = grant_id
        super().__init__(description)


class InvalidScope(OAuth2Error):
    error = "invalid_scope"


class UnauthorizedClient(OAuth2Error):
    error = "unauthorized_client"


class UnsupportedGrantType(OAuth2Error):
    error = "unsupported_grant_type"


class UnsupportedResponseType(OAuth2Error):
    error = "unsupported_response_type"


class AccessDenied(OAuth2Error):
    error = "access_denied"
    status_code = 403


class InvalidToken(OAuth2Error):
    """Presented bearer token is malformed, expired, revoked or forged"""
    error = "invalid_token"
    status_code = 401


class StoreUnavailable(OAuth2Error):
    """Storage did not answer within its bounded timeout"""
    error = "temporarily_unavailable"
    status_code = 503


class EntropySourceUnavailable(RuntimeError):
    """The secure random source could not be read. Fatal."""
    pass
