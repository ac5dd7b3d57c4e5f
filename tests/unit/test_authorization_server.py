"""
Unit tests for the authorization server facade
"""

import pytest

from conftest import (
    FIRSTPARTY_SECRET, MOBILE_REDIRECT, PRINT_REDIRECT, PRINT_SECRET,
    basic_auth, redirect_params,
)
from photoauth.auth.errors import InvalidClient, InvalidRedirect, InvalidToken
from photoauth.auth.pkce_verifier import create_pkce_pair


@pytest.fixture
def print_tokens(server, obtain_code):
    """Token endpoint response body for the print client"""
    code = obtain_code()
    response = server.token(
        {"grant_type": "authorization_code", "code": code, "redirect_uri": PRINT_REDIRECT},
        basic_auth("print", PRINT_SECRET),
    )
    assert response.status_code == 200
    return response.body


class TestAuthorize:
    """Test the authorization endpoint entry point"""

    def test_consent_required(self, server):
        result = server.authorize({
            "response_type": "code",
            "client_id": "print",
            "redirect_uri": PRINT_REDIRECT,
            "scope": "view_gallery",
            "state": "xyz",
        })

        assert result.consent_required

    def test_malformed_client_id(self, server):
        with pytest.raises(InvalidClient):
            server.authorize({"response_type": "code", "client_id": "bad id!", "redirect_uri": PRINT_REDIRECT})

    @pytest.mark.parametrize("redirect_uri", [None, "not-a-url", PRINT_REDIRECT + "#frag"])
    def test_malformed_redirect(self, server, redirect_uri):
        params = {"response_type": "code", "client_id": "print", "state": "xyz"}
        if redirect_uri is not None:
            params["redirect_uri"] = redirect_uri

        with pytest.raises(InvalidRedirect):
            server.authorize(params)

    def test_decide(self, server):
        started = server.authorize({
            "response_type": "code", "client_id": "print", "redirect_uri": PRINT_REDIRECT, "state": "s1",
        })

        result = server.decide(started.transaction.transaction_id, "owner-bob", True)

        assert redirect_params(result.redirect_url)["state"] == "s1"


class TestTokenEndpoint:
    """Test the token endpoint"""

    def test_code_exchange_with_basic_auth(self, print_tokens):
        assert print_tokens["token_type"] == "Bearer"
        assert print_tokens["expires_in"] == 3600
        assert print_tokens["scope"] == "view_gallery"
        assert print_tokens["refresh_token"]

    def test_code_exchange_with_post_auth(self, server, obtain_code):
        code = obtain_code()

        response = server.token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": PRINT_REDIRECT,
            "client_id": "print",
            "client_secret": PRINT_SECRET,
        })

        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "no-store"
        assert response.headers["Pragma"] == "no-cache"

    def test_public_client_with_pkce(self, server, obtain_code):
        pair = create_pkce_pair()
        code = obtain_code(client_id="mobile", redirect_uri=MOBILE_REDIRECT,
                           code_challenge=pair.code_challenge, code_challenge_method="S256")

        response = server.token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": MOBILE_REDIRECT,
            "client_id": "mobile",
            "code_verifier": pair.code_verifier,
        })

        assert response.status_code == 200

    def test_replayed_code(self, server, obtain_code):
        code = obtain_code()
        form = {"grant_type": "authorization_code", "code": code, "redirect_uri": PRINT_REDIRECT}
        server.token(form, basic_auth("print", PRINT_SECRET))

        response = server.token(form, basic_auth("print", PRINT_SECRET))

        assert response.status_code == 400
        assert response.body["error"] == "invalid_grant"
        assert response.headers["Cache-Control"] == "no-store"

    def test_bad_basic_credentials(self, server, obtain_code):
        code = obtain_code()

        response = server.token(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": PRINT_REDIRECT},
            basic_auth("print", "wrong-secret"),
        )

        assert response.status_code == 401
        assert response.body["error"] == "invalid_client"
        assert response.headers["WWW-Authenticate"] == 'Basic realm="photoauth"'

    def test_bad_post_credentials(self, server, obtain_code):
        code = obtain_code()

        response = server.token({
            "grant_type": "authorization_code", "code": code, "redirect_uri": PRINT_REDIRECT,
            "client_id": "print", "client_secret": "wrong-secret",
        })

        assert response.status_code == 401
        assert "WWW-Authenticate" not in response.headers

    def test_confidential_client_without_secret(self, server, obtain_code):
        code = obtain_code()

        response = server.token({
            "grant_type": "authorization_code", "code": code, "redirect_uri": PRINT_REDIRECT,
            "client_id": "print",
        })

        assert response.status_code == 401

    def test_two_auth_methods(self, server, obtain_code):
        code = obtain_code()

        response = server.token(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": PRINT_REDIRECT,
             "client_id": "print", "client_secret": PRINT_SECRET},
            basic_auth("print", PRINT_SECRET),
        )

        assert response.status_code == 400
        assert response.body["error"] == "invalid_request"

    def test_unsupported_grant_type(self, server):
        response = server.token({"grant_type": "client_credentials"}, basic_auth("print", PRINT_SECRET))

        assert response.status_code == 400
        assert response.body["error"] == "unsupported_grant_type"

    def test_missing_code(self, server):
        response = server.token({"grant_type": "authorization_code", "redirect_uri": PRINT_REDIRECT},
                                basic_auth("print", PRINT_SECRET))

        assert response.body["error"] == "invalid_request"

    def test_refresh(self, server, print_tokens):
        response = server.token(
            {"grant_type": "refresh_token", "refresh_token": print_tokens["refresh_token"]},
            basic_auth("print", PRINT_SECRET),
        )

        assert response.status_code == 200
        assert response.body["refresh_token"] != print_tokens["refresh_token"]

    def test_password(self, server):
        response = server.token(
            {"grant_type": "password", "username": "bob", "password": "builder", "scope": "view_gallery"},
            basic_auth("firstparty", FIRSTPARTY_SECRET),
        )

        assert response.status_code == 200
        assert response.body["scope"] == "view_gallery"

    def test_password_refused_for_print(self, server):
        response = server.token(
            {"grant_type": "password", "username": "bob", "password": "builder"},
            basic_auth("print", PRINT_SECRET),
        )

        assert response.body["error"] == "unauthorized_client"


class TestValidateBearer:
    """Test the resource server hook"""

    def test_valid(self, server, print_tokens):
        principal = server.validate_bearer(f"Bearer {print_tokens['access_token']}")

        assert principal.owner_id == "owner-alice"
        assert principal.client_id == "print"
        assert principal.has_scope("view_gallery")

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic abc", "Bearer " + "a" * 43])
    def test_rejected(self, server, header):
        with pytest.raises(InvalidToken):
            server.validate_bearer(header)

    def test_expired(self, server, print_tokens, clock):
        clock.advance(3600)

        with pytest.raises(InvalidToken):
            server.validate_bearer(f"Bearer {print_tokens['access_token']}")


class TestRevoke:
    """Test token revocation"""

    def test_revoke_access_token(self, server, print_tokens):
        response = server.revoke({"token": print_tokens["access_token"]}, basic_auth("print", PRINT_SECRET))

        assert response.status_code == 200
        with pytest.raises(InvalidToken):
            server.validate_bearer(f"Bearer {print_tokens['access_token']}")

    def test_unknown_token(self, server):
        response = server.revoke({"token": "never-issued"}, basic_auth("print", PRINT_SECRET))

        assert response.status_code == 200
        assert response.body == {}

    def test_other_clients_token_untouched(self, server, print_tokens):
        response = server.revoke({"token": print_tokens["access_token"]}, basic_auth("firstparty", FIRSTPARTY_SECRET))

        assert response.status_code == 200
        assert server.validate_bearer(f"Bearer {print_tokens['access_token']}")

    def test_refresh_revocation_cascades(self, server, print_tokens):
        response = server.revoke(
            {"token": print_tokens["refresh_token"], "token_type_hint": "refresh_token"},
            basic_auth("print", PRINT_SECRET),
        )

        assert response.status_code == 200
        with pytest.raises(InvalidToken):
            server.validate_bearer(f"Bearer {print_tokens['access_token']}")
        refreshed = server.token(
            {"grant_type": "refresh_token", "refresh_token": print_tokens["refresh_token"]},
            basic_auth("print", PRINT_SECRET),
        )
        assert refreshed.body["error"] == "invalid_grant"

    def test_unauthenticated(self, server, print_tokens):
        response = server.revoke({"token": print_tokens["access_token"]}, basic_auth("print", "wrong"))

        assert response.status_code == 401

    def test_missing_token(self, server):
        response = server.revoke({}, basic_auth("print", PRINT_SECRET))

        assert response.body["error"] == "invalid_request"


class TestIntrospect:
    """Test token introspection"""

    def test_active_access_token(self, server, print_tokens):
        response = server.introspect({"token": print_tokens["access_token"]},
                                     basic_auth("firstparty", FIRSTPARTY_SECRET))

        assert response.status_code == 200
        assert response.body["active"] is True
        assert response.body["client_id"] == "print"
        assert response.body["sub"] == "owner-alice"
        assert response.body["scope"] == "view_gallery"
        assert response.body["iss"] == "http://auth.photos.test"

    def test_refresh_token_visible_to_owner_client(self, server, print_tokens):
        response = server.introspect({"token": print_tokens["refresh_token"]}, basic_auth("print", PRINT_SECRET))

        assert response.body["active"] is True
        assert response.body["token_type"] == "refresh_token"

    def test_refresh_token_hidden_from_other_clients(self, server, print_tokens):
        response = server.introspect({"token": print_tokens["refresh_token"]},
                                     basic_auth("firstparty", FIRSTPARTY_SECRET))

        assert response.body == {"active": False}

    def test_inactive_after_revocation(self, server, print_tokens):
        server.revoke({"token": print_tokens["access_token"]}, basic_auth("print", PRINT_SECRET))

        response = server.introspect({"token": print_tokens["access_token"]}, basic_auth("print", PRINT_SECRET))

        assert response.body == {"active": False}

    def test_public_client_refused(self, server, print_tokens):
        response = server.introspect({"token": print_tokens["access_token"], "client_id": "mobile"})

        assert response.status_code == 401
        assert response.body["error"] == "invalid_client"


class TestMetadata:
    """Test authorization server metadata"""

    def test_document(self, server):
        metadata = server.metadata()

        assert metadata["issuer"] == "http://auth.photos.test"
        assert metadata["token_endpoint"] == "http://auth.photos.test/oauth/token"
        assert metadata["response_types_supported"] == ["code", "token"]
        assert "S256" in metadata["code_challenge_methods_supported"]
        assert metadata["scopes_supported"] == ["manage_albums", "upload_photos", "view_gallery"]
