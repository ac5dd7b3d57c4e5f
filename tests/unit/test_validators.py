"""
Unit tests for request parameter validation
"""

import pytest

from photoauth.security.validators import InputValidator, OAuthValidator, ValidationError


class TestInputValidator:
    """Test general string and URL validation"""

    def test_required(self):
        with pytest.raises(ValidationError) as exc_info:
            InputValidator.validate_string("", "code")

        assert exc_info.value.field == "code"

    def test_optional(self):
        assert InputValidator.validate_string(None, "scope", required=False) is None

    def test_length_limits(self):
        with pytest.raises(ValidationError):
            InputValidator.validate_string("x" * 11, "field", max_length=10)
        with pytest.raises(ValidationError):
            InputValidator.validate_string("x", "field", min_length=2)

    def test_non_string(self):
        with pytest.raises(ValidationError):
            InputValidator.validate_string(42, "field")

    @pytest.mark.parametrize("scope", ["view_gallery", "view_gallery upload_photos", "a:b/c"])
    def test_scope_pattern_accepts(self, scope):
        assert InputValidator.validate_string(scope, "scope", pattern="scope") == scope

    @pytest.mark.parametrize("scope", ["view_gallery  upload_photos", " view_gallery", 'say"hi', "back\\slash"])
    def test_scope_pattern_rejects(self, scope):
        with pytest.raises(ValidationError):
            InputValidator.validate_string(scope, "scope", pattern="scope")

    def test_url_schemes(self):
        assert InputValidator.validate_url("https://a.test/cb", "redirect_uri")
        with pytest.raises(ValidationError):
            InputValidator.validate_url("http://a.test/cb", "redirect_uri")
        with pytest.raises(ValidationError):
            InputValidator.validate_url("javascript:alert(1)", "redirect_uri", allowed_schemes=["https", "http"])

    def test_url_fragment_rejected(self):
        with pytest.raises(ValidationError):
            InputValidator.validate_url("https://a.test/cb#x", "redirect_uri")


class TestOAuthValidator:
    """Test endpoint-specific validation"""

    def test_authorization_request(self):
        validated = OAuthValidator.validate_authorization_request({
            "client_id": "print", "redirect_uri": "http://photoprint:3000/callback",
        })

        assert validated == {"client_id": "print", "redirect_uri": "http://photoprint:3000/callback"}

    def test_code_request(self):
        validated = OAuthValidator.validate_token_request({
            "grant_type": "authorization_code",
            "code": "abc123",
            "redirect_uri": "http://photoprint:3000/callback",
        })

        assert validated["code"] == "abc123"
        assert validated["code_verifier"] is None
        assert validated["scope"] is None

    def test_code_request_requires_redirect(self):
        with pytest.raises(ValidationError) as exc_info:
            OAuthValidator.validate_token_request({"grant_type": "authorization_code", "code": "abc123"})

        assert exc_info.value.field == "redirect_uri"

    def test_unsupported_grant_type(self):
        with pytest.raises(ValidationError) as exc_info:
            OAuthValidator.validate_token_request({"grant_type": "client_credentials"})

        assert exc_info.value.error == "unsupported_grant_type"

    def test_missing_grant_type(self):
        with pytest.raises(ValidationError) as exc_info:
            OAuthValidator.validate_token_request({})

        assert exc_info.value.error == "invalid_request"

    def test_password_request(self):
        with pytest.raises(ValidationError):
            OAuthValidator.validate_token_request({"grant_type": "password", "username": "alice"})

    def test_token_reference(self):
        validated = OAuthValidator.validate_token_reference({"token": "t", "token_type_hint": "something_new"})

        assert validated == {"token": "t", "token_type_hint": "something_new"}
