"""
Unit tests for PKCE verification
"""

import base64
import hashlib

import pytest

from photoauth.auth.errors import InvalidRequest
from photoauth.auth.pkce_verifier import PKCEError, PKCEVerifier, create_pkce_pair

# RFC 7636 appendix B
RFC_VERIFIER = "dBjftJeZ4CVP-mJ92K-nZ5aQcvTP6qDT5Xh5A4Kz4zE"
RFC_CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


class TestStoreChallenge:
    """Test challenge validation at the authorization endpoint"""

    def test_s256_challenge_accepted(self):
        challenge = PKCEVerifier.store_challenge(RFC_CHALLENGE, "S256")

        assert challenge.code_challenge == RFC_CHALLENGE
        assert challenge.code_challenge_method == "S256"

    def test_method_defaults_to_plain(self):
        """RFC 7636 defaults the method to plain"""
        challenge = PKCEVerifier.store_challenge(RFC_VERIFIER)

        assert challenge.code_challenge_method == "plain"

    def test_no_challenge_means_no_pkce(self):
        assert PKCEVerifier.store_challenge(None) is None

    def test_method_without_challenge_rejected(self):
        with pytest.raises(InvalidRequest):
            PKCEVerifier.store_challenge(None, "S256")

    def test_unknown_method_rejected(self):
        with pytest.raises(InvalidRequest):
            PKCEVerifier.store_challenge(RFC_CHALLENGE, "S512")

    @pytest.mark.parametrize("challenge", [
        "too-short",
        "x" * 129,
        "contains spaces and is long enough to pass the length check ok",
        "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw+cM",
    ])
    def test_malformed_challenge_rejected(self, challenge):
        with pytest.raises(InvalidRequest):
            PKCEVerifier.store_challenge(challenge, "S256")


class TestVerify:
    """Test verifier checks at the token endpoint"""

    def test_rfc_example_s256(self):
        """The RFC 7636 appendix B pair verifies"""
        assert PKCEVerifier.verify(RFC_VERIFIER, RFC_CHALLENGE, "S256") is True

    def test_wrong_verifier_fails(self):
        other = "x" * 43
        assert PKCEVerifier.verify(other, RFC_CHALLENGE, "S256") is False

    def test_plain_method(self):
        assert PKCEVerifier.verify(RFC_VERIFIER, RFC_VERIFIER, "plain") is True
        assert PKCEVerifier.verify(RFC_VERIFIER, RFC_CHALLENGE, "plain") is False

    def test_missing_verifier_fails_when_challenge_stored(self):
        assert PKCEVerifier.verify(None, RFC_CHALLENGE, "S256") is False
        assert PKCEVerifier.verify("", RFC_CHALLENGE, "S256") is False

    def test_malformed_verifier_fails(self):
        """A verifier outside the RFC 7636 grammar fails instead of raising"""
        assert PKCEVerifier.verify("short", RFC_CHALLENGE, "S256") is False
        assert PKCEVerifier.verify("a" * 42 + "!", RFC_CHALLENGE, "S256") is False

    def test_no_stored_challenge_passes(self):
        """Without a stored challenge, verification is a no-op"""
        assert PKCEVerifier.verify(None, None, None) is True
        assert PKCEVerifier.verify(RFC_VERIFIER, None, None) is True


class TestClientHelpers:
    """Test verifier/challenge generation"""

    def test_generated_pair_verifies(self):
        pair = create_pkce_pair()

        assert pair.code_challenge_method == "S256"
        assert PKCEVerifier.verify(pair.code_verifier, pair.code_challenge, "S256")

    def test_challenge_is_base64url_sha256(self):
        verifier = PKCEVerifier.generate_code_verifier(64)
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        expected = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

        assert PKCEVerifier.generate_code_challenge(verifier, "S256") == expected

    @pytest.mark.parametrize("length", [42, 129])
    def test_verifier_length_bounds(self, length):
        with pytest.raises(PKCEError):
            PKCEVerifier.generate_code_verifier(length)
