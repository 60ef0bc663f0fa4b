"""Tests for roomgate.shared.identity."""

from types import SimpleNamespace

import pytest
from helpers import COOKIE, SECRET, make_token

from roomgate.shared.errors import AuthError, ConfigError
from roomgate.shared.identity import Identity, IdentityValidator


@pytest.fixture
def validator() -> IdentityValidator:
    return IdentityValidator(SECRET, COOKIE)


class TestConstruction:
    """The signing secret is mandatory."""

    @pytest.mark.parametrize("secret", ["", None])
    def test_missing_secret_is_a_config_error(self, secret):
        with pytest.raises(ConfigError):
            IdentityValidator(secret, COOKIE)


class TestExtract:
    """Picking the session cookie out of a Cookie header."""

    def test_returns_token_among_other_cookies(self, validator):
        assert validator.extract(f"theme=dark; {COOKIE}=abc.def.ghi; lang=en") == "abc.def.ghi"

    def test_none_when_header_missing(self, validator):
        assert validator.extract(None) is None
        assert validator.extract("") is None

    def test_none_when_cookie_absent(self, validator):
        assert validator.extract("theme=dark") is None

    def test_cookie_name_must_match_exactly(self, validator):
        assert validator.extract(f"x{COOKIE}=abc") is None


class TestVerify:
    """Signature and expiry checks."""

    def test_valid_token_yields_claims(self, validator):
        identity = validator.verify(make_token({"uid": "u-42", "role": "admin"}))
        assert identity.id == "u-42"
        assert identity.claims["role"] == "admin"

    def test_tampered_signature_is_rejected(self, validator):
        header, payload, _ = make_token().split(".")
        _, _, other_signature = make_token({"uid": "u-2"}).split(".")
        with pytest.raises(AuthError):
            validator.verify(f"{header}.{payload}.{other_signature}")

    def test_token_signed_with_another_secret_is_rejected(self, validator):
        with pytest.raises(AuthError):
            validator.verify(make_token(secret="someone-else"))

    def test_expired_token_is_rejected(self, validator):
        with pytest.raises(AuthError, match="expired"):
            validator.verify(make_token(expires_in=-60))

    def test_garbage_is_rejected(self, validator):
        with pytest.raises(AuthError):
            validator.verify("not-a-jwt")


class TestAuthenticate:
    """Extract + verify, attaching the identity to a context."""

    def test_attaches_identity_to_context(self, validator):
        context = SimpleNamespace()
        identity = validator.authenticate(f"{COOKIE}={make_token()}", context)
        assert context.identity is identity
        assert identity.id == "u-1"

    def test_missing_cookie_raises_and_leaves_context_alone(self, validator):
        context = SimpleNamespace()
        with pytest.raises(AuthError):
            validator.authenticate("theme=dark", context)
        assert not hasattr(context, "identity")


class TestIdentity:
    """Identity id falls back from uid to sub."""

    def test_sub_is_used_without_uid(self):
        assert Identity({"sub": 7}).id == "7"

    def test_no_id_claims(self):
        assert Identity({"role": "guest"}).id is None
