"""Unit tests for API key authentication and principals."""

import pytest

from toolgate.auth.api_key import STDIO_PRINCIPAL, ApiKeyAuthenticator, Principal, key_fingerprint
from toolgate.auth.context import Context
from toolgate.core.exceptions import AuthenticationError


@pytest.fixture
def authenticator(make_settings) -> ApiKeyAuthenticator:
    return ApiKeyAuthenticator(make_settings(auth_enabled=True, api_keys=["user-key"], admin_api_keys=["admin-key"]))


class TestApiKeyAuthenticator:
    def test_known_key(self, authenticator):
        principal = authenticator.authenticate("user-key")
        assert principal == Principal(channel=f"api:{key_fingerprint('user-key')}", is_admin=False)

    def test_admin_key(self, authenticator):
        assert authenticator.authenticate("admin-key").is_admin is True

    @pytest.mark.parametrize("presented", [None, "", "wrong-key"])
    def test_rejects_missing_or_unknown_key(self, authenticator, presented):
        with pytest.raises(AuthenticationError):
            authenticator.authenticate(presented)

    def test_disabled_auth_allows_anonymous(self, make_settings):
        authenticator = ApiKeyAuthenticator(make_settings(auth_enabled=False, admin_api_keys=["admin-key"]))
        assert authenticator.authenticate(None).channel == "api:anonymous"
        assert authenticator.authenticate("whatever").channel == "api:anonymous"
        # Admin keys keep their role when auth is off
        assert authenticator.authenticate("admin-key").is_admin is True


class TestPrincipal:
    def test_fingerprint_hides_key(self):
        fingerprint = key_fingerprint("secret")
        assert len(fingerprint) == 16
        assert "secret" not in fingerprint
        assert fingerprint == key_fingerprint("secret")

    def test_rate_limit_key(self):
        principal = Principal(channel="api:abc")
        assert principal.rate_limit_key(None) == "api:abc"
        assert principal.rate_limit_key(Context.user(5)) == "api:abc|user:5"
        assert STDIO_PRINCIPAL.rate_limit_key(Context.group(-7)) == "stdio|group:-7"
