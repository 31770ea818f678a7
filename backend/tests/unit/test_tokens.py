"""
Unit tests for JWT access token verification.
"""

from core.security import TokenService

SECRET = "test-secret-key-with-enough-length-000"


class TestTokenService:
    def test_round_trip(self):
        service = TokenService(secret_key=SECRET)
        token = service.create_access_token("user-1", email="a@example.com")

        payload = service.verify_access_token(token)

        assert payload.sub == "user-1"
        assert payload.email == "a@example.com"
        assert payload.type == "access"

    def test_wrong_secret(self):
        token = TokenService(secret_key=SECRET).create_access_token("user-1")
        assert TokenService(secret_key="another-secret").verify_access_token(token) is None

    def test_expired(self):
        service = TokenService(secret_key=SECRET, access_token_expire_minutes=-1)
        assert service.verify_access_token(service.create_access_token("user-1")) is None

    def test_garbage(self):
        assert TokenService(secret_key=SECRET).verify_access_token("not.a.jwt") is None
