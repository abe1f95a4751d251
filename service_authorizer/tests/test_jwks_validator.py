"""
Unit tests for the JWKS token validator.
"""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from service_authorizer.app.validation.token_validator import JWKSTokenValidator
from shared.errors import AuthBackendError
from shared.test_helpers import MockTokenGenerator

JWKS_URL = "http://keycloak.test/certs"


def _response(payload, status_code=200):
    return httpx.Response(
        status_code=status_code,
        json=payload,
        request=httpx.Request("GET", JWKS_URL)
    )


class TestJWKSTokenValidator:
    """Test cases for JWKSTokenValidator."""

    @pytest.fixture
    def tokens(self):
        return MockTokenGenerator()

    @pytest.fixture
    def client(self, tokens):
        client = MagicMock()
        client.get = AsyncMock(return_value=_response(tokens.jwks()))
        client.aclose = AsyncMock()
        return client

    @pytest.fixture
    def validator(self, client):
        return JWKSTokenValidator(JWKS_URL, client=client)

    @pytest.mark.asyncio
    async def test_valid_token(self, validator, tokens, client):
        """A correctly signed token yields its subject."""
        result = await validator.verify_token(tokens.generate_access_token("user-42"))

        assert result.valid is True
        assert result.principal_id == "user-42"
        client.get.assert_awaited_once_with(JWKS_URL)

    @pytest.mark.asyncio
    async def test_keys_are_reused_between_calls(self, validator, tokens, client):
        """The JWKS is fetched once per refresh interval."""
        await validator.verify_token(tokens.generate_access_token())
        await validator.verify_token(tokens.generate_access_token())

        assert client.get.await_count == 1

    @pytest.mark.asyncio
    async def test_malformed_token_denied(self, validator, client):
        result = await validator.verify_token("not-a-jwt")

        assert result.valid is False
        assert "Malformed" in result.error
        client.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_token_denied(self, validator, tokens):
        result = await validator.verify_token(tokens.generate_access_token(expires_in=-60))

        assert result.valid is False
        assert "validation failed" in result.error

    @pytest.mark.asyncio
    async def test_wrong_signature_denied(self, validator):
        forged = MockTokenGenerator(secret="some-other-secret").generate_access_token()
        result = await validator.verify_token(forged)

        assert result.valid is False

    @pytest.mark.asyncio
    async def test_unknown_kid_refreshes_then_denies(self, validator, tokens, client):
        """An unknown key id forces one eager refresh before denying."""
        await validator.verify_token(tokens.generate_access_token())
        result = await validator.verify_token(tokens.generate_access_token(kid="rotated"))

        assert result.valid is False
        assert "rotated" in result.error
        assert client.get.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_subject_denied(self, validator, tokens):
        result = await validator.verify_token(tokens.generate_access_token(subject=None))

        assert result.valid is False
        assert "subject" in result.error

    @pytest.mark.asyncio
    async def test_required_scope(self, client, tokens):
        """Roles in realm_access satisfy the required scope."""
        validator = JWKSTokenValidator(JWKS_URL, required_scope="pipeline:invoke", client=client)

        denied = await validator.verify_token(tokens.generate_access_token())
        allowed = await validator.verify_token(tokens.generate_access_token(roles=["pipeline:invoke"]))

        assert denied.valid is False
        assert allowed.valid is True

    @pytest.mark.asyncio
    async def test_audience_checked(self, client, tokens):
        validator = JWKSTokenValidator(JWKS_URL, audience="pipeline", client=client)

        wrong = await validator.verify_token(tokens.generate_access_token(audience="elsewhere"))
        right = await validator.verify_token(tokens.generate_access_token(audience="pipeline"))

        assert wrong.valid is False
        assert right.valid is True

    @pytest.mark.asyncio
    async def test_unreachable_jwks_raises_backend_error(self, tokens):
        """Transport failures are undecidable, not a deny."""
        client = MagicMock()
        client.get = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        validator = JWKSTokenValidator(JWKS_URL, client=client)

        with pytest.raises(AuthBackendError):
            await validator.verify_token(tokens.generate_access_token())

    @pytest.mark.asyncio
    async def test_http_error_status_raises_backend_error(self, tokens):
        client = MagicMock()
        client.get = AsyncMock(return_value=_response({"error": "boom"}, status_code=503))
        validator = JWKSTokenValidator(JWKS_URL, client=client)

        with pytest.raises(AuthBackendError):
            await validator.verify_token(tokens.generate_access_token())

    @pytest.mark.asyncio
    async def test_invalid_jwks_document_raises_backend_error(self, tokens):
        client = MagicMock()
        client.get = AsyncMock(return_value=_response({"nokeys": True}))
        validator = JWKSTokenValidator(JWKS_URL, client=client)

        with pytest.raises(AuthBackendError):
            await validator.verify_token(tokens.generate_access_token())

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self, tokens):
        """Once open, the breaker short-circuits further fetches."""
        client = MagicMock()
        client.get = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        validator = JWKSTokenValidator(JWKS_URL, client=client)

        for _ in range(3):
            with pytest.raises(AuthBackendError):
                await validator.verify_token(tokens.generate_access_token())
        calls = client.get.await_count

        with pytest.raises(AuthBackendError) as exc_info:
            await validator.verify_token(tokens.generate_access_token())

        assert "circuit open" in exc_info.value.message
        assert client.get.await_count == calls

    @pytest.mark.asyncio
    async def test_close_releases_client(self, validator, client):
        await validator.close()
        client.aclose.assert_awaited_once()
