"""Tests for ID token validation."""

import time

import httpx
import pytest
from authlib.jose import JsonWebToken
from conftest import CLIENT_ID, ISSUER, JWKS_URI, KID, METADATA_URL, NONCE, json_response

from oidc_rp.domain.exceptions import (
    AudienceMismatchError,
    ClaimsError,
    IssuerMismatchError,
    NonceMismatchError,
    TokenValidationError,
    TransportError,
)
from oidc_rp.domain.models import IdTokenClaims
from oidc_rp.infra.observability.metrics import get_registry
from oidc_rp.security.discovery import MetadataResolver
from oidc_rp.security.jwks import KeyStore
from oidc_rp.security.oidc import ALLOWED_ALGORITHMS, TokenValidator, hash_token


def validation_count(status: str, reason: str) -> float:
    value = get_registry().get_sample_value(
        "oidc_rp_id_token_validations_total", {"status": status, "reason": reason}
    )
    return value or 0.0


class TestTokenValidator:
    """Tests for TokenValidator."""

    @pytest.fixture
    def validator(self, provider_config, cache, mock_http_client):
        resolver = MetadataResolver(provider_config, cache, mock_http_client)
        key_store = KeyStore(provider_config, cache, resolver, mock_http_client)
        return TokenValidator(provider_config, resolver, key_store)

    def test_only_rs256_allowed(self):
        """Test the accepted algorithm list."""
        assert ALLOWED_ALGORITHMS == ["RS256"]

    def test_hash_token(self):
        """Test token hashing for logs."""
        token_hash = hash_token("test-token-123")

        assert token_hash == hash_token("test-token-123")
        assert len(token_hash) == 64
        assert token_hash != "test-token-123"

    @pytest.mark.asyncio
    async def test_valid_token(self, validator, sign_token, claims):
        """Test a well-formed token returns its claims."""
        result = await validator.validate(sign_token(claims), NONCE)

        assert isinstance(result, IdTokenClaims)
        assert result.aud == CLIENT_ID
        assert result.iss == ISSUER
        assert result.nonce == NONCE
        assert result.sub == "user-123"
        assert result["email"] == "test@example.com"
        assert result.get("missing", "default") == "default"

    @pytest.mark.asyncio
    async def test_valid_token_records_metric(self, validator, sign_token, claims):
        """Test successful validation is counted."""
        before = validation_count("success", "ok")

        await validator.validate(sign_token(claims), NONCE)

        assert validation_count("success", "ok") == before + 1

    @pytest.mark.asyncio
    async def test_audience_list_containing_client(self, validator, sign_token, claims):
        """Test aud given as a list is accepted when it contains the client id."""
        claims["aud"] = ["other-client", CLIENT_ID]

        result = await validator.validate(sign_token(claims), NONCE)

        assert result.aud == ["other-client", CLIENT_ID]

    @pytest.mark.asyncio
    async def test_audience_mismatch(self, validator, sign_token, claims):
        """Test token issued for another client."""
        claims["aud"] = "other-client"

        with pytest.raises(
            AudienceMismatchError, match="ID token has incorrect audience: other-client"
        ) as exc_info:
            await validator.validate(sign_token(claims), NONCE)

        assert exc_info.value.expected == CLIENT_ID
        assert exc_info.value.actual == "other-client"

    @pytest.mark.asyncio
    async def test_audience_list_without_client(self, validator, sign_token, claims):
        """Test aud list not containing the client id."""
        claims["aud"] = ["other-client"]

        with pytest.raises(AudienceMismatchError):
            await validator.validate(sign_token(claims), NONCE)

    @pytest.mark.asyncio
    async def test_issuer_mismatch(self, validator, sign_token, claims):
        """Test token from a different issuer."""
        claims["iss"] = "https://evil.example.com/"

        with pytest.raises(
            IssuerMismatchError, match="ID token has incorrect issuer: https://evil.example.com/"
        ):
            await validator.validate(sign_token(claims), NONCE)

    @pytest.mark.asyncio
    async def test_nonce_mismatch(self, validator, sign_token, claims):
        """Test replayed token with another nonce."""
        with pytest.raises(NonceMismatchError, match="ID token has incorrect nonce: 12345678"):
            await validator.validate(sign_token(claims), "different-nonce")

    @pytest.mark.asyncio
    async def test_audience_checked_before_issuer_and_nonce(self, validator, sign_token, claims):
        """Test the first failing claim check is reported."""
        claims["aud"] = "other-client"
        claims["iss"] = "https://evil.example.com/"

        with pytest.raises(AudienceMismatchError):
            await validator.validate(sign_token(claims), "different-nonce")

    @pytest.mark.asyncio
    async def test_issuer_checked_before_nonce(self, validator, sign_token, claims):
        """Test issuer mismatch wins over nonce mismatch."""
        claims["iss"] = "https://evil.example.com/"

        with pytest.raises(IssuerMismatchError):
            await validator.validate(sign_token(claims), "different-nonce")

    @pytest.mark.asyncio
    async def test_claim_errors_share_base(self, validator, sign_token, claims):
        """Test claim mismatches can be caught as ClaimsError."""
        with pytest.raises(ClaimsError) as exc_info:
            await validator.validate(sign_token(claims), "different-nonce")

        assert exc_info.value.claim == "nonce"

    @pytest.mark.asyncio
    async def test_expired_token(self, validator, sign_token, claims):
        """Test token past exp plus leeway."""
        claims["exp"] = int(time.time()) - 3600

        with pytest.raises(TokenValidationError, match="token expired"):
            await validator.validate(sign_token(claims), NONCE)

    @pytest.mark.asyncio
    async def test_expired_within_leeway(self, validator, sign_token, claims):
        """Test token expired by less than the leeway is accepted."""
        claims["exp"] = int(time.time()) - 5

        result = await validator.validate(sign_token(claims), NONCE)

        assert result.sub == "user-123"

    @pytest.mark.asyncio
    async def test_not_yet_valid(self, validator, sign_token, claims):
        """Test token whose nbf is in the future."""
        claims["nbf"] = int(time.time()) + 3600

        with pytest.raises(TokenValidationError, match="token not yet valid"):
            await validator.validate(sign_token(claims), NONCE)

    @pytest.mark.asyncio
    async def test_bad_signature(self, validator, sign_token, claims):
        """Test payload swapped under a valid signature."""
        token = sign_token(claims)
        forged_claims = dict(claims, sub="admin")
        forged_payload = sign_token(forged_claims).split(".")[1]
        header, _, signature = token.split(".")

        with pytest.raises(TokenValidationError, match="signature verification failed"):
            await validator.validate(f"{header}.{forged_payload}.{signature}", NONCE)

    @pytest.mark.asyncio
    async def test_signature_checked_before_claims(self, validator, sign_token, claims):
        """Test claim contents are not inspected for an unverified token."""
        claims["aud"] = "other-client"
        token = sign_token(claims)
        header, payload, signature = token.split(".")
        tampered = f"{header}.{payload}.{signature[::-1]}"

        with pytest.raises(TokenValidationError):
            await validator.validate(tampered, NONCE)

    @pytest.mark.asyncio
    async def test_unknown_kid(self, validator, sign_token, claims):
        """Test token signed with a key id not in the JWKS."""
        with pytest.raises(TokenValidationError, match="unknown key id"):
            await validator.validate(sign_token(claims, kid="rotated-key"), NONCE)

    @pytest.mark.asyncio
    async def test_missing_kid(self, validator, sign_token, claims):
        """Test token without a kid header."""
        with pytest.raises(TokenValidationError, match="unknown key id"):
            await validator.validate(sign_token(claims, kid=None), NONCE)

    @pytest.mark.asyncio
    async def test_disallowed_algorithm(self, validator, claims):
        """Test HMAC-signed token is refused."""
        token = (
            JsonWebToken(["HS256"])
            .encode({"alg": "HS256", "kid": KID}, claims, "s" * 32)
            .decode("ascii")
        )

        with pytest.raises(TokenValidationError, match="unsupported algorithm"):
            await validator.validate(token, NONCE)

    @pytest.mark.asyncio
    async def test_malformed_token(self, validator):
        """Test input that is not a compact JWS."""
        with pytest.raises(TokenValidationError, match="ID token validation failed"):
            await validator.validate("not-a-token", NONCE)

    @pytest.mark.asyncio
    async def test_keys_unavailable(self, validator, routes, sign_token, claims):
        """Test JWKS fetch failure is reported as a validation failure."""
        routes[JWKS_URI] = json_response(JWKS_URI, {}, status_code=500)

        with pytest.raises(
            TokenValidationError, match="could not load verification keys"
        ) as exc_info:
            await validator.validate(sign_token(claims), NONCE)

        assert isinstance(exc_info.value.__cause__, TransportError)

    @pytest.mark.asyncio
    async def test_malformed_jwks_uri(self, validator, routes, discovery_document):
        """Test an unparseable jwks_uri fails validation instead of leaking httpx errors."""
        bad_uri = "https://exa mple.com/\x00keys"
        discovery_document["jwks_uri"] = bad_uri
        routes[METADATA_URL] = json_response(METADATA_URL, discovery_document)
        routes[bad_uri] = httpx.InvalidURL("Invalid non-printable ASCII character in URL")

        with pytest.raises(
            TokenValidationError, match="could not load verification keys"
        ) as exc_info:
            await validator.validate("a.b.c", NONCE)

        assert isinstance(exc_info.value.__cause__, TransportError)

    @pytest.mark.asyncio
    async def test_failure_records_metric(self, validator, sign_token, claims):
        """Test failed validation is counted with its reason."""
        claims["exp"] = int(time.time()) - 3600
        before = validation_count("failure", "token expired")

        with pytest.raises(TokenValidationError):
            await validator.validate(sign_token(claims), NONCE)

        assert validation_count("failure", "token expired") == before + 1

    @pytest.mark.asyncio
    async def test_keys_cached_between_validations(
        self, validator, sign_token, claims, mock_http_client
    ):
        """Test repeated validations reuse cached discovery and JWKS."""
        token = sign_token(claims)

        await validator.validate(token, NONCE)
        await validator.validate(token, NONCE)

        assert mock_http_client.get.await_count == 2
