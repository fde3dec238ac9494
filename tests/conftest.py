"""Shared pytest fixtures.

These fixtures live at `tests/` scope so they are available to every test
module.

Key goals:
- Describe one fake Azure AD B2C tenant (discovery document + JWKS) served
  through a mocked ``httpx.AsyncClient``.
- Provide a real RSA key pair so ID tokens are genuinely signed and verified.
- Prevent the global settings singleton from leaking between tests.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from authlib.jose import JsonWebKey, jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from oidc_rp import config as config_module
from oidc_rp.config import ProviderConfig
from oidc_rp.infra.cache import MemoryCacheStore

METADATA_URL = (
    "https://azure_b2c_test.b2clogin.com/azure_b2c_test.onmicrosoft.com/"
    "v2.0/.well-known/openid-configuration?p=test-policy"
)
JWKS_URI = (
    "https://azure_b2c_test.b2clogin.com/azure_b2c_test.onmicrosoft.com/"
    "discovery/v2.0/keys?p=test-policy"
)
TOKEN_URL = (
    "https://azure_b2c_test.b2clogin.com/azure_b2c_test.onmicrosoft.com/"
    "oauth2/v2.0/token?p=test-policy"
)
ISSUER = "https://azure_b2c_test.b2clogin.com/11111111-1111-1111-1111-111111111111/v2.0/"

CLIENT_ID = "test_client_id"
CLIENT_SECRET = "test_client_secret"
REDIRECT_URI = "https://redirect.url"
NONCE = "12345678"
KID = "test-key-1"


def make_discovery_document() -> dict[str, Any]:
    """Discovery document of the fake tenant."""
    base = "https://azure_b2c_test.b2clogin.com/azure_b2c_test.onmicrosoft.com"
    return {
        "issuer": ISSUER,
        "authorization_endpoint": f"{base}/oauth2/v2.0/authorize?p=test-policy",
        "token_endpoint": TOKEN_URL,
        "end_session_endpoint": f"{base}/oauth2/v2.0/logout?p=test-policy",
        "userinfo_endpoint": f"{base}/openid/v2.0/userinfo?p=test-policy",
        "jwks_uri": JWKS_URI,
        "response_modes_supported": ["query", "fragment", "form_post"],
        "response_types_supported": ["code", "id_token", "code id_token"],
        "id_token_signing_alg_values_supported": ["RS256"],
    }


def json_response(url: str, data: Any, status_code: int = 200) -> httpx.Response:
    """Build a real httpx response carrying a JSON body."""
    return httpx.Response(status_code, json=data, request=httpx.Request("GET", url))


@pytest.fixture(autouse=True)
def _reset_global_settings() -> None:
    """Ensure the global settings singleton does not leak between tests."""
    config_module._settings = None
    yield
    config_module._settings = None


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """RSA key pair used to sign test ID tokens."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_jwk(rsa_private_key: rsa.RSAPrivateKey) -> Any:
    """Authlib private key for signing."""
    private_pem = rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return JsonWebKey.import_key(private_pem)


@pytest.fixture(scope="session")
def public_jwk_dict(rsa_private_key: rsa.RSAPrivateKey) -> dict[str, Any]:
    """Public JWK (as published in the JWKS) for the signing key."""
    public_pem = rsa_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    jwk = dict(JsonWebKey.import_key(public_pem).as_dict())
    jwk["kid"] = KID
    jwk["use"] = "sig"
    jwk["alg"] = "RS256"
    return jwk


@pytest.fixture
def discovery_document() -> dict[str, Any]:
    """Fresh copy of the fake tenant's discovery document."""
    return make_discovery_document()


@pytest.fixture
def jwks_document(public_jwk_dict: dict[str, Any]) -> dict[str, Any]:
    """JWKS document publishing the test signing key."""
    return {"keys": [dict(public_jwk_dict)]}


@pytest.fixture
def routes(discovery_document: dict[str, Any], jwks_document: dict[str, Any]) -> dict[str, Any]:
    """URL -> response (or exception) map served by the mock HTTP client.

    Tests may replace entries to simulate failures.
    """
    return {
        METADATA_URL: json_response(METADATA_URL, discovery_document),
        JWKS_URI: json_response(JWKS_URI, jwks_document),
    }


@pytest.fixture
def mock_http_client(routes: dict[str, Any]) -> AsyncMock:
    """Create mock HTTP client that answers GETs from ``routes``."""
    client = AsyncMock(spec=httpx.AsyncClient)
    client.aclose = AsyncMock()

    async def _get(url: str, *args: Any, **kwargs: Any) -> httpx.Response:
        result = routes.get(url)
        if result is None:
            return json_response(url, {"error": "not found"}, status_code=404)
        if isinstance(result, Exception):
            raise result
        return result

    client.get = AsyncMock(side_effect=_get)
    return client


@pytest.fixture
def provider_config() -> ProviderConfig:
    """Provider configuration for the fake tenant."""
    return ProviderConfig(
        metadata_url=METADATA_URL,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri=REDIRECT_URI,
    )


@pytest.fixture
def cache() -> MemoryCacheStore:
    """Empty in-memory cache store."""
    return MemoryCacheStore()


@pytest.fixture
def claims() -> dict[str, Any]:
    """Claims of a valid ID token for the fake tenant."""
    now = int(time.time())
    return {
        "sub": "user-123",
        "email": "test@example.com",
        "name": "Test User",
        "aud": CLIENT_ID,
        "iss": ISSUER,
        "nonce": NONCE,
        "iat": now,
        "nbf": now,
        "exp": now + 3600,
    }


@pytest.fixture
def sign_token(private_jwk: Any) -> Callable[..., str]:
    """Return a helper that signs claims into a compact RS256 ID token."""

    def _sign(payload: dict[str, Any], kid: str | None = KID, key: Any = None) -> str:
        header: dict[str, Any] = {"alg": "RS256", "typ": "JWT"}
        if kid is not None:
            header["kid"] = kid
        return jwt.encode(header, payload, key or private_jwk).decode("ascii")

    return _sign
