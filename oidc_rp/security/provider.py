"""OpenID Connect provider facade.

Composes the provider configuration with the metadata resolver, key store,
token validator and URL builder, and adds the authorization-code exchange.
The cache store is an explicit dependency so that its lifetime (in-process
or shared Redis) is chosen by the application.

Example:
    cache = MemoryCacheStore()
    provider = OpenIdConnectProvider(
        ProviderConfig(
            metadata_url="https://tenant.b2clogin.com/tenant.onmicrosoft.com/"
            "v2.0/.well-known/openid-configuration?p=B2C_1_signin",
            client_id="my-client-id",
            client_secret="my-client-secret",
            redirect_uri="https://app.example.com/callback",
        ),
        cache=cache,
    )

    state = provider.generate_state()
    nonce = provider.generate_nonce()
    url = await provider.authorization_url({"state": state, "nonce": nonce})

    # ... on callback
    claims = await provider.validate_id_token(request_id_token, nonce)
"""

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from oidc_rp.config import ProviderConfig
from oidc_rp.domain.exceptions import CodeExchangeError, MissingOptionError, OpenIdConnectError
from oidc_rp.domain.models import TOKEN_ENDPOINT, IdTokenClaims
from oidc_rp.infra.cache import CacheStore
from oidc_rp.infra.http import DEFAULT_TIMEOUT_SECONDS, post_form
from oidc_rp.infra.observability.metrics import record_code_exchange
from oidc_rp.security.discovery import MetadataResolver
from oidc_rp.security.jwks import KeyStore
from oidc_rp.security.oidc import TokenValidator
from oidc_rp.security.urls import DEFAULT_SCOPES, UrlBuilder, generate_random_state

logger = logging.getLogger(__name__)


class OpenIdConnectProvider:
    """OIDC relying-party operations for one provider (metadata URL).

    Attributes:
        config: Provider configuration
        resolver: Discovery document resolver
        key_store: JWKS key store
        validator: ID token validator
        urls: Redirect URL builder
    """

    def __init__(
        self,
        config: ProviderConfig,
        cache: CacheStore | None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize provider.

        Args:
            config: Provider configuration
            cache: Cache store for discovery and JWKS documents (required)
            http_client: Optional HTTP client, reused for all requests
            timeout_seconds: Request timeout when no client is injected

        Raises:
            MissingOptionError: If no cache store is given
        """
        if cache is None:
            raise MissingOptionError(
                "Required options not defined: cache", context={"option": "cache"}
            )

        self.config = config
        self.cache = cache
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds

        self.resolver = MetadataResolver(config, cache, http_client, timeout_seconds)
        self.key_store = KeyStore(config, cache, self.resolver, http_client, timeout_seconds)
        self.validator = TokenValidator(config, self.resolver, self.key_store)
        self.urls = UrlBuilder(config, self.resolver)

        if config.allow_insecure_scheme:
            logger.warning(
                "Insecure metadata URL scheme allowed - use only in development",
                extra={"metadata_url": config.metadata_url},
            )

    # ========================================
    # Discovery
    # ========================================

    async def get_endpoint(self, name: str) -> str:
        """Look up a value in the provider's discovery document."""
        return await self.resolver.get_endpoint(name)

    async def get_issuer(self) -> str:
        """Get the provider's issuer identifier."""
        return await self.resolver.get_issuer()

    async def get_verification_keys(self) -> dict[str, Any]:
        """Get the provider's signing keys indexed by key id."""
        return await self.key_store.get_verification_keys()

    # ========================================
    # URLs
    # ========================================

    @property
    def default_scopes(self) -> list[str]:
        """Scopes requested when the caller does not choose any."""
        return list(DEFAULT_SCOPES)

    async def base_authorization_url(self) -> str:
        """Get the provider's authorization endpoint."""
        return await self.urls.base_authorization_url()

    async def authorization_url(self, params: Mapping[str, Any] | None = None) -> str:
        """Build the authorization URL (state and nonce are mandatory)."""
        return await self.urls.authorization_url(params)

    async def end_session_url(
        self,
        post_logout_redirect_uri: str | None = None,
        state: str | None = None,
        id_token_hint: str | None = None,
    ) -> str:
        """Build the logout URL."""
        return await self.urls.end_session_url(post_logout_redirect_uri, state, id_token_hint)

    async def access_token_endpoint(self) -> str:
        """Get the provider's token endpoint."""
        return await self.urls.access_token_endpoint()

    async def resource_owner_details_endpoint(self) -> str:
        """Get the provider's userinfo endpoint."""
        return await self.urls.resource_owner_details_endpoint()

    def generate_state(self, length: int = 32) -> str:
        """Generate a random state parameter."""
        return generate_random_state(length)

    def generate_nonce(self, length: int = 32) -> str:
        """Generate a random nonce parameter."""
        return generate_random_state(length)

    # ========================================
    # Tokens
    # ========================================

    async def validate_id_token(self, id_token: str, nonce: str) -> IdTokenClaims:
        """Validate an ID token (see TokenValidator.validate)."""
        return await self.validator.validate(id_token, nonce)

    async def get_id_token(self, code: str) -> str:
        """Exchange an authorization code for an ID token.

        Posts the code with the client credentials to the token endpoint
        exactly once.

        Args:
            code: Authorization code received on the redirect URI

        Returns:
            The raw ID token (validate it with validate_id_token)

        Raises:
            CodeExchangeError: If the request fails or returns no ID token
        """
        try:
            endpoint = await self.resolver.get_endpoint(TOKEN_ENDPOINT)
            status_code, payload = await post_form(
                endpoint,
                {
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "redirect_uri": self.config.redirect_uri,
                    "grant_type": "authorization_code",
                    "code": code,
                },
                self._http_client,
                self._timeout_seconds,
            )
        except OpenIdConnectError as e:
            record_code_exchange("error")
            raise CodeExchangeError(f"Get ID token failed: {e.message}") from e

        error = payload.get("error") if isinstance(payload, dict) else None
        if error or status_code != 200:
            record_code_exchange("error")
            detail = error if isinstance(error, str) else str(error or status_code)
            logger.error(
                "Authorization code exchange failed",
                extra={"status_code": status_code, "error": detail},
            )
            raise CodeExchangeError(
                f"Get ID token failed: {detail}",
                context={"status_code": status_code, "error": detail},
            )

        id_token = payload.get("id_token") if isinstance(payload, dict) else None
        if not isinstance(id_token, str) or not id_token:
            record_code_exchange("error")
            raise CodeExchangeError("Get ID token failed: response contains no id_token")

        record_code_exchange("success")
        logger.info("Authorization code exchanged for ID token")
        return id_token
