"""OIDC discovery document resolution.

Fetches the provider's well-known metadata document once per cache lifetime
and answers endpoint lookups from the cached snapshot:

1. Compute a cache key derived from the metadata URL
2. On a hit, use the cached document (no HTTP request)
3. On a miss, GET the metadata URL, require HTTP 200 and a JSON object,
   store it with the configured TTL, then use it
"""

import hashlib
import logging
import time
from typing import Any

import httpx

from oidc_rp.config import ProviderConfig
from oidc_rp.domain.exceptions import (
    CacheError,
    DecodeError,
    MissingConfigurationKeyError,
    OpenIdConnectError,
)
from oidc_rp.domain.models import ISSUER, DiscoveryDocument
from oidc_rp.infra.cache import CacheStore, CacheStoreError
from oidc_rp.infra.http import DEFAULT_TIMEOUT_SECONDS, fetch_json
from oidc_rp.infra.observability.metrics import record_cache_lookup, record_document_fetch

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "oidc-rp-openid-connect-configuration-"

CONFIGURATION_DOCUMENT = "configuration"
JWKS_DOCUMENT = "jwks"


def cache_key(metadata_url: str, name: str) -> str:
    """Build the cache key for a document belonging to one provider.

    Keys embed a SHA-1 of the metadata URL, so providers pointed at
    different metadata URLs never collide in a shared cache.

    Args:
        metadata_url: Provider metadata URL
        name: Document tag ("configuration" or "jwks")

    Returns:
        Cache key string
    """
    digest = hashlib.sha1(metadata_url.encode("utf-8")).hexdigest()
    return "||".join([CACHE_KEY_PREFIX, digest, name])


async def cache_get(cache: CacheStore, key: str) -> Any | None:
    """Read from the cache store, wrapping backend errors in CacheError."""
    try:
        return await cache.get(key)
    except CacheStoreError as e:
        raise CacheError(f"Cache read failed: {e}", context={"cache_key": key}) from e


async def cache_set(cache: CacheStore, key: str, value: Any, ttl_seconds: int) -> None:
    """Write to the cache store, wrapping backend errors in CacheError."""
    try:
        await cache.set(key, value, ttl_seconds)
    except CacheStoreError as e:
        raise CacheError(f"Cache write failed: {e}", context={"cache_key": key}) from e


class MetadataResolver:
    """Resolves endpoint URLs from the provider's discovery document.

    Example:
        resolver = MetadataResolver(config, cache)
        authorize = await resolver.get_endpoint("authorization_endpoint")
        issuer = await resolver.get_issuer()
    """

    def __init__(
        self,
        config: ProviderConfig,
        cache: CacheStore,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize metadata resolver.

        Args:
            config: Provider configuration
            cache: Cache store for the discovery document
            http_client: Optional HTTP client for testing
            timeout_seconds: Request timeout when no client is injected
        """
        self.config = config
        self._cache = cache
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds
        self.cache_key = cache_key(config.metadata_url, CONFIGURATION_DOCUMENT)

    async def get_configuration(self) -> DiscoveryDocument:
        """Get the discovery document, from cache or the provider.

        Returns:
            Decoded discovery document

        Raises:
            CacheError: If the cache backend fails
            TransportError: If the metadata URL cannot be fetched
            DecodeError: If the response is not a JSON object
        """
        cached = await cache_get(self._cache, self.cache_key)
        if cached is not None:
            record_cache_lookup(CONFIGURATION_DOCUMENT, hit=True)
            logger.debug("Discovery document cache hit", extra={"cache_key": self.cache_key})
            return dict(cached)

        record_cache_lookup(CONFIGURATION_DOCUMENT, hit=False)
        document = await self._fetch_configuration()
        await cache_set(
            self._cache, self.cache_key, document, self.config.cache_duration_seconds
        )
        return document

    async def get_endpoint(self, name: str) -> str:
        """Look up a single value in the discovery document.

        Args:
            name: Document key (e.g. "token_endpoint", "jwks_uri")

        Returns:
            The key's string value

        Raises:
            MissingConfigurationKeyError: If the document lacks the key
            DecodeError: If the value is not a string
            CacheError, TransportError: If the document cannot be loaded
        """
        document = await self.get_configuration()

        if name not in document or document[name] is None:
            raise MissingConfigurationKeyError(name)

        value = document[name]
        if not isinstance(value, str):
            raise DecodeError(
                f"Config key {name} is not a string",
                context={"key": name, "type": type(value).__name__},
            )
        return value

    async def get_issuer(self) -> str:
        """Get the issuer identifier advertised by the provider."""
        return await self.get_endpoint(ISSUER)

    async def _fetch_configuration(self) -> DiscoveryDocument:
        url = self.config.metadata_url
        start_time = time.time()
        try:
            document = await fetch_json(url, self._http_client, self._timeout_seconds)
            if not isinstance(document, dict):
                raise DecodeError(
                    f"Discovery document is not a JSON object: {url}", context={"url": url}
                )
        except OpenIdConnectError as e:
            record_document_fetch(CONFIGURATION_DOCUMENT, "error", time.time() - start_time)
            logger.error(
                "Failed to fetch discovery document",
                extra={"metadata_url": url, "error": e.message},
            )
            raise

        record_document_fetch(CONFIGURATION_DOCUMENT, "success", time.time() - start_time)
        logger.info(
            "Discovery document fetched",
            extra={"metadata_url": url, "key_count": len(document)},
        )
        return document
