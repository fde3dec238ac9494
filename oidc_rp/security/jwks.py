"""JWKS (JSON Web Key Set) fetching and caching.

Signing keys are fetched from the provider's ``jwks_uri`` (found through the
discovery document), converted to RSA verification keys indexed by key id
and cached as a serializable snapshot with the configured TTL.

Only RSA keys are supported. A key set containing any other key type is
rejected as a whole: nothing from that document is cached.
"""

import base64
import binascii
import logging
import time
from typing import Any

import httpx
from authlib.jose import RSAKey
from cryptography.hazmat.primitives.asymmetric import rsa

from oidc_rp.config import ProviderConfig
from oidc_rp.domain.exceptions import DecodeError, OpenIdConnectError, UnsupportedKeyTypeError
from oidc_rp.domain.models import JWKS_URI, RawKeySet
from oidc_rp.infra.cache import CacheStore
from oidc_rp.infra.http import DEFAULT_TIMEOUT_SECONDS, fetch_json
from oidc_rp.infra.observability.metrics import record_cache_lookup, record_document_fetch
from oidc_rp.security.discovery import (
    JWKS_DOCUMENT,
    MetadataResolver,
    cache_get,
    cache_key,
    cache_set,
)

logger = logging.getLogger(__name__)

_URLSAFE_TO_STANDARD = str.maketrans("-_", "+/")


def base64url_decode(value: str) -> bytes:
    """Decode base64url input, with or without padding.

    Accepts the URL-safe alphabet (``-`` and ``_`` in place of ``+`` and
    ``/``). Unlike ``base64.urlsafe_b64decode``, characters outside the
    alphabet are an error instead of being silently discarded.

    Args:
        value: base64url-encoded string

    Returns:
        Decoded bytes

    Raises:
        DecodeError: If value is not valid base64url
    """
    if not isinstance(value, str):
        raise DecodeError(f"Error url decoding input {value!r}")

    stripped = value.rstrip("=")
    if len(stripped) % 4 == 1:
        raise DecodeError(f"Error url decoding input {value}")

    padded = stripped.translate(_URLSAFE_TO_STANDARD) + "=" * (-len(stripped) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Error url decoding input {value}") from e


def build_rsa_key(kid: str, n: str, e: str) -> RSAKey:
    """Build an RSA verification key from base64url modulus and exponent.

    Args:
        kid: Key id (for error messages)
        n: base64url-encoded modulus
        e: base64url-encoded public exponent

    Returns:
        Authlib RSA public key

    Raises:
        DecodeError: If either number is malformed or not a valid RSA key
    """
    modulus = base64url_decode(n)
    exponent = base64url_decode(e)
    if not modulus or not exponent:
        raise DecodeError(f"Empty RSA key material for key id: {kid}", context={"kid": kid})

    try:
        public_key = rsa.RSAPublicNumbers(
            int.from_bytes(exponent, "big"), int.from_bytes(modulus, "big")
        ).public_key()
    except ValueError as err:
        raise DecodeError(f"Invalid RSA key for key id: {kid}", context={"kid": kid}) from err

    return RSAKey.import_key(public_key, {"kid": kid})


def parse_key_set(jwks: Any) -> RawKeySet:
    """Validate a JWKS document and reduce it to its RSA key material.

    Args:
        jwks: Decoded JWKS JSON document

    Returns:
        Mapping of kid to {"kty": "RSA", "n": ..., "e": ...}

    Raises:
        UnsupportedKeyTypeError: If any key is not an RSA key
        DecodeError: If the document or a key is malformed
    """
    if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
        raise DecodeError("JWKS document has no keys array")

    raw_keys: RawKeySet = {}
    for key_data in jwks["keys"]:
        if not isinstance(key_data, dict) or "kid" not in key_data:
            raise DecodeError("JWKS key is missing kid")

        kid = str(key_data["kid"])
        kty = key_data.get("kty")
        if kty != "RSA":
            raise UnsupportedKeyTypeError(kid, kty)

        n = key_data.get("n")
        e = key_data.get("e")
        if not isinstance(n, str) or not isinstance(e, str):
            raise DecodeError(f"RSA key is missing n or e for key id: {kid}", context={"kid": kid})

        # Decoding here rejects malformed material before anything is cached
        build_rsa_key(kid, n, e)
        raw_keys[kid] = {"kty": "RSA", "n": n, "e": e}

    return raw_keys


def materialize_keys(raw_keys: RawKeySet) -> dict[str, RSAKey]:
    """Convert a cached key snapshot into verification keys."""
    return {kid: build_rsa_key(kid, data["n"], data["e"]) for kid, data in raw_keys.items()}


class KeyStore:
    """Provides the provider's JWT verification keys, indexed by key id.

    Example:
        key_store = KeyStore(config, cache, resolver)
        keys = await key_store.get_verification_keys()
        key = keys["X5eXk4xyojNFum1kl2Ytv8dlNP4-c57dO6QGTVBwaNk"]
    """

    def __init__(
        self,
        config: ProviderConfig,
        cache: CacheStore,
        resolver: MetadataResolver,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize key store.

        Args:
            config: Provider configuration
            cache: Cache store for the key set
            resolver: Metadata resolver used to find jwks_uri
            http_client: Optional HTTP client for testing
            timeout_seconds: Request timeout when no client is injected
        """
        self.config = config
        self._cache = cache
        self._resolver = resolver
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds
        self.cache_key = cache_key(config.metadata_url, JWKS_DOCUMENT)

    async def get_verification_keys(self) -> dict[str, RSAKey]:
        """Get verification keys, from cache or the provider.

        Returns:
            Mapping of key id to RSA verification key

        Raises:
            CacheError: If the cache backend fails
            TransportError: If the JWKS cannot be fetched
            DecodeError: If the JWKS is malformed
            UnsupportedKeyTypeError: If the JWKS holds a non-RSA key
            MissingConfigurationKeyError: If discovery lacks jwks_uri
        """
        cached = await cache_get(self._cache, self.cache_key)
        if cached is not None:
            record_cache_lookup(JWKS_DOCUMENT, hit=True)
            logger.debug("JWKS cache hit", extra={"cache_key": self.cache_key})
            return materialize_keys(cached)

        record_cache_lookup(JWKS_DOCUMENT, hit=False)
        raw_keys = await self._fetch_key_set()
        await cache_set(self._cache, self.cache_key, raw_keys, self.config.cache_duration_seconds)
        return materialize_keys(raw_keys)

    async def _fetch_key_set(self) -> RawKeySet:
        jwks_uri = await self._resolver.get_endpoint(JWKS_URI)

        start_time = time.time()
        try:
            raw_keys = parse_key_set(
                await fetch_json(jwks_uri, self._http_client, self._timeout_seconds)
            )
        except OpenIdConnectError as e:
            record_document_fetch(JWKS_DOCUMENT, "error", time.time() - start_time)
            logger.error(
                "Failed to fetch JWKS",
                extra={"url": jwks_uri, "error": e.message, **_kid_extra(e)},
            )
            raise

        record_document_fetch(JWKS_DOCUMENT, "success", time.time() - start_time)
        logger.info("JWKS fetched", extra={"url": jwks_uri, "key_count": len(raw_keys)})
        return raw_keys


def _kid_extra(error: OpenIdConnectError) -> dict[str, Any]:
    kid = error.context.get("kid")
    return {"kid": kid} if kid is not None else {}
