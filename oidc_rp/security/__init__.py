"""Security module for the OIDC relying-party helper.

Provides provider discovery, signing key retrieval, ID token validation and
redirect URL building:
- discovery: discovery document resolution (cached)
- jwks: JWKS retrieval and RSA key construction (cached)
- oidc: ID token validation
- urls: authorization/logout URL building and state/nonce generation
- provider: facade composing all of the above
"""

from oidc_rp.security.discovery import MetadataResolver, cache_key
from oidc_rp.security.jwks import KeyStore, base64url_decode
from oidc_rp.security.oidc import ALLOWED_ALGORITHMS, TokenValidator
from oidc_rp.security.provider import OpenIdConnectProvider
from oidc_rp.security.urls import UrlBuilder, generate_random_state

__all__ = [
    # Discovery
    "MetadataResolver",
    "cache_key",
    # Keys
    "KeyStore",
    "base64url_decode",
    # Validation
    "ALLOWED_ALGORITHMS",
    "TokenValidator",
    # URLs
    "UrlBuilder",
    "generate_random_state",
    # Facade
    "OpenIdConnectProvider",
]
