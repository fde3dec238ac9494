"""Authorization, logout and token endpoint URL building.

Authorization requests must carry both ``state`` (CSRF protection) and
``nonce`` (replay protection); requests without them are refused rather than
silently filled in.
"""

import base64
import logging
import secrets
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote, urlencode, urlsplit

from oidc_rp.config import ProviderConfig
from oidc_rp.domain.exceptions import MissingParameterError
from oidc_rp.domain.models import (
    AUTHORIZATION_ENDPOINT,
    END_SESSION_ENDPOINT,
    TOKEN_ENDPOINT,
    USERINFO_ENDPOINT,
)
from oidc_rp.security.discovery import MetadataResolver

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ["openid"]

# Defaults injected into every authorization request unless overridden
DEFAULT_AUTHORIZATION_PARAMS = {
    "scope": " ".join(DEFAULT_SCOPES),
    "response_type": "id_token",
    "response_mode": "query",
}

# RP-initiated logout parameters, in the order they are appended
POST_LOGOUT_REDIRECT_URI = "post_logout_redirect_uri"
STATE = "state"
ID_TOKEN_HINT = "id_token_hint"


def generate_random_state(length: int = 32) -> str:
    """Generate a cryptographically secure random string.

    Used for both the ``state`` and ``nonce`` authorization parameters.
    Characters are drawn from the base64url alphabet, which is safe in URLs
    without escaping.

    Args:
        length: Exact length of the returned string (default 32)

    Returns:
        Random URL-safe string of the requested length

    Raises:
        ValueError: If length is less than 1
    """
    if length < 1:
        raise ValueError("Random state length must be at least 1")

    random_bytes = secrets.token_bytes(length)
    value = base64.urlsafe_b64encode(random_bytes).rstrip(b"=").decode("ascii")
    return value[:length]


def append_query(url: str, params: Mapping[str, Any]) -> str:
    """Append query parameters to a URL.

    The join character is ``?`` when the URL has no query string yet and
    ``&`` otherwise. Values are percent-encoded per RFC 3986 (spaces become
    ``%20``). No parameters returns the URL unchanged.
    """
    if not params:
        return url
    glue = "&" if urlsplit(url).query else "?"
    return f"{url}{glue}{urlencode(params, quote_via=quote)}"


class UrlBuilder:
    """Builds redirect URLs from the discovered provider endpoints.

    Example:
        builder = UrlBuilder(config, resolver)
        url = await builder.authorization_url(
            {"state": generate_random_state(), "nonce": generate_random_state()}
        )
    """

    def __init__(self, config: ProviderConfig, resolver: MetadataResolver) -> None:
        """Initialize URL builder.

        Args:
            config: Provider configuration (client id, redirect URI)
            resolver: Metadata resolver for endpoint lookups
        """
        self.config = config
        self._resolver = resolver

    async def base_authorization_url(self) -> str:
        """Get the provider's authorization endpoint."""
        return await self._resolver.get_endpoint(AUTHORIZATION_ENDPOINT)

    async def authorization_url(self, params: Mapping[str, Any] | None = None) -> str:
        """Build the authorization request URL.

        ``scope``, ``response_type`` and ``response_mode`` default to
        ``openid``, ``id_token`` and ``query``; caller values override them.
        ``client_id`` and ``redirect_uri`` come from the configuration unless
        supplied. A list ``scope`` is joined with spaces. A ``None`` value
        removes the parameter from the query.

        Args:
            params: Request parameters; must include non-empty state and nonce

        Returns:
            Authorization URL to redirect the user agent to

        Raises:
            MissingParameterError: If state or nonce is missing or empty
        """
        params = dict(params or {})

        if not params.get("state"):
            raise MissingParameterError("state")
        if not params.get("nonce"):
            raise MissingParameterError("nonce")

        query: dict[str, Any] = dict(DEFAULT_AUTHORIZATION_PARAMS)
        query.update(params)

        if isinstance(query["scope"], (list, tuple)):
            query["scope"] = " ".join(query["scope"])

        if self.config.client_id:
            query.setdefault("client_id", self.config.client_id)
        if self.config.redirect_uri:
            query.setdefault("redirect_uri", self.config.redirect_uri)

        query = {name: value for name, value in query.items() if value is not None}
        return append_query(await self.base_authorization_url(), query)

    async def end_session_url(
        self,
        post_logout_redirect_uri: str | None = None,
        state: str | None = None,
        id_token_hint: str | None = None,
    ) -> str:
        """Build the RP-initiated logout URL.

        Only non-empty arguments are appended, in the order
        post_logout_redirect_uri, state, id_token_hint.

        Args:
            post_logout_redirect_uri: Where to send the user after sign-out
            state: Opaque value echoed back to the post-logout redirect
            id_token_hint: Previously issued ID token

        Returns:
            Logout URL (the bare end_session_endpoint without arguments)
        """
        url = await self._resolver.get_endpoint(END_SESSION_ENDPOINT)

        params: dict[str, str] = {}
        if post_logout_redirect_uri:
            params[POST_LOGOUT_REDIRECT_URI] = post_logout_redirect_uri
        if state:
            params[STATE] = state
        if id_token_hint:
            params[ID_TOKEN_HINT] = id_token_hint

        return append_query(url, params)

    async def access_token_endpoint(self) -> str:
        """Get the provider's token endpoint."""
        return await self._resolver.get_endpoint(TOKEN_ENDPOINT)

    async def resource_owner_details_endpoint(self) -> str:
        """Get the provider's userinfo endpoint."""
        return await self._resolver.get_endpoint(USERINFO_ENDPOINT)
