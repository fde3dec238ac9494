"""HTTP helpers for fetching provider documents and posting token requests.

Every request is attempted exactly once. Timeouts are a property of the
client (or of ``timeout_seconds`` when no client is injected). A caller-owned
``httpx.AsyncClient`` is reused and never closed here.
"""

import json
import logging
from typing import Any

import httpx

from oidc_rp.domain.exceptions import DecodeError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


async def fetch_json(
    url: str,
    http_client: httpx.AsyncClient | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> Any:
    """GET a JSON resource.

    Args:
        url: Resource URL
        http_client: Optional HTTP client (tests, connection reuse)
        timeout_seconds: Timeout used when no client is injected

    Returns:
        Decoded JSON value

    Raises:
        TransportError: On network failure, an unusable URL or a status other than 200
        DecodeError: If the body is not valid JSON
    """
    client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
    try:
        logger.debug("Fetching json resource", extra={"url": url})
        response = await client.get(url)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise TransportError(
            f"HTTP request failed: {url}: {e}", context={"url": url}
        ) from e
    finally:
        if not http_client:
            await client.aclose()

    if response.status_code != 200:
        raise TransportError(
            f"Cannot access json resource: {url}",
            context={"url": url, "status_code": response.status_code},
        )

    return _decode_json(response, url)


async def post_form(
    url: str,
    form_params: dict[str, str],
    http_client: httpx.AsyncClient | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> tuple[int, Any]:
    """POST form parameters and decode the JSON response.

    Args:
        url: Endpoint URL
        form_params: Form fields (sent as application/x-www-form-urlencoded)
        http_client: Optional HTTP client
        timeout_seconds: Timeout used when no client is injected

    Returns:
        Tuple of (status_code, decoded JSON body)

    Raises:
        TransportError: On network failure or an unusable URL
        DecodeError: If the body is not valid JSON
    """
    client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
    try:
        logger.debug("Posting form", extra={"url": url})
        response = await client.post(
            url,
            data=form_params,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise TransportError(
            f"HTTP request failed: {url}: {e}", context={"url": url}
        ) from e
    finally:
        if not http_client:
            await client.aclose()

    return response.status_code, _decode_json(response, url)


def _decode_json(response: httpx.Response, url: str) -> Any:
    try:
        return json.loads(response.content)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(
            f"Invalid JSON in response from {url}: {e}", context={"url": url}
        ) from e
