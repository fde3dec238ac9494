"""Prometheus metrics for observability.

Counts cache lookups, remote document fetches, ID token validations and
authorization-code exchanges. Metrics live in a private registry so that
embedding applications can expose them alongside their own.
"""

import logging

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global registry for metrics
_registry = CollectorRegistry()


# Cache Metrics
cache_lookups_total = Counter(
    "oidc_rp_cache_lookups_total",
    "Total number of discovery/JWKS cache lookups",
    ["document", "result"],
    registry=_registry,
)

# Remote Document Metrics
document_fetches_total = Counter(
    "oidc_rp_document_fetches_total",
    "Total number of discovery/JWKS document fetches",
    ["document", "status"],
    registry=_registry,
)

document_fetch_duration_seconds = Histogram(
    "oidc_rp_document_fetch_duration_seconds",
    "Duration of discovery/JWKS document fetches in seconds",
    ["document"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=_registry,
)

# ID Token Metrics
id_token_validations_total = Counter(
    "oidc_rp_id_token_validations_total",
    "Total number of ID token validations",
    ["status", "reason"],
    registry=_registry,
)

code_exchanges_total = Counter(
    "oidc_rp_code_exchanges_total",
    "Total number of authorization code exchanges",
    ["status"],
    registry=_registry,
)


def record_cache_lookup(document: str, hit: bool) -> None:
    """Record a cache lookup.

    Args:
        document: Cached document name (configuration or jwks)
        hit: Whether the lookup was a hit
    """
    cache_lookups_total.labels(document=document, result="hit" if hit else "miss").inc()


def record_document_fetch(document: str, status: str, duration: float) -> None:
    """Record a remote document fetch.

    Args:
        document: Fetched document name (configuration or jwks)
        status: Fetch status (success/error)
        duration: Fetch duration in seconds
    """
    document_fetches_total.labels(document=document, status=status).inc()
    document_fetch_duration_seconds.labels(document=document).observe(duration)


def record_id_token_validation(status: str, reason: str = "ok") -> None:
    """Record an ID token validation outcome.

    Args:
        status: success or failure
        reason: Short failure reason (e.g. "token_expired", "aud")
    """
    id_token_validations_total.labels(status=status, reason=reason).inc()


def record_code_exchange(status: str) -> None:
    """Record an authorization code exchange outcome."""
    code_exchanges_total.labels(status=status).inc()


def get_registry() -> CollectorRegistry:
    """Get the metrics registry.

    Returns:
        Prometheus CollectorRegistry
    """
    return _registry


def get_metrics_text() -> str:
    """Render all metrics in Prometheus text exposition format."""
    return generate_latest(_registry).decode("utf-8")


__all__ = [
    "get_registry",
    "get_metrics_text",
    "record_cache_lookup",
    "record_document_fetch",
    "record_id_token_validation",
    "record_code_exchange",
]
