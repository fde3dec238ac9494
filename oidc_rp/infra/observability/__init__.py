"""Observability infrastructure for the OIDC relying-party helper.

Provides structured logging and Prometheus metrics.
"""

from oidc_rp.infra.observability.logging import (
    TEXT_FORMAT,
    CorrelationIDFilter,
    JSONFormatter,
    correlation_id_var,
    get_correlation_id,
    set_correlation_id,
    setup_logging,
)
from oidc_rp.infra.observability.metrics import (
    get_metrics_text,
    get_registry,
    record_cache_lookup,
    record_code_exchange,
    record_document_fetch,
    record_id_token_validation,
)

__all__ = [
    # Logging
    "correlation_id_var",
    "get_correlation_id",
    "set_correlation_id",
    "CorrelationIDFilter",
    "JSONFormatter",
    "TEXT_FORMAT",
    "setup_logging",
    # Metrics
    "get_registry",
    "get_metrics_text",
    "record_cache_lookup",
    "record_document_fetch",
    "record_id_token_validation",
    "record_code_exchange",
]
