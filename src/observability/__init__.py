"""Logging and correlation helpers"""

from .correlation import (
    CorrelationIdFilter,
    configure_logging,
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
)

__all__ = [
    "CorrelationIdFilter",
    "configure_logging",
    "correlation_scope",
    "generate_correlation_id",
    "get_correlation_id",
]
