"""
Observability Module for the Billing <-> ERP Integration

Provides:
- Structured logging with correlation IDs (run, invoice, stage, trigger)
- JSON and human-readable formatters
"""

from core.observability.logging import (
    get_logger,
    configure_logging,
    configure_logging_from_settings,
    CorrelationContext,
    get_correlation_context,
    with_correlation,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "configure_logging_from_settings",
    "CorrelationContext",
    "get_correlation_context",
    "with_correlation",
]
