"""Abstract ERP Gateway Interface.

This module defines the interface the sync engine uses to submit invoices to
an ERP. It is intentionally ERP-agnostic - no D365 specifics here.

Gateways implement this interface to:
1. Authenticate with their ERP (and keep the token cached for the run)
2. Submit a mapped TargetInvoice
3. Return the ERP-assigned invoice id, or raise SubmissionError

Key Design Principles:
- The sync engine and the trigger surfaces depend ONLY on this interface
- Gateways never retry beyond the single token refresh on 401; bounded
  retry of transient failures is the engine's job (see RetryConfig)
- ERP-specific implementations live in connector subfolders
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Type

from core.config import IntegrationSettings
from core.errors import ConfigurationError, SubmissionError
from core.models.invoice import TargetInvoice


# =============================================================================
# Retry Policy
# =============================================================================

@dataclass(frozen=True)
class RetryConfig:
    """Bounded retry for transient submission failures.

    ``max_retries`` counts retries after the first attempt, so a submit is
    attempted at most ``max_retries + 1`` times.
    """
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt (exponential backoff)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Only retryable SubmissionErrors are retried, and only while attempts remain."""
        if attempt >= self.max_retries:
            return False
        return isinstance(error, SubmissionError) and error.retryable

    @classmethod
    def from_settings(cls, settings: IntegrationSettings) -> "RetryConfig":
        return cls(
            max_retries=max(0, settings.max_retry_attempts),
            base_delay=settings.retry_base_delay_seconds,
        )


# =============================================================================
# Abstract Gateway Interface
# =============================================================================

class ERPGateway(ABC):
    """Abstract base class for ERP gateways.

    Usage:
        async with create_erp_gateway(settings) as gateway:
            erp_invoice_id = await gateway.submit_invoice(target)

    Implementations:
    - connectors/dynamics/d365_gateway.py
    """

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: IntegrationSettings) -> "ERPGateway":
        """Build the gateway from integration settings."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Open network resources (HTTP session)."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Release network resources."""
        pass

    @abstractmethod
    async def submit_invoice(self, invoice: TargetInvoice) -> str:
        """Create the invoice in the ERP.

        Args:
            invoice: Mapped invoice

        Returns:
            ERP invoice id

        Raises:
            SubmissionError: Rejected or unreachable (``retryable`` marks transient cases)
            AuthenticationError: Token could not be obtained or was rejected twice
        """
        pass

    async def __aenter__(self) -> "ERPGateway":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()


# =============================================================================
# Gateway Factory
# =============================================================================

_gateway_registry: Dict[str, Type[ERPGateway]] = {}


def register_erp_gateway(gateway_type: str):
    """Decorator to register a gateway implementation."""
    def decorator(cls):
        _gateway_registry[gateway_type.lower()] = cls
        return cls
    return decorator


def create_erp_gateway(settings: IntegrationSettings) -> ERPGateway:
    """Create a gateway instance from settings (``ERP_CONNECTOR``).

    Raises:
        ConfigurationError: If the connector type is not registered
    """
    gateway_type = settings.erp_connector.lower()

    if gateway_type not in _gateway_registry:
        available = list(_gateway_registry.keys())
        raise ConfigurationError(
            f"Unknown ERP connector: {gateway_type}. "
            f"Available: {available}"
        )

    return _gateway_registry[gateway_type].from_settings(settings)


def list_available_gateways() -> List[str]:
    """List all registered gateway types."""
    return list(_gateway_registry.keys())
