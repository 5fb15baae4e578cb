"""Billing System Provider Interface.

The billing system is the source of invoices and the place where the ERP
reference is written back once an invoice has been accepted by the ERP.
Providers are registered by name and selected with ``BILLING_SYSTEM_PROVIDER``.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, List, Type

from core.config import IntegrationSettings
from core.errors import ConfigurationError
from core.models.customer import BillingSystemCustomer
from core.models.invoice import FetchedInvoice


class BillingSystemProvider(ABC):
    """Abstract base class for billing system providers.

    Implementations:
    - connectors/billing/component.py (external billing component)
    - connectors/billing/memory.py (in-process store for tests and local runs)
    """

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: IntegrationSettings) -> "BillingSystemProvider":
        """Build the provider from integration settings."""
        pass

    async def connect(self) -> None:
        """Acquire resources held for the provider's lifetime (none by default)."""
        return None

    async def close(self) -> None:
        """Release resources acquired in connect()."""
        return None

    @abstractmethod
    async def fetch_unprocessed_invoices(
        self,
        start_date: date,
        end_date: date,
    ) -> List[FetchedInvoice]:
        """Invoices dated within [start_date, end_date] with no ERP reference.

        Records that fail validation are returned as RejectedInvoice rather
        than raised, so one bad record never aborts the run.

        Raises:
            BillingSystemError: If the billing system reports a failure
        """
        pass

    @abstractmethod
    async def write_back_reference(self, invoice_number: str, erp_reference: str) -> None:
        """Record the ERP invoice id on the billing invoice.

        Raises:
            BillingSystemError: If the billing system refuses the update
        """
        pass

    async def upsert_customer(self, customer: BillingSystemCustomer) -> None:
        """Create or update a customer.

        Raises:
            BillingSystemError: If the billing system refuses the upsert
        """
        raise NotImplementedError(f"{type(self).__name__} does not support customer upserts")

    async def __aenter__(self) -> "BillingSystemProvider":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


# =============================================================================
# Provider Factory
# =============================================================================

_provider_registry: Dict[str, Type[BillingSystemProvider]] = {}


def register_billing_provider(provider_type: str):
    """Decorator to register a billing provider implementation."""
    def decorator(cls):
        _provider_registry[provider_type.lower()] = cls
        return cls
    return decorator


def create_billing_provider(settings: IntegrationSettings) -> BillingSystemProvider:
    """Create a provider instance from settings (``BILLING_SYSTEM_PROVIDER``).

    Raises:
        ConfigurationError: If the provider type is not registered
    """
    provider_type = settings.billing_system_provider.lower()

    if provider_type not in _provider_registry:
        available = list(_provider_registry.keys())
        raise ConfigurationError(
            f"Unknown billing provider: {provider_type}. "
            f"Available: {available}"
        )

    return _provider_registry[provider_type].from_settings(settings)


def list_available_providers() -> List[str]:
    """List all registered billing provider types."""
    return list(_provider_registry.keys())
