"""Billing component provider.

Drives an external, synchronous billing component (the vendor's invoice
manager) through the typed ``BillingComponent`` protocol. The component
factory is published by the vendor package as a packaging entry point in the
``invoice_sync.billing_components`` group and selected with
``BILLING_SYSTEM_COMPONENT``.

Every operation initializes a fresh component with ``BILLING_SYSTEM_CONFIG``,
runs in a worker thread and disposes the component afterwards, success or
not.
"""

import asyncio
import json
from datetime import date
from importlib.metadata import entry_points
from typing import Callable, List, Optional, TypeVar

from typing_extensions import Protocol, runtime_checkable

from connectors.billing.base import BillingSystemProvider, register_billing_provider
from core.config import IntegrationSettings
from core.errors import BillingSystemError, ConfigurationError
from core.models.customer import BillingSystemCustomer
from core.models.invoice import FetchedInvoice, RejectedInvoice, parse_source_invoice
from core.observability.logging import get_logger


logger = get_logger(__name__)

ENTRY_POINT_GROUP = "invoice_sync.billing_components"

T = TypeVar("T")


@runtime_checkable
class BillingComponent(Protocol):
    """Operations the external billing component exposes.

    Dates are passed as ``yyyy-MM-dd`` strings, invoices come back as a JSON
    array of PascalCase invoice objects.
    """

    def initialize(self, config: str) -> None: ...

    def get_invoices_for_date_range(
        self, start_date: str, end_date: str, include_processed: bool
    ) -> str: ...

    def update_invoice_erp_reference(self, invoice_number: str, erp_reference: str) -> bool: ...

    def upsert_customer(self, customer_json: str) -> bool: ...

    def get_last_error(self) -> str: ...

    def dispose(self) -> None: ...


ComponentFactory = Callable[[], BillingComponent]


def load_component_factory(name: str) -> ComponentFactory:
    """Resolve a component factory from the installed entry points.

    Raises:
        ConfigurationError: If no distribution publishes ``name`` or it fails to import
    """
    matches = entry_points(group=ENTRY_POINT_GROUP, name=name)
    for ep in matches:
        try:
            return ep.load()
        except Exception as e:
            raise ConfigurationError(
                f"Cannot load billing component {name!r} ({ep.value}): {type(e).__name__}: {e}"
            ) from e

    available = sorted(ep.name for ep in entry_points(group=ENTRY_POINT_GROUP))
    raise ConfigurationError(
        f"No billing component named {name!r} in entry point group {ENTRY_POINT_GROUP}. "
        f"Available: {available}"
    )


@register_billing_provider("component")
class ComponentBillingProvider(BillingSystemProvider):
    """Billing provider backed by an external billing component.

    Usage:
        provider = ComponentBillingProvider(factory, config_json)
        invoices = await provider.fetch_unprocessed_invoices(start, end)
    """

    def __init__(self, component_factory: ComponentFactory, config: str):
        """Initialize provider.

        Args:
            component_factory: Zero-argument callable returning a new component
            config: Opaque connection blob passed to ``initialize``
        """
        self.component_factory = component_factory
        self.config = config

    @classmethod
    def from_settings(cls, settings: IntegrationSettings) -> "ComponentBillingProvider":
        if not settings.billing_system_config:
            raise ConfigurationError("BILLING_SYSTEM_CONFIG is required for the component provider")
        return cls(
            component_factory=load_component_factory(settings.billing_system_component),
            config=settings.billing_system_config,
        )

    def _with_component(self, operation: Callable[[BillingComponent], T]) -> T:
        """Run one operation on a freshly initialized component (worker thread)."""
        component = self.component_factory()
        try:
            component.initialize(self.config)
            return operation(component)
        finally:
            try:
                component.dispose()
            except Exception as e:
                logger.warning(f"Failed to dispose billing component: {e}")

    @staticmethod
    def _last_error(component: BillingComponent) -> str:
        return component.get_last_error() or "unknown error"

    async def _call(self, operation: Callable[[BillingComponent], T]) -> T:
        try:
            return await asyncio.to_thread(self._with_component, operation)
        except BillingSystemError:
            raise
        except Exception as e:
            raise BillingSystemError(f"Billing system error: {e}") from e

    async def fetch_unprocessed_invoices(
        self,
        start_date: date,
        end_date: date,
    ) -> List[FetchedInvoice]:
        def fetch(component: BillingComponent) -> str:
            return component.get_invoices_for_date_range(
                start_date.isoformat(), end_date.isoformat(), False
            )

        invoices_json = await self._call(fetch)
        invoices = self._parse_invoices(invoices_json)

        unprocessed = [invoice for invoice in invoices if not invoice.is_processed]
        if len(unprocessed) != len(invoices):
            logger.warning(
                "Billing component returned already processed invoices, skipping them",
                extra_fields={"skipped": len(invoices) - len(unprocessed)},
            )
        return unprocessed

    @staticmethod
    def _parse_invoices(invoices_json: Optional[str]) -> List[FetchedInvoice]:
        """Parse the component payload.

        Only an unreadable payload raises. Records that fail validation come
        back as RejectedInvoice so they fail alone.
        """
        if not invoices_json:
            return []
        try:
            data = json.loads(invoices_json)
        except json.JSONDecodeError as e:
            raise BillingSystemError(f"Billing system returned invalid JSON: {e}") from e
        if data is None:
            return []
        if not isinstance(data, list):
            raise BillingSystemError("Billing system returned a non-list invoice payload")
        invoices = [parse_source_invoice(item) for item in data]
        for invoice in invoices:
            if isinstance(invoice, RejectedInvoice):
                logger.warning(
                    f"Billing system returned an invalid invoice {invoice.invoice_number}: {invoice.error}"
                )
        return invoices

    async def write_back_reference(self, invoice_number: str, erp_reference: str) -> None:
        def update(component: BillingComponent) -> None:
            if not component.update_invoice_erp_reference(invoice_number, erp_reference):
                raise BillingSystemError(f"Billing system error: {self._last_error(component)}")

        await self._call(update)

    async def upsert_customer(self, customer: BillingSystemCustomer) -> None:
        def upsert(component: BillingComponent) -> None:
            if not component.upsert_customer(customer.to_billing_json()):
                raise BillingSystemError(f"Billing system error: {self._last_error(component)}")

        await self._call(upsert)
