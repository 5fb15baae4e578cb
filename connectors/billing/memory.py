"""In-memory billing provider.

Keeps invoices and customers in process memory. Used by the test-suite and
for local runs without a billing component (``BILLING_SYSTEM_PROVIDER=memory``).
It can be seeded from a JSON file: ``BILLING_SYSTEM_CONFIG={"seed_file": "invoices.json"}``
where the file holds a JSON array of billing invoices.
"""

import json
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pydantic

from connectors.billing.base import BillingSystemProvider, register_billing_provider
from core.config import IntegrationSettings
from core.errors import BillingSystemError, ConfigurationError
from core.models.customer import BillingSystemCustomer
from core.models.invoice import SourceInvoice


@register_billing_provider("memory")
class InMemoryBillingProvider(BillingSystemProvider):
    """Billing provider over a dict of invoices keyed by invoice number."""

    def __init__(self, invoices: Optional[Iterable[SourceInvoice]] = None):
        self.invoices: Dict[str, SourceInvoice] = {}
        self.customers: Dict[str, BillingSystemCustomer] = {}
        self.write_backs: List[tuple] = []
        for invoice in invoices or []:
            self.add_invoice(invoice)

    @classmethod
    def from_settings(cls, settings: IntegrationSettings) -> "InMemoryBillingProvider":
        config = settings.billing_system_config_json()
        seed_file = config.get("seed_file")
        if not seed_file:
            return cls()
        return cls.from_seed_file(Path(seed_file))

    @classmethod
    def from_seed_file(cls, path: Path) -> "InMemoryBillingProvider":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read billing seed file {path}: {e}") from e
        if not isinstance(data, list):
            raise ConfigurationError(f"Billing seed file {path} must contain a JSON array")
        try:
            invoices = [SourceInvoice.model_validate(item) for item in data]
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Billing seed file {path} holds an invalid invoice: {e}") from e
        return cls(invoices)

    def add_invoice(self, invoice: SourceInvoice) -> None:
        if not invoice.invoice_number:
            raise ValueError("Seed invoices need an invoice number")
        self.invoices[invoice.invoice_number] = invoice

    async def fetch_unprocessed_invoices(
        self,
        start_date: date,
        end_date: date,
    ) -> List[SourceInvoice]:
        result = []
        for invoice in self.invoices.values():
            if invoice.is_processed:
                continue
            if invoice.invoice_date is not None and not (start_date <= invoice.invoice_date <= end_date):
                continue
            result.append(invoice.model_copy(deep=True))
        return result

    async def write_back_reference(self, invoice_number: str, erp_reference: str) -> None:
        invoice = self.invoices.get(invoice_number)
        if invoice is None:
            raise BillingSystemError(f"Billing system error: invoice {invoice_number} not found")
        self.invoices[invoice_number] = invoice.model_copy(update={"erp_reference": erp_reference})
        self.write_backs.append((invoice_number, erp_reference))

    async def upsert_customer(self, customer: BillingSystemCustomer) -> None:
        self.customers[customer.customer_code] = customer
