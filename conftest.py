"""Shared fixtures and fakes for the test-suite."""

import asyncio
from datetime import date
from typing import Any, Dict, List, Optional

import pytest

from connectors.billing.memory import InMemoryBillingProvider
from connectors.erp_base import ERPGateway, RetryConfig
from core.config import IntegrationSettings
from core.errors import SubmissionError
from core.models.invoice import SourceInvoice, TargetInvoice
from invoice_sync.engine import InvoiceSyncEngine
from invoice_sync.escalation import NotificationSeverity, Notifier


def make_invoice(number: str = "INV-001", invoice_date: str = "2024-01-15", **overrides) -> SourceInvoice:
    """Billing invoice in the billing system's JSON shape."""
    data: Dict[str, Any] = {
        "InvoiceNumber": number,
        "CustomerCode": "CUST-001",
        "InvoiceDate": invoice_date,
        "DueDate": "2024-02-14",
        "CurrencyCode": "USD",
        "TotalAmount": 107.0,
        "TaxAmount": 7.0,
        "LineItems": [
            {
                "ProductCode": "PROD-1",
                "Description": "Widget",
                "Quantity": 2,
                "UnitPrice": 50.0,
                "DiscountAmount": 0,
                "TaxAmount": 7.0,
                "TaxRate": 7,
            }
        ],
        "ERPReference": None,
    }
    data.update(overrides)
    return SourceInvoice.model_validate(data)


class FakeERPGateway(ERPGateway):
    """ERP gateway that answers from a script of results per invoice number.

    A scripted entry is either an ERP id (str) or an exception to raise; the
    last entry repeats. Unscripted invoices succeed with ``D365-<number>``.
    """

    def __init__(self, script: Optional[Dict[str, List[Any]]] = None, delay: float = 0.0):
        self.script = script or {}
        self.delay = delay
        self.submitted: List[TargetInvoice] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @classmethod
    def from_settings(cls, settings):
        return cls()

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        return None

    async def submit_invoice(self, invoice: TargetInvoice) -> str:
        self.submitted.append(invoice)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            number = invoice.external_invoice_number
            results = self.script.get(number)
            if not results:
                return f"D365-{number}"
            result = results.pop(0) if len(results) > 1 else results[0]
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.in_flight -= 1

    def attempts_for(self, number: str) -> int:
        return sum(1 for t in self.submitted if t.external_invoice_number == number)


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.notifications: List[tuple] = []
        self.fail = fail

    async def notify(self, severity: NotificationSeverity, message: str, details=None) -> None:
        self.notifications.append((severity, message, details))
        if self.fail:
            raise RuntimeError("notification channel down")


async def no_sleep(delay: float) -> None:
    return None


def transient(message: str = "503 Service Unavailable") -> SubmissionError:
    return SubmissionError(message, status_code=503, retryable=True)


def rejected(message: str = "400 Bad Request") -> SubmissionError:
    return SubmissionError(message, status_code=400, retryable=False)


JAN_START = date(2024, 1, 1)
JAN_END = date(2024, 1, 31)


@pytest.fixture
def settings() -> IntegrationSettings:
    return IntegrationSettings.from_env({
        "D365_API_URL": "https://contoso.operations.dynamics.com",
        "D365_TENANT_ID": "tenant-id",
        "D365_CLIENT_ID": "client-id",
        "D365_CLIENT_SECRET": "super-secret",
        "BILLING_SYSTEM_PROVIDER": "memory",
    })


@pytest.fixture
def billing() -> InMemoryBillingProvider:
    return InMemoryBillingProvider([
        make_invoice("INV-001"),
        make_invoice("INV-002"),
        make_invoice("INV-003"),
    ])


@pytest.fixture
def erp() -> FakeERPGateway:
    return FakeERPGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_engine(billing, erp, notifier):
    def factory(**kwargs) -> InvoiceSyncEngine:
        options = {
            "billing": billing,
            "erp": erp,
            "notifier": notifier,
            "retry_config": RetryConfig(max_retries=3, base_delay=0.01),
            "sleep": no_sleep,
        }
        options.update(kwargs)
        return InvoiceSyncEngine(**options)
    return factory
