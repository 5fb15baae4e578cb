"""Wiring of the sync engine from settings.

Trigger surfaces (HTTP route, Temporal activity) open an engine per run
through ``open_invoice_sync_engine``; the billing provider and ERP gateway
live exactly as long as the run.
"""

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from connectors import create_billing_provider, create_erp_gateway
from connectors.billing.base import BillingSystemProvider
from connectors.erp_base import ERPGateway
from core.config import IntegrationSettings
from invoice_sync.engine import InvoiceSyncEngine
from invoice_sync.escalation import Notifier, create_notifier


EngineFactory = Callable[[], AsyncContextManager[InvoiceSyncEngine]]


@asynccontextmanager
async def open_invoice_sync_engine(
    settings: IntegrationSettings,
    notifier: Optional[Notifier] = None,
    billing: Optional[BillingSystemProvider] = None,
    erp: Optional[ERPGateway] = None,
) -> AsyncIterator[InvoiceSyncEngine]:
    """Build an engine with connected gateways, closing them afterwards."""
    billing = billing or create_billing_provider(settings)
    erp = erp or create_erp_gateway(settings)

    async with billing, erp:
        yield InvoiceSyncEngine.from_settings(
            settings,
            billing=billing,
            erp=erp,
            notifier=notifier or create_notifier(settings),
        )


def engine_factory_from_settings(settings: IntegrationSettings) -> EngineFactory:
    def factory() -> AsyncContextManager[InvoiceSyncEngine]:
        return open_invoice_sync_engine(settings)
    return factory

