"""Customer synchronization: D365 customer events -> billing system.

D365 raises a business event when a customer is created or changed; the
event is mapped to a billing customer and upserted. There is no write-back
in this direction.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from connectors import create_billing_provider
from connectors.billing.base import BillingSystemProvider
from core.config import IntegrationSettings
from core.errors import BillingSystemError
from core.mapping.customer_mapper import map_customer
from core.models.customer import BillingSystemCustomer, CustomerBusinessEvent
from core.observability.logging import get_logger, with_correlation


logger = get_logger(__name__)


class CustomerSyncService:
    """Upserts D365 customers into the billing system."""

    def __init__(self, billing: BillingSystemProvider, request_timeout: float = 30.0):
        self.billing = billing
        self.request_timeout = request_timeout

    async def sync_customer(self, event: CustomerBusinessEvent) -> BillingSystemCustomer:
        """Map and upsert one customer.

        Raises:
            ValidationError: If the event has no customer account
            BillingSystemError: If the upsert failed or timed out
        """
        customer = map_customer(event)

        with with_correlation(customer_account=customer.customer_code, stage="upsert"):
            logger.info(f"Processing customer {customer.customer_code}")
            try:
                await asyncio.wait_for(
                    self.billing.upsert_customer(customer),
                    timeout=self.request_timeout,
                )
            except asyncio.TimeoutError as e:
                raise BillingSystemError(
                    f"Timed out after {self.request_timeout}s upserting customer {customer.customer_code}"
                ) from e
            logger.info(f"Successfully synchronized customer {customer.customer_code}")

        return customer


CustomerServiceFactory = Callable[[], AsyncContextManager[CustomerSyncService]]


@asynccontextmanager
async def open_customer_sync_service(
    settings: IntegrationSettings,
    billing: Optional[BillingSystemProvider] = None,
) -> AsyncIterator[CustomerSyncService]:
    billing = billing or create_billing_provider(settings)
    async with billing:
        yield CustomerSyncService(billing, request_timeout=settings.request_timeout_seconds)


def customer_service_factory_from_settings(settings: IntegrationSettings) -> CustomerServiceFactory:
    def factory() -> AsyncContextManager[CustomerSyncService]:
        return open_customer_sync_service(settings)
    return factory
