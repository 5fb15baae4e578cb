"""Customer synchronization: D365 -> billing system."""

from customer_sync.service import (
    CustomerServiceFactory,
    CustomerSyncService,
    customer_service_factory_from_settings,
    open_customer_sync_service,
)

__all__ = [
    "CustomerServiceFactory",
    "CustomerSyncService",
    "customer_service_factory_from_settings",
    "open_customer_sync_service",
]
