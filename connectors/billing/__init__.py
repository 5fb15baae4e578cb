"""Billing system providers.

Importing this package registers the ``component`` and ``memory`` providers.
"""

from connectors.billing.base import (
    BillingSystemProvider,
    create_billing_provider,
    register_billing_provider,
    list_available_providers,
)
from connectors.billing.component import (
    BillingComponent,
    ComponentBillingProvider,
    ENTRY_POINT_GROUP,
    load_component_factory,
)
from connectors.billing.memory import InMemoryBillingProvider

__all__ = [
    "BillingSystemProvider",
    "create_billing_provider",
    "register_billing_provider",
    "list_available_providers",
    "BillingComponent",
    "ComponentBillingProvider",
    "ENTRY_POINT_GROUP",
    "load_component_factory",
    "InMemoryBillingProvider",
]
