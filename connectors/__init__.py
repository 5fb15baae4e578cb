"""Connectors - pluggable ERP and billing system integrations.

This package contains the abstract gateway interfaces and the concrete
implementations for specific systems.

Core models and mappers are system-neutral. This package handles:
- ERP authentication and invoice submission (Dynamics 365)
- Billing system access (external component, in-memory store)

To add a new ERP:
1. Create a new folder (e.g., sap/)
2. Implement the ERPGateway interface
3. Register using the @register_erp_gateway decorator and import it below
"""

from connectors.erp_base import (
    ERPGateway,
    RetryConfig,
    create_erp_gateway,
    register_erp_gateway,
    list_available_gateways,
)
from connectors.billing import (
    BillingSystemProvider,
    ComponentBillingProvider,
    InMemoryBillingProvider,
    create_billing_provider,
    register_billing_provider,
)
from connectors.dynamics import D365Gateway

__all__ = [
    "ERPGateway",
    "RetryConfig",
    "create_erp_gateway",
    "register_erp_gateway",
    "list_available_gateways",
    "BillingSystemProvider",
    "ComponentBillingProvider",
    "InMemoryBillingProvider",
    "create_billing_provider",
    "register_billing_provider",
    "D365Gateway",
]
