"""Dynamics 365 Finance & Operations connector.

Importing this package registers the ``dynamics365`` ERP gateway.
"""

from connectors.dynamics.d365_auth import (
    D365AuthConfig,
    D365Token,
    D365TokenProvider,
)
from connectors.dynamics.d365_gateway import D365Gateway

__all__ = [
    "D365AuthConfig",
    "D365Token",
    "D365TokenProvider",
    "D365Gateway",
]
