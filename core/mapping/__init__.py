"""Field mapping between the billing system and the ERP.

Mappers are pure functions: no I/O, no clock, no settings. Given the same
source record they always return an equal target record.
"""

from core.mapping.invoice_mapper import (
    map_invoice,
    map_line_item,
    map_tax_group,
    TAX_GROUPS,
    DEFAULT_TAX_GROUP,
)
from core.mapping.customer_mapper import (
    map_customer,
    map_customer_type,
    CUSTOMER_TYPES,
    DEFAULT_CUSTOMER_TYPE,
)

__all__ = [
    "map_invoice",
    "map_line_item",
    "map_tax_group",
    "TAX_GROUPS",
    "DEFAULT_TAX_GROUP",
    "map_customer",
    "map_customer_type",
    "CUSTOMER_TYPES",
    "DEFAULT_CUSTOMER_TYPE",
]
