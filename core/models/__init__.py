"""Core data models for billing <-> ERP synchronization.

Models here describe only the fields that are actually mapped between the
two systems; neither system's full schema is reproduced.
"""

from core.models.invoice import (
    # Parsers
    DecimalValue,
    DateValue,

    # Billing side
    SourceInvoice,
    SourceLineItem,
    RejectedInvoice,
    FetchedInvoice,
    parse_source_invoice,

    # ERP side
    TargetInvoice,
    TargetLineItem,
    ERPInvoiceResponse,

    # Outcomes
    SyncOutcome,
    SyncStatus,
)
from core.models.customer import (
    BillingSystemAddress,
    BillingSystemCustomer,
    CustomerAddress,
    CustomerBusinessEvent,
)

__all__ = [
    "DecimalValue",
    "DateValue",
    "SourceInvoice",
    "SourceLineItem",
    "RejectedInvoice",
    "FetchedInvoice",
    "parse_source_invoice",
    "TargetInvoice",
    "TargetLineItem",
    "ERPInvoiceResponse",
    "SyncOutcome",
    "SyncStatus",
    "BillingSystemAddress",
    "BillingSystemCustomer",
    "CustomerAddress",
    "CustomerBusinessEvent",
]
