"""Invoice models for billing -> ERP synchronization.

SourceInvoice mirrors the billing system's JSON (PascalCase keys),
TargetInvoice mirrors the D365 ``CustomerInvoiceHeaders`` payload.
Both are transient: created per run and dropped after submission.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_serializers import PlainSerializer
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers
# =============================================================================

def _parse_decimal(value):
    """Parse decimal from numbers or numeric strings ("1,234.50", "(12.00)")."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        s = s.replace(",", "")
        if s.startswith("(") and s.endswith(")"):
            s = "-" + s[1:-1]
        try:
            return Decimal(s)
        except InvalidOperation:
            raise ValueError(f"Cannot parse decimal: {value}")
    return value


def _parse_date(value):
    """Parse a date from ISO dates, ISO datetimes or a datetime object."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
        except ValueError:
            raise ValueError(f"Cannot parse date: {s}")
    return value


def _parse_str(value):
    """Accept numeric identifiers (e.g. a RecId of 5637144576) as strings."""
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]
StrValue = Annotated[str, BeforeValidator(_parse_str)]
DateValue = Annotated[date, BeforeValidator(_parse_date)]

# D365 OData expects JSON numbers, not the string form pydantic uses for Decimal
ERPDecimal = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


# =============================================================================
# Billing System (source) Models
# =============================================================================

class BillingBase(BaseModel):
    """Base model for billing system records."""
    model_config = ConfigDict(populate_by_name=True)


class SourceLineItem(BillingBase):
    """A line item on a billing system invoice.

    Every field is optional; the mapper substitutes zero values.
    """
    product_code: Optional[StrValue] = Field(None, alias="ProductCode")
    description: Optional[str] = Field(None, alias="Description")
    quantity: Optional[DecimalValue] = Field(None, alias="Quantity")
    unit_price: Optional[DecimalValue] = Field(None, alias="UnitPrice")
    discount_amount: Optional[DecimalValue] = Field(None, alias="DiscountAmount")
    tax_amount: Optional[DecimalValue] = Field(None, alias="TaxAmount")
    tax_rate: Optional[DecimalValue] = Field(None, alias="TaxRate")


class SourceInvoice(BillingBase):
    """An invoice as exported by the billing system.

    ``invoice_number`` is the idempotency key of the whole pipeline.
    ``erp_reference`` stays empty until the invoice has been synchronized.
    """
    invoice_number: Optional[StrValue] = Field(None, alias="InvoiceNumber")
    customer_code: Optional[StrValue] = Field(None, alias="CustomerCode")
    invoice_date: Optional[DateValue] = Field(None, alias="InvoiceDate")
    due_date: Optional[DateValue] = Field(None, alias="DueDate")
    currency_code: Optional[str] = Field(None, alias="CurrencyCode")
    total_amount: Optional[DecimalValue] = Field(None, alias="TotalAmount")
    tax_amount: Optional[DecimalValue] = Field(None, alias="TaxAmount")
    line_items: List[SourceLineItem] = Field(default_factory=list, alias="LineItems")
    erp_reference: Optional[str] = Field(None, alias="ERPReference")

    @property
    def is_processed(self) -> bool:
        """True once an ERP reference has been written back."""
        return bool(self.erp_reference and self.erp_reference.strip())


class RejectedInvoice(BaseModel):
    """A billing record that did not validate as a SourceInvoice.

    Providers hand it to the engine alongside the valid invoices so it
    fails on its own at the map step.
    """
    model_config = ConfigDict(frozen=True)

    invoice_number: Optional[str] = None
    erp_reference: Optional[str] = None
    error: str
    raw: Any = None

    @classmethod
    def from_validation_error(cls, raw: Any, error: pydantic.ValidationError) -> "RejectedInvoice":
        fields = raw if isinstance(raw, dict) else {}
        number = _parse_str(fields.get("InvoiceNumber"))
        reference = fields.get("ERPReference")
        problems = "; ".join(
            f"{'.'.join(str(part) for part in e['loc']) or 'record'}: {e['msg']}"
            for e in error.errors()
        )
        return cls(
            invoice_number=number if isinstance(number, str) else None,
            erp_reference=reference if isinstance(reference, str) else None,
            error=problems,
            raw=raw,
        )

    @property
    def is_processed(self) -> bool:
        return bool(self.erp_reference and self.erp_reference.strip())


def parse_source_invoice(raw: Any) -> Union[SourceInvoice, RejectedInvoice]:
    """Validate one billing record, returning a RejectedInvoice instead of raising."""
    try:
        return SourceInvoice.model_validate(raw)
    except pydantic.ValidationError as e:
        return RejectedInvoice.from_validation_error(raw, e)


FetchedInvoice = Union[SourceInvoice, RejectedInvoice]


# =============================================================================
# ERP (target) Models
# =============================================================================

class TargetLineItem(BaseModel):
    """A D365 customer invoice line."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    item_id: str = Field(..., alias="ItemId")
    description: str = Field("", alias="Description")
    quantity: ERPDecimal = Field(Decimal("0"), alias="Quantity")
    unit_price: ERPDecimal = Field(Decimal("0"), alias="UnitPrice")
    discount_amount: ERPDecimal = Field(Decimal("0"), alias="DiscountAmount")
    tax_amount: ERPDecimal = Field(Decimal("0"), alias="TaxAmount")
    tax_group: str = Field(..., alias="TaxGroup")


class TargetInvoice(BaseModel):
    """A D365 customer invoice header with its lines.

    ``external_invoice_number`` holds the billing invoice number and is what
    makes later reconciliation between the two systems possible.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    customer_id: str = Field(..., alias="CustomerId")
    invoice_date: Optional[date] = Field(None, alias="InvoiceDate")
    due_date: Optional[date] = Field(None, alias="DueDate")
    currency_code: Optional[str] = Field(None, alias="CurrencyCode")
    external_invoice_number: str = Field(..., alias="ExternalInvoiceNumber")
    invoice_lines: List[TargetLineItem] = Field(default_factory=list, alias="InvoiceLines")

    def to_erp_payload(self) -> dict:
        """JSON-ready payload: PascalCase keys, yyyy-MM-dd dates, nulls omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Sync Outcome
# =============================================================================

class SyncStatus(str, Enum):
    """Terminal status of one invoice in a run."""
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class SyncOutcome(BaseModel):
    """Result of pushing one source invoice through the pipeline.

    Outcomes are append-only within a run and never mutated.
    """
    model_config = ConfigDict(frozen=True)

    invoice_number: str
    status: SyncStatus
    erp_invoice_id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_stage: Optional[str] = None

    @classmethod
    def succeeded(cls, invoice_number: str, erp_invoice_id: str) -> "SyncOutcome":
        return cls(
            invoice_number=invoice_number,
            status=SyncStatus.SUCCEEDED,
            erp_invoice_id=erp_invoice_id,
        )

    @classmethod
    def failed(
        cls,
        invoice_number: str,
        error: Exception,
        failed_stage: Optional[str] = None,
        erp_invoice_id: Optional[str] = None,
    ) -> "SyncOutcome":
        return cls(
            invoice_number=invoice_number,
            status=SyncStatus.FAILED,
            erp_invoice_id=erp_invoice_id,
            error=str(error),
            error_type=type(error).__name__,
            failed_stage=failed_stage,
        )

    @property
    def is_success(self) -> bool:
        return self.status == SyncStatus.SUCCEEDED


class ERPInvoiceResponse(BaseModel):
    """Body returned by D365 after creating an invoice."""
    model_config = ConfigDict(populate_by_name=True)

    invoice_number: Optional[StrValue] = Field(None, alias="InvoiceNumber")
    rec_id: Optional[StrValue] = Field(None, alias="RecId")
