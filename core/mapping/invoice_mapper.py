"""Billing invoice -> D365 invoice field mapping.

The mapping is one-to-one and ordered: every source line item becomes one
invoice line in the same position. Absent optional line fields become zero
values so the ERP never receives nulls for amounts.

Tax groups come from a fixed lookup on the line's tax rate. Rates outside
the table (negative, fractional, unknown) fall back to ``STANDARD``; the
ERP-side tax setup decides what STANDARD means.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from core.errors import ValidationError
from core.models.invoice import (
    SourceInvoice,
    SourceLineItem,
    TargetInvoice,
    TargetLineItem,
)


ZERO = Decimal("0")

TAX_GROUPS = (
    (Decimal("0"), "EXEMPT"),
    (Decimal("5"), "GST5"),
    (Decimal("7"), "VAT7"),
)

DEFAULT_TAX_GROUP = "STANDARD"


def _to_decimal(value: Union[Decimal, int, float, str, None]) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def map_tax_group(tax_rate: Union[Decimal, int, float, str, None]) -> str:
    """Derive the D365 tax group for a tax rate.

    A missing rate counts as zero. Anything that is not exactly one of the
    known rates maps to DEFAULT_TAX_GROUP.
    """
    rate = ZERO if tax_rate is None else _to_decimal(tax_rate)
    if rate is None or rate.is_nan():
        return DEFAULT_TAX_GROUP

    for known_rate, group in TAX_GROUPS:
        if rate == known_rate:
            return group
    return DEFAULT_TAX_GROUP


def map_line_item(line: SourceLineItem) -> TargetLineItem:
    return TargetLineItem(
        item_id=line.product_code or "",
        description=line.description or "",
        quantity=line.quantity if line.quantity is not None else ZERO,
        unit_price=line.unit_price if line.unit_price is not None else ZERO,
        discount_amount=line.discount_amount if line.discount_amount is not None else ZERO,
        tax_amount=line.tax_amount if line.tax_amount is not None else ZERO,
        tax_group=map_tax_group(line.tax_rate),
    )


def map_invoice(source: SourceInvoice) -> TargetInvoice:
    """Map a billing invoice to the D365 invoice shape.

    Args:
        source: Invoice as fetched from the billing system

    Returns:
        TargetInvoice whose external invoice number is the billing number

    Raises:
        ValidationError: If the invoice number or customer code is missing
    """
    invoice_number = (source.invoice_number or "").strip()
    if not invoice_number:
        raise ValidationError("Invoice number is required")

    customer_code = (source.customer_code or "").strip()
    if not customer_code:
        raise ValidationError(f"Customer code is required for invoice {invoice_number}")

    return TargetInvoice(
        customer_id=customer_code,
        invoice_date=source.invoice_date,
        due_date=source.due_date,
        currency_code=source.currency_code,
        external_invoice_number=invoice_number,
        invoice_lines=[map_line_item(line) for line in source.line_items],
    )
