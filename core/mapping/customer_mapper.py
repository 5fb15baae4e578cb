"""D365 customer business event -> billing system customer mapping."""

from typing import Optional

from core.errors import ValidationError
from core.models.customer import (
    BillingSystemAddress,
    BillingSystemCustomer,
    CustomerBusinessEvent,
)


CUSTOMER_TYPES = {
    "RETAIL": "B2C",
    "WHOLESALE": "B2B",
    "CORPORATE": "B2B-LARGE",
}

DEFAULT_CUSTOMER_TYPE = "STANDARD"


def map_customer_type(customer_group_id: Optional[str]) -> str:
    """Translate a D365 customer group into a billing customer type."""
    if not customer_group_id:
        return DEFAULT_CUSTOMER_TYPE
    return CUSTOMER_TYPES.get(customer_group_id.strip().upper(), DEFAULT_CUSTOMER_TYPE)


def map_customer(event: CustomerBusinessEvent) -> BillingSystemCustomer:
    """Build the billing customer for a D365 customer event.

    Raises:
        ValidationError: If the event carries no customer account
    """
    account = (event.customer_account or "").strip()
    if not account:
        raise ValidationError("Customer account is required")

    address = event.address
    billing_address = BillingSystemAddress()
    if address is not None:
        billing_address = BillingSystemAddress(
            line1=address.address_line1,
            line2=address.address_line2,
            city=address.city,
            state=address.state,
            postal_code=address.zip_code,
            country=address.country_region_id,
        )

    return BillingSystemCustomer(
        customer_code=account,
        customer_name=event.customer_name,
        address=billing_address,
        email=event.primary_contact_email,
        phone=event.primary_contact_phone,
        customer_type=map_customer_type(event.customer_group_id),
        tax_id=event.tax_exempt_number,
        is_active=event.blocked == 0,
    )
