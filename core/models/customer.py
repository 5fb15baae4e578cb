"""Customer models for ERP -> billing synchronization.

CustomerBusinessEvent is the D365 customer business event payload;
BillingSystemCustomer is what the billing system's upsert expects.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CustomerAddress(BaseModel):
    """Address block of a D365 customer event."""
    model_config = ConfigDict(populate_by_name=True)

    address_line1: Optional[str] = Field(None, alias="AddressLine1")
    address_line2: Optional[str] = Field(None, alias="AddressLine2")
    city: Optional[str] = Field(None, alias="City")
    state: Optional[str] = Field(None, alias="State")
    zip_code: Optional[str] = Field(None, alias="ZipCode")
    country_region_id: Optional[str] = Field(None, alias="CountryRegionId")


class CustomerBusinessEvent(BaseModel):
    """Customer created/changed event raised by D365."""
    model_config = ConfigDict(populate_by_name=True)

    business_event_id: Optional[str] = Field(None, alias="BusinessEventId")
    customer_account: Optional[str] = Field(None, alias="CustomerAccount")
    customer_name: Optional[str] = Field(None, alias="CustomerName")
    address: Optional[CustomerAddress] = Field(None, alias="Address")
    primary_contact_email: Optional[str] = Field(None, alias="PrimaryContactEmail")
    primary_contact_phone: Optional[str] = Field(None, alias="PrimaryContactPhone")
    customer_group_id: Optional[str] = Field(None, alias="CustomerGroupId")
    tax_exempt_number: Optional[str] = Field(None, alias="TaxExemptNumber")
    blocked: int = Field(0, alias="Blocked")


class BillingSystemAddress(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    line1: Optional[str] = Field(None, alias="Line1")
    line2: Optional[str] = Field(None, alias="Line2")
    city: Optional[str] = Field(None, alias="City")
    state: Optional[str] = Field(None, alias="State")
    postal_code: Optional[str] = Field(None, alias="PostalCode")
    country: Optional[str] = Field(None, alias="Country")


class BillingSystemCustomer(BaseModel):
    """Customer record in the billing system's shape."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    customer_code: str = Field(..., alias="CustomerCode")
    customer_name: Optional[str] = Field(None, alias="CustomerName")
    address: BillingSystemAddress = Field(default_factory=BillingSystemAddress, alias="Address")
    email: Optional[str] = Field(None, alias="Email")
    phone: Optional[str] = Field(None, alias="Phone")
    customer_type: str = Field("STANDARD", alias="CustomerType")
    tax_id: Optional[str] = Field(None, alias="TaxId")
    is_active: bool = Field(True, alias="IsActive")

    def to_billing_json(self) -> str:
        return self.model_dump_json(by_alias=True)
