"""Customer synchronization endpoint (D365 business events -> billing)."""

import pydantic
from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.routes.invoice_sync import ErrorResponse, error_response, read_json_body
from core.errors import IntegrationError
from core.models.customer import CustomerBusinessEvent
from core.observability.logging import get_logger, with_correlation


logger = get_logger(__name__)

router = APIRouter()


class CustomerSyncResponse(BaseModel):
    status: str
    message: str


@router.post(
    "/customer/sync",
    response_model=CustomerSyncResponse,
    responses={400: {"model": ErrorResponse}},
)
async def sync_customer(request: Request):
    """Upsert the customer carried by a D365 customer business event."""
    payload, error = await read_json_body(request)
    if error is not None:
        return error
    if not isinstance(payload, dict):
        return error_response("Request body must be a customer business event object")

    try:
        event = CustomerBusinessEvent.model_validate(payload)
    except pydantic.ValidationError as e:
        return error_response(f"Invalid customer business event: {e.errors()[0]['msg']}")

    service_factory = request.app.state.customer_service_factory
    try:
        with with_correlation(trigger="http"):
            async with service_factory() as service:
                customer = await service.sync_customer(event)
    except IntegrationError as e:
        logger.error(f"Customer sync failed: {e}")
        return error_response(str(e))
    except Exception as e:
        logger.exception(f"Customer sync failed unexpectedly: {e}")
        return error_response(str(e))

    return CustomerSyncResponse(
        status="success",
        message=f"Customer {customer.customer_code} synchronized",
    )
