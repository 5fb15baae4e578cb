"""On-demand invoice synchronization.

POST /invoice/sync with {"FromDate": "2024-01-01", "ToDate": "2024-01-31"}
runs one sync for that window. The response only says whether the run
completed; failed invoices are escalated, not returned.
"""

import json
from typing import Any, Optional, Tuple

import pydantic
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, TypeAdapter

from core.errors import IntegrationError
from core.models.invoice import DateValue
from core.observability.logging import get_logger, with_correlation


logger = get_logger(__name__)

router = APIRouter()

_date_adapter = TypeAdapter(DateValue)


class InvoiceSyncResponse(BaseModel):
    """Response of a completed run."""
    status: str
    message: str


class ErrorResponse(BaseModel):
    error: str


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def read_json_body(request: Request) -> Tuple[Optional[Any], Optional[JSONResponse]]:
    """Parse the raw body as JSON. Returns (payload, error response)."""
    body = await request.body()
    if not body.strip():
        return None, None
    try:
        return json.loads(body), None
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return None, error_response(f"Request body is not valid JSON: {e}")


@router.post(
    "/invoice/sync",
    response_model=InvoiceSyncResponse,
    responses={400: {"model": ErrorResponse}},
)
async def sync_invoices(request: Request):
    """Run an invoice sync for the requested date window."""
    logger.info("Manual invoice sync triggered")

    payload, error = await read_json_body(request)
    if error is not None:
        return error
    if not isinstance(payload, dict):
        payload = {}

    from_raw, to_raw = payload.get("FromDate"), payload.get("ToDate")
    if from_raw in (None, "") or to_raw in (None, ""):
        return error_response("FromDate and ToDate are required")

    try:
        from_date = _date_adapter.validate_python(from_raw)
        to_date = _date_adapter.validate_python(to_raw)
    except (pydantic.ValidationError, ValueError):
        return error_response("FromDate and ToDate must be dates (yyyy-MM-dd)")

    if from_date > to_date:
        return error_response("FromDate must not be after ToDate")

    engine_factory = request.app.state.engine_factory
    try:
        with with_correlation(trigger="http"):
            async with engine_factory() as engine:
                await engine.run(from_date, to_date)
    except IntegrationError as e:
        logger.error(f"Manual invoice sync failed: {e}")
        return error_response(str(e))
    except Exception as e:
        logger.exception(f"Manual invoice sync failed unexpectedly: {e}")
        return error_response(str(e))

    return InvoiceSyncResponse(
        status="success",
        message=f"Processed invoices from {from_date:%Y-%m-%d} to {to_date:%Y-%m-%d}",
    )
