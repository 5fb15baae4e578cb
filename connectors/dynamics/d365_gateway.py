"""Dynamics 365 Finance & Operations invoice gateway.

Creates customer invoices through the D365 OData endpoint
``{api_url}/data/CustomerInvoiceHeaders``. A 401 triggers exactly one token
refresh and one retry; every other failure is reported to the caller as a
SubmissionError with ``retryable`` set for transient cases.
"""

import asyncio
import json
from typing import Any, Dict, Optional

import aiohttp

from connectors.erp_base import ERPGateway, register_erp_gateway
from connectors.dynamics.d365_auth import D365AuthConfig, D365Token, D365TokenProvider
from core.config import IntegrationSettings
from core.errors import AuthenticationError, SubmissionError
from core.models.invoice import ERPInvoiceResponse, TargetInvoice
from core.observability.logging import get_logger


logger = get_logger(__name__)

INVOICE_ENTITY = "CustomerInvoiceHeaders"


def _is_transient_status(status: int) -> bool:
    return status == 429 or status >= 500


@register_erp_gateway("dynamics365")
class D365Gateway(ERPGateway):
    """ERP gateway for D365 F&O.

    Usage:
        gateway = D365Gateway.from_settings(settings)
        async with gateway:
            erp_id = await gateway.submit_invoice(target)
    """

    def __init__(
        self,
        api_url: str,
        token_provider: D365TokenProvider,
        timeout_seconds: float = 30.0,
    ):
        """Initialize gateway.

        Args:
            api_url: D365 environment URL (no trailing /data)
            token_provider: Cached token source shared by all submits of a run
            timeout_seconds: Per-request timeout
        """
        self.api_url = api_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_settings(cls, settings: IntegrationSettings) -> "D365Gateway":
        return cls(
            api_url=settings.d365_api_url,
            token_provider=D365TokenProvider(D365AuthConfig.from_settings(settings)),
            timeout_seconds=settings.request_timeout_seconds,
        )

    @property
    def invoice_url(self) -> str:
        return f"{self.api_url}/data/{INVOICE_ENTITY}"

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def disconnect(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    def _get_headers(self, token: D365Token) -> Dict[str, str]:
        return {
            "Authorization": token.authorization_header,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _post(self, payload: Dict[str, Any], token: D365Token):
        """POST the invoice once. Returns (status, body text)."""
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with self._session.post(
                self.invoice_url,
                headers=self._get_headers(token),
                json=payload,
                timeout=timeout,
            ) as response:
                return response.status, await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SubmissionError(
                f"Failed to reach D365: {type(e).__name__}: {e}",
                retryable=True,
            ) from e

    async def submit_invoice(self, invoice: TargetInvoice) -> str:
        """Create the invoice in D365 and return its invoice number.

        Raises:
            AuthenticationError: Token unavailable or rejected twice
            SubmissionError: Any other rejection or transport failure
        """
        if self._session is None:
            raise SubmissionError("Not connected. Call connect() first.")

        payload = invoice.to_erp_payload()

        token = await self.token_provider.get_token()
        status, body = await self._post(payload, token)

        if status == 401:
            logger.warning(
                "D365 rejected the access token, refreshing once",
                extra_fields={"external_invoice_number": invoice.external_invoice_number},
            )
            token = await self.token_provider.refresh(rejected=token)
            status, body = await self._post(payload, token)
            if status == 401:
                raise AuthenticationError(
                    f"D365 rejected a freshly issued token: {status} - {body}",
                    status_code=status,
                    response_body=body,
                    retryable=False,
                )

        if status >= 400:
            raise SubmissionError(
                f"Failed to create invoice in D365: {status} - {body}",
                status_code=status,
                response_body=body,
                retryable=_is_transient_status(status),
            )

        return self._parse_invoice_id(status, body)

    def _parse_invoice_id(self, status: int, body: str) -> str:
        try:
            data = json.loads(body) if body else {}
        except json.JSONDecodeError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        response = ERPInvoiceResponse.model_validate(data)
        if not response.invoice_number:
            raise SubmissionError(
                "Failed to get D365 invoice number",
                status_code=status,
                response_body=body,
            )
        return response.invoice_number
