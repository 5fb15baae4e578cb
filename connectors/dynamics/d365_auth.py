"""Dynamics 365 Authentication Provider.

Handles the Azure AD client-credentials flow for D365 Finance & Operations.
One token is cached per provider and reused for the whole run; it is
refreshed when missing, when inside the 5-minute expiry buffer, or when the
ERP rejects it with 401.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import aiohttp

from core.config import IntegrationSettings
from core.errors import AuthenticationError
from core.observability.logging import get_logger


logger = get_logger(__name__)

EXPIRY_BUFFER = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class D365AuthConfig:
    """Configuration for D365 authentication.

    Attributes:
        tenant_id: Azure AD tenant ID
        client_id: Application (client) ID
        client_secret: Client secret (client credentials flow)
        scope: OAuth2 scope, ``{d365 url}/.default``
    """
    tenant_id: str
    client_id: str
    client_secret: str = field(repr=False)
    scope: str = ""
    authority_url: str = "https://login.microsoftonline.com"
    timeout_seconds: float = 30.0

    @property
    def token_endpoint(self) -> str:
        """Get the OAuth2 token endpoint."""
        return f"{self.authority_url.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/token"

    @classmethod
    def from_settings(cls, settings: IntegrationSettings) -> "D365AuthConfig":
        return cls(
            tenant_id=settings.d365_tenant_id,
            client_id=settings.d365_client_id,
            client_secret=settings.d365_client_secret,
            scope=settings.token_scope,
            authority_url=settings.d365_authority_url,
            timeout_seconds=settings.request_timeout_seconds,
        )


@dataclass
class D365Token:
    """OAuth2 access token with expiration tracking."""
    access_token: str = field(repr=False)
    token_type: str = "Bearer"
    expires_in: int = 3600
    obtained_at: datetime = field(default_factory=_utcnow)

    @property
    def expires_at(self) -> datetime:
        """When the token expires."""
        return self.obtained_at + timedelta(seconds=self.expires_in)

    def is_expired_at(self, now: datetime) -> bool:
        return now >= (self.expires_at - EXPIRY_BUFFER)

    @property
    def is_expired(self) -> bool:
        """Check if token is expired (with 5-minute buffer)."""
        return self.is_expired_at(_utcnow())

    @property
    def authorization_header(self) -> str:
        """Get the Authorization header value."""
        return f"{self.token_type} {self.access_token}"


class D365TokenProvider:
    """Cached token source for the D365 gateway.

    Handles:
    - Client credentials OAuth2 flow
    - Token caching and refresh
    - Single-flight refresh: concurrent callers wait for the in-flight
      request and reuse its token

    Usage:
        provider = D365TokenProvider(D365AuthConfig.from_settings(settings))
        token = await provider.get_token()
        ...
        token = await provider.refresh(rejected=token)  # after a 401
    """

    def __init__(self, config: D365AuthConfig):
        self.config = config
        self._token: Optional[D365Token] = None
        self._lock = asyncio.Lock()
        self.fetch_count = 0

    async def get_token(self) -> D365Token:
        """Return the cached token, fetching a new one if missing or expired.

        Raises:
            AuthenticationError: If Azure AD refuses or cannot be reached
        """
        token = self._token
        if token is not None and not token.is_expired:
            return token

        async with self._lock:
            if self._token is None or self._token.is_expired:
                self._token = await self._fetch_token()
            return self._token

    async def refresh(self, rejected: Optional[D365Token] = None) -> D365Token:
        """Replace a token the ERP rejected.

        If another caller already replaced ``rejected`` while we waited for
        the lock, its token is returned instead of fetching again.
        """
        async with self._lock:
            if self._token is None or self._token is rejected or self._token.is_expired:
                logger.info("Refreshing D365 access token")
                self._token = await self._fetch_token()
            return self._token

    async def _fetch_token(self) -> D365Token:
        """Fetch a new access token from Azure AD."""
        data = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "scope": self.config.scope,
        }
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)

        self.fetch_count += 1
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.config.token_endpoint,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise AuthenticationError(
                            f"Token request failed: {response.status} - {error_text}",
                            status_code=response.status,
                            response_body=error_text,
                            retryable=response.status == 429 or response.status >= 500,
                        )

                    token_data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthenticationError(
                f"Token request failed: {type(e).__name__}: {e}",
                retryable=True,
            ) from e

        access_token = token_data.get("access_token") if isinstance(token_data, dict) else None
        if not access_token:
            raise AuthenticationError("Token response did not contain an access_token")

        token = D365Token(
            access_token=access_token,
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=int(token_data.get("expires_in", 3600)),
        )
        logger.debug(
            "Obtained D365 access token",
            extra_fields={"expires_at": token.expires_at.isoformat()},
        )
        return token
