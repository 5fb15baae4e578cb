"""Integration settings.

Settings are read once (environment + optional ``.env`` file) into an
immutable ``IntegrationSettings`` value that is passed explicitly to the sync
engine, the billing provider and the ERP gateway. Nothing below the trigger
surfaces reads ``os.environ`` directly.

Usage:
    settings = IntegrationSettings.from_env()
    settings.redacted()  # safe to log
"""

import json
import os
from dataclasses import dataclass, field, fields
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from core.errors import ConfigurationError


ENV_PATH = Path(__file__).resolve().parents[1] / ".env"

SECRET_MARKER = "[SECRET]"

# Always required, regardless of the billing provider in use
REQUIRED_SETTINGS = (
    "D365_API_URL",
    "D365_TENANT_ID",
    "D365_CLIENT_ID",
    "D365_CLIENT_SECRET",
)


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value not in (None, "") else default
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value not in (None, "") else default
    except ValueError:
        return default


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes", "on"):
        return True
    if lowered in ("false", "0", "no", "off"):
        return False
    return default


@dataclass(frozen=True)
class IntegrationSettings:
    """Settings for one integration process.

    Attributes:
        d365_api_url: D365 F&O environment URL (e.g. https://contoso.operations.dynamics.com)
        d365_tenant_id: Azure AD tenant ID
        d365_client_id: Application (client) ID
        d365_client_secret: Client secret for the client-credentials flow
        billing_system_provider: Registered billing provider name ("component", "memory")
        billing_system_component: Entry point name of the billing component factory
        billing_system_config: Opaque connection blob handed to the billing provider
    """
    d365_api_url: str
    d365_tenant_id: str
    d365_client_id: str
    d365_client_secret: str = field(repr=False)

    d365_scope: Optional[str] = None
    d365_authority_url: str = "https://login.microsoftonline.com"
    erp_connector: str = "dynamics365"

    billing_system_provider: str = "component"
    billing_system_component: str = "default"
    billing_system_config: Optional[str] = field(default=None, repr=False)

    # Behavior
    max_retry_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    request_timeout_seconds: float = 30.0
    fetch_timeout_seconds: float = 120.0
    max_concurrency: int = 1

    # Scheduling
    invoice_sync_schedule: str = "0 2 * * *"  # 2 AM daily
    default_invoice_lookback_days: int = 1

    # Escalation
    notification_webhook_url: Optional[str] = None

    # Logging
    detailed_logging: bool = False
    log_json: bool = False

    # Temporal
    temporal_endpoint: Optional[str] = None
    temporal_namespace: str = "default"
    temporal_api_key: Optional[str] = field(default=None, repr=False)
    temporal_task_queue: str = "invoice-sync"

    _SECRET_FIELDS = ("d365_client_secret", "billing_system_config", "temporal_api_key")

    @property
    def token_scope(self) -> str:
        """OAuth2 scope requested for D365 tokens."""
        if self.d365_scope:
            return self.d365_scope
        return f"{self.d365_api_url.rstrip('/')}/.default"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "IntegrationSettings":
        """Build settings from a mapping (defaults to the process environment).

        Raises:
            ConfigurationError: If required settings are missing
        """
        if env is None:
            if ENV_PATH.exists():
                load_dotenv(ENV_PATH)
            env = os.environ

        def get(key: str, default: Optional[str] = None) -> Optional[str]:
            value = env.get(key)
            return value if value not in (None, "") else default

        provider = get("BILLING_SYSTEM_PROVIDER", "component").lower()

        required = list(REQUIRED_SETTINGS)
        if provider == "component":
            required.append("BILLING_SYSTEM_CONFIG")

        missing = [key for key in required if not get(key)]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

        return cls(
            d365_api_url=get("D365_API_URL"),
            d365_tenant_id=get("D365_TENANT_ID"),
            d365_client_id=get("D365_CLIENT_ID"),
            d365_client_secret=get("D365_CLIENT_SECRET"),
            d365_scope=get("D365_SCOPE"),
            d365_authority_url=get("D365_AUTHORITY_URL", "https://login.microsoftonline.com"),
            erp_connector=get("ERP_CONNECTOR", "dynamics365").lower(),
            billing_system_provider=provider,
            billing_system_component=get("BILLING_SYSTEM_COMPONENT", "default"),
            billing_system_config=get("BILLING_SYSTEM_CONFIG"),
            max_retry_attempts=_parse_int(get("MAX_RETRY_ATTEMPTS"), 3),
            retry_base_delay_seconds=_parse_float(get("RETRY_BASE_DELAY_SECONDS"), 1.0),
            request_timeout_seconds=_parse_float(get("REQUEST_TIMEOUT_SECONDS"), 30.0),
            fetch_timeout_seconds=_parse_float(get("FETCH_TIMEOUT_SECONDS"), 120.0),
            max_concurrency=max(1, _parse_int(get("MAX_CONCURRENCY"), 1)),
            invoice_sync_schedule=get("INVOICE_SYNC_SCHEDULE", "0 2 * * *"),
            default_invoice_lookback_days=_parse_int(get("DEFAULT_INVOICE_LOOKBACK_DAYS"), 1),
            notification_webhook_url=get("NOTIFICATION_WEBHOOK_URL"),
            detailed_logging=_parse_bool(get("DETAILED_LOGGING"), False),
            log_json=_parse_bool(get("LOG_JSON"), False),
            temporal_endpoint=get("TEMPORAL_ENDPOINT"),
            temporal_namespace=get("TEMPORAL_NAMESPACE", "default"),
            temporal_api_key=get("TEMPORAL_API_KEY"),
            temporal_task_queue=get("TEMPORAL_TASK_QUEUE", "invoice-sync"),
        )

    def billing_system_config_json(self) -> Dict[str, Any]:
        """Parse the billing config blob as a JSON object.

        Raises:
            ConfigurationError: If the blob is present but not a JSON object
        """
        if not self.billing_system_config:
            return {}
        try:
            data = json.loads(self.billing_system_config)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"BILLING_SYSTEM_CONFIG is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("BILLING_SYSTEM_CONFIG must be a JSON object")
        return data

    def redacted(self) -> Dict[str, Any]:
        """All settings as a dict, secrets replaced by a marker."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in self._SECRET_FIELDS and value:
                value = SECRET_MARKER
            result[f.name] = value
        return result


@lru_cache(maxsize=1)
def get_settings() -> IntegrationSettings:
    """Process-wide settings, loaded on first use."""
    return IntegrationSettings.from_env()
