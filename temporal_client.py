"""Temporal client factory.

Creates connections to Temporal (Cloud or a local dev server) from the
integration settings.
"""

from temporalio.client import Client

from core.config import IntegrationSettings
from core.errors import ConfigurationError


async def get_temporal_client(settings: IntegrationSettings) -> Client:
    """Create and return a Temporal client.

    Reads connection details from settings:
    - TEMPORAL_ENDPOINT: Temporal endpoint (e.g., "temporal.example.com:7233")
    - TEMPORAL_NAMESPACE: Namespace (e.g., "default")
    - TEMPORAL_API_KEY: API key for Temporal Cloud; without it the client
      connects in plaintext (local dev server)

    Returns:
        Connected Temporal client

    Raises:
        ConfigurationError: If TEMPORAL_ENDPOINT is not set
    """
    endpoint = settings.temporal_endpoint
    if not endpoint:
        raise ConfigurationError(
            "TEMPORAL_ENDPOINT is not set. "
            "Set to your Temporal endpoint (e.g., 'temporal.example.com:7233' or 'localhost:7233')"
        )

    # Temporal Cloud API keys require TLS with the system trust store
    use_tls = bool(settings.temporal_api_key)

    return await Client.connect(
        target_host=endpoint,
        namespace=settings.temporal_namespace,
        tls=use_tls,
        api_key=settings.temporal_api_key,
    )
