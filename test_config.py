"""
Settings Tests

IntegrationSettings loads once from an explicit mapping, names every
missing required key, falls back to defaults on unparseable values and
never exposes secrets.
"""

import pytest

from core.config import SECRET_MARKER, IntegrationSettings
from core.errors import ConfigurationError


BASE_ENV = {
    "D365_API_URL": "https://contoso.operations.dynamics.com/",
    "D365_TENANT_ID": "tenant-id",
    "D365_CLIENT_ID": "client-id",
    "D365_CLIENT_SECRET": "super-secret",
    "BILLING_SYSTEM_CONFIG": '{"server": "billing"}',
}


class TestFromEnv:

    def test_defaults(self):
        settings = IntegrationSettings.from_env(BASE_ENV)

        assert settings.billing_system_provider == "component"
        assert settings.erp_connector == "dynamics365"
        assert settings.max_retry_attempts == 3
        assert settings.max_concurrency == 1
        assert settings.invoice_sync_schedule == "0 2 * * *"
        assert settings.default_invoice_lookback_days == 1
        assert settings.detailed_logging is False
        assert settings.temporal_task_queue == "invoice-sync"

    def test_missing_required_settings_all_named(self):
        with pytest.raises(ConfigurationError) as exc_info:
            IntegrationSettings.from_env({"D365_API_URL": "https://x"})

        message = str(exc_info.value)
        for key in ("D365_TENANT_ID", "D365_CLIENT_ID", "D365_CLIENT_SECRET", "BILLING_SYSTEM_CONFIG"):
            assert key in message
        assert "D365_API_URL" not in message

    def test_billing_config_optional_for_memory_provider(self):
        env = {k: v for k, v in BASE_ENV.items() if k != "BILLING_SYSTEM_CONFIG"}
        env["BILLING_SYSTEM_PROVIDER"] = "memory"

        settings = IntegrationSettings.from_env(env)

        assert settings.billing_system_provider == "memory"
        assert settings.billing_system_config_json() == {}

    def test_unparseable_values_fall_back_to_defaults(self):
        env = dict(BASE_ENV, MAX_RETRY_ATTEMPTS="three", DETAILED_LOGGING="maybe", REQUEST_TIMEOUT_SECONDS="")

        settings = IntegrationSettings.from_env(env)

        assert settings.max_retry_attempts == 3
        assert settings.detailed_logging is False
        assert settings.request_timeout_seconds == 30.0

    def test_overrides(self):
        env = dict(
            BASE_ENV,
            MAX_RETRY_ATTEMPTS="5",
            MAX_CONCURRENCY="4",
            DETAILED_LOGGING="true",
            DEFAULT_INVOICE_LOOKBACK_DAYS="3",
            INVOICE_SYNC_SCHEDULE="0 1 * * *",
        )

        settings = IntegrationSettings.from_env(env)

        assert settings.max_retry_attempts == 5
        assert settings.max_concurrency == 4
        assert settings.detailed_logging is True
        assert settings.default_invoice_lookback_days == 3
        assert settings.invoice_sync_schedule == "0 1 * * *"

    def test_concurrency_at_least_one(self):
        settings = IntegrationSettings.from_env(dict(BASE_ENV, MAX_CONCURRENCY="0"))
        assert settings.max_concurrency == 1


class TestDerivedValues:

    def test_token_scope_from_api_url(self):
        settings = IntegrationSettings.from_env(BASE_ENV)
        assert settings.token_scope == "https://contoso.operations.dynamics.com/.default"

    def test_explicit_scope(self):
        settings = IntegrationSettings.from_env(dict(BASE_ENV, D365_SCOPE="api://custom/.default"))
        assert settings.token_scope == "api://custom/.default"

    def test_billing_config_json(self):
        settings = IntegrationSettings.from_env(BASE_ENV)
        assert settings.billing_system_config_json() == {"server": "billing"}

    @pytest.mark.parametrize("blob", ["not json", "[1, 2]"])
    def test_bad_billing_config_json(self, blob):
        settings = IntegrationSettings.from_env(dict(BASE_ENV, BILLING_SYSTEM_CONFIG=blob))
        with pytest.raises(ConfigurationError):
            settings.billing_system_config_json()


class TestSecrets:

    def test_redacted(self):
        settings = IntegrationSettings.from_env(dict(BASE_ENV, TEMPORAL_API_KEY="tk"))

        redacted = settings.redacted()

        assert redacted["d365_client_secret"] == SECRET_MARKER
        assert redacted["billing_system_config"] == SECRET_MARKER
        assert redacted["temporal_api_key"] == SECRET_MARKER
        assert redacted["d365_client_id"] == "client-id"

    def test_repr_hides_secrets(self):
        settings = IntegrationSettings.from_env(BASE_ENV)

        assert "super-secret" not in repr(settings)
        assert "server" not in repr(settings)

    def test_settings_are_immutable(self):
        settings = IntegrationSettings.from_env(BASE_ENV)
        with pytest.raises(Exception):
            settings.max_retry_attempts = 10
