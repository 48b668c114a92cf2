"""Unit tests for settings loading from environment and SSM."""

from typing import Any

import pytest

from paygate.config import DEFAULT_STRIPE_API_VERSION, load_settings
from paygate.services.providers import build_providers
from paygate.services.ssm_service import SSMService


def _put(ssm_client: Any, name: str, value: str) -> None:
    ssm_client.put_parameter(Name=name, Value=value, Type="SecureString")


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "PAYGATE_STRIPE_SECRET_KEY",
        "PAYGATE_STRIPE_WEBHOOK_SECRET",
        "PAYGATE_STRIPE_PUBLISHABLE_KEY",
        "PAYGATE_PAYPAL_CLIENT_ID",
        "PAYGATE_PAYPAL_CLIENT_SECRET",
        "PAYGATE_PAYPAL_WEBHOOK_ID",
        "PAYGATE_PAYPAL_SANDBOX",
        "PAYGATE_HTTP_TIMEOUT",
        "PAYGATE_WEBHOOK_TOLERANCE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:
    def test_secrets_from_ssm(self, ssm_client: Any, clean_env: None) -> None:
        _put(ssm_client, "/paygate/test/stripe/secret_key", "sk_test_ssm")
        _put(ssm_client, "/paygate/test/stripe/webhook_secret", "whsec_ssm")
        _put(ssm_client, "/paygate/test/paypal/client_id", "pp-client")
        _put(ssm_client, "/paygate/test/paypal/client_secret", "pp-secret")

        settings = load_settings("test", ssm=SSMService())

        assert settings.environment == "test"
        assert settings.stripe.secret_key.get_secret_value() == "sk_test_ssm"
        assert settings.stripe.webhook_secret.get_secret_value() == "whsec_ssm"
        assert settings.stripe.api_version == DEFAULT_STRIPE_API_VERSION
        assert settings.paypal.client_id == "pp-client"
        assert settings.paypal.client_secret.get_secret_value() == "pp-secret"
        assert settings.paypal.sandbox is True

    def test_missing_secrets_leave_provider_unconfigured(
        self, ssm_client: Any, clean_env: None
    ) -> None:
        settings = load_settings("test", ssm=SSMService())

        assert settings.stripe.secret_key is None
        assert settings.paypal.client_id is None
        providers = build_providers(settings)
        assert not any(client.is_configured() for client in providers.values())

    def test_environment_variable_takes_precedence(
        self, ssm_client: Any, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _put(ssm_client, "/paygate/test/stripe/secret_key", "sk_test_ssm")
        monkeypatch.setenv("PAYGATE_STRIPE_SECRET_KEY", "sk_test_env")

        settings = load_settings("test", ssm=SSMService())

        assert settings.stripe.secret_key.get_secret_value() == "sk_test_env"

    def test_prod_defaults_to_live_paypal(self, ssm_client: Any, clean_env: None) -> None:
        settings = load_settings("prod", ssm=SSMService())

        assert settings.paypal.sandbox is False

    def test_sandbox_flag_override(
        self, ssm_client: Any, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("PAYGATE_PAYPAL_SANDBOX", "true")

        settings = load_settings("prod", ssm=SSMService())

        assert settings.paypal.sandbox is True

    def test_numeric_settings(
        self, ssm_client: Any, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("PAYGATE_HTTP_TIMEOUT", "12.5")
        monkeypatch.setenv("PAYGATE_WEBHOOK_TOLERANCE", "120")

        settings = load_settings("test", ssm=SSMService())

        assert settings.http_timeout == 12.5
        assert settings.webhook_tolerance == 120
        assert settings.event_retention_days == 30

    def test_secrets_are_masked_in_repr(self, ssm_client: Any, clean_env: None) -> None:
        _put(ssm_client, "/paygate/test/stripe/secret_key", "sk_test_hidden")

        settings = load_settings("test", ssm=SSMService())

        assert "sk_test_hidden" not in repr(settings)


class TestBuildProviders:
    def test_every_provider_has_a_client(self, ssm_client: Any, clean_env: None) -> None:
        from paygate.models.enums import Provider

        providers = build_providers(load_settings("test", ssm=SSMService()))

        assert set(providers) == set(Provider)
        assert all(client.name == key for key, client in providers.items())
