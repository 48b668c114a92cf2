"""Gateway configuration.

Non-secret settings come from environment variables. Provider secrets come
from SSM Parameter Store under ``/paygate/<environment>/<provider>/<name>``,
with a ``PAYGATE_<PROVIDER>_<NAME>`` environment variable taking precedence
for local runs. A missing secret leaves that provider unconfigured rather
than failing startup.
"""

import os

from pydantic import BaseModel, Field, SecretStr

from paygate.services.ssm_service import (
    ParameterNotFoundError,
    SSMService,
    get_ssm_service,
)
from paygate.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_STRIPE_API_VERSION = "2023-10-16"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class StripeSettings(BaseModel):
    """Credentials for the card/ACH processor."""

    secret_key: SecretStr | None = None
    publishable_key: str | None = None
    webhook_secret: SecretStr | None = None
    api_version: str = DEFAULT_STRIPE_API_VERSION


class PayPalSettings(BaseModel):
    """Credentials for the wallet/redirect processor."""

    client_id: str | None = None
    client_secret: SecretStr | None = None
    webhook_id: str | None = None
    sandbox: bool = True
    return_url: str | None = None
    cancel_url: str | None = None
    brand_name: str | None = None


class GatewaySettings(BaseModel):
    """All settings the gateway needs at startup."""

    environment: str = "dev"
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    paypal: PayPalSettings = Field(default_factory=PayPalSettings)
    http_timeout: float = Field(30.0, gt=0, description="Default provider call timeout")
    long_http_timeout: float = Field(
        60.0, gt=0, description="Timeout for server-heavy provider calls"
    )
    webhook_tolerance: int = Field(
        300, gt=0, description="Allowed webhook timestamp skew in seconds"
    )
    event_retention_days: int = Field(
        30, gt=0, description="How long processed event ids are remembered"
    )
    token_refresh_margin: int = Field(
        60, ge=0, description="Seconds before expiry an OAuth token is refreshed"
    )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _secret(
    ssm: SSMService, environment: str, provider: str, name: str
) -> str | None:
    env_name = f"PAYGATE_{provider.upper()}_{name.upper()}"
    if os.getenv(env_name):
        return os.environ[env_name]
    try:
        return ssm.get_parameter(f"/paygate/{environment}/{provider}/{name}")
    except ParameterNotFoundError:
        logger.info("No %s %s configured for %s", provider, name, environment)
        return None


def load_settings(
    environment: str | None = None,
    ssm: SSMService | None = None,
) -> GatewaySettings:
    """Build GatewaySettings from the environment and SSM.

    Args:
        environment: Environment name. Defaults to ENVIRONMENT env var, then "dev".
        ssm: SSM service to read secrets from. Defaults to the shared instance.

    Returns:
        Populated settings
    """
    env = environment or os.getenv("ENVIRONMENT", "dev")
    ssm = ssm or get_ssm_service()

    def secret(provider: str, name: str) -> str | None:
        return _secret(ssm, env, provider, name)

    stripe_secret = secret("stripe", "secret_key")
    stripe_webhook = secret("stripe", "webhook_secret")
    paypal_secret = secret("paypal", "client_secret")

    settings = GatewaySettings(
        environment=env,
        stripe=StripeSettings(
            secret_key=SecretStr(stripe_secret) if stripe_secret else None,
            publishable_key=secret("stripe", "publishable_key"),
            webhook_secret=SecretStr(stripe_webhook) if stripe_webhook else None,
            api_version=os.getenv(
                "PAYGATE_STRIPE_API_VERSION", DEFAULT_STRIPE_API_VERSION
            ),
        ),
        paypal=PayPalSettings(
            client_id=secret("paypal", "client_id"),
            client_secret=SecretStr(paypal_secret) if paypal_secret else None,
            webhook_id=secret("paypal", "webhook_id"),
            sandbox=_env_bool("PAYGATE_PAYPAL_SANDBOX", env != "prod"),
            return_url=os.getenv("PAYGATE_PAYPAL_RETURN_URL"),
            cancel_url=os.getenv("PAYGATE_PAYPAL_CANCEL_URL"),
            brand_name=os.getenv("PAYGATE_BRAND_NAME"),
        ),
        http_timeout=float(os.getenv("PAYGATE_HTTP_TIMEOUT", "30")),
        long_http_timeout=float(os.getenv("PAYGATE_LONG_HTTP_TIMEOUT", "60")),
        webhook_tolerance=int(os.getenv("PAYGATE_WEBHOOK_TOLERANCE", "300")),
        event_retention_days=int(os.getenv("PAYGATE_EVENT_RETENTION_DAYS", "30")),
        token_refresh_margin=int(os.getenv("PAYGATE_TOKEN_REFRESH_MARGIN", "60")),
    )
    logger.info(
        "Loaded gateway settings for %s (stripe=%s, paypal=%s)",
        env,
        "yes" if stripe_secret else "no",
        "yes" if paypal_secret else "no",
    )
    return settings
