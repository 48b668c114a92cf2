"""Provider clients and the startup factory that wires them."""

from paygate.config import GatewaySettings
from paygate.models.enums import Provider

from .base import PaymentProviderClient
from .paypal_provider import PayPalProvider
from .stripe_provider import StripeProvider


def build_providers(settings: GatewaySettings) -> dict[Provider, PaymentProviderClient]:
    """Build one client per Provider member from settings.

    Clients are built even when unconfigured; operations on them raise
    ConfigurationError before any network call.
    """
    return {
        Provider.STRIPE: StripeProvider(
            settings.stripe,
            timeout=settings.http_timeout,
            long_timeout=settings.long_http_timeout,
            webhook_tolerance=settings.webhook_tolerance,
        ),
        Provider.PAYPAL: PayPalProvider(
            settings.paypal,
            timeout=settings.http_timeout,
            long_timeout=settings.long_http_timeout,
            token_refresh_margin=settings.token_refresh_margin,
        ),
    }


__all__ = [
    "PayPalProvider",
    "PaymentProviderClient",
    "StripeProvider",
    "build_providers",
]
