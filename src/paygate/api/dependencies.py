"""FastAPI dependency providers.

Everything is built once per process on first use:

    GatewaySettings (env + SSM)
        ├── Ledger (DynamoDB singleton)
        └── provider clients (build_providers)
                └── ReconciliationEngine

Testing:
    Use reset_services() to clear cached instances between tests, or
    override get_engine through app.dependency_overrides.
"""

from functools import lru_cache

from paygate.config import GatewaySettings, load_settings
from paygate.services.dynamodb import get_dynamodb_service
from paygate.services.ledger import Ledger
from paygate.services.providers import build_providers
from paygate.services.reconciliation import ReconciliationEngine


@lru_cache
def get_settings() -> GatewaySettings:
    return load_settings()


@lru_cache
def get_ledger() -> Ledger:
    """Ledger on the shared DynamoDB service."""
    return Ledger(
        get_dynamodb_service(),
        event_retention_days=get_settings().event_retention_days,
    )


@lru_cache
def get_engine() -> ReconciliationEngine:
    """Engine wired with every provider client."""
    return ReconciliationEngine(get_ledger(), build_providers(get_settings()))


def reset_services() -> None:
    """Clear all cached service instances (for testing)."""
    get_settings.cache_clear()
    get_ledger.cache_clear()
    get_engine.cache_clear()
