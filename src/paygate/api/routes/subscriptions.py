"""Subscription endpoints."""

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse
from starlette.status import HTTP_200_OK, HTTP_201_CREATED

from paygate.api.dependencies import get_engine
from paygate.api.models import CreateSubscriptionRequest
from paygate.api.responses import documented, model_response
from paygate.models.enums import Provider
from paygate.models.outcomes import SubscriptionCreated
from paygate.models.records import SubscriptionRecord
from paygate.services.reconciliation import ReconciliationEngine

router = APIRouter(tags=["subscriptions"])


@router.post(
    "/subscriptions",
    summary="Create subscription",
    status_code=HTTP_201_CREATED,
    responses={
        HTTP_201_CREATED: documented(SubscriptionCreated),
        402: {"description": "Provider rejected the request"},
    },
)
def create_subscription(
    request: CreateSubscriptionRequest,
    engine: ReconciliationEngine = Depends(get_engine),
) -> JSONResponse:
    """Create a subscription for a customer on a provider plan."""
    created = engine.create_subscription(
        request.provider,
        request.customer_reference,
        request.plan_id,
        trial_end=request.trial_end,
        trial_period_days=request.trial_period_days,
        billing_cycle_anchor=request.billing_cycle_anchor,
        metadata=request.metadata,
    )
    return model_response(created, HTTP_201_CREATED)


@router.get(
    "/subscriptions/{subscription_id}",
    summary="Get subscription",
    responses={
        HTTP_200_OK: documented(SubscriptionRecord),
        404: {"description": "Subscription not found"},
    },
)
def get_subscription(
    subscription_id: str,
    engine: ReconciliationEngine = Depends(get_engine),
) -> JSONResponse:
    return model_response(engine.get_subscription(subscription_id))


@router.post(
    "/subscriptions/{provider}/{provider_subscription_id}/cancel",
    summary="Cancel subscription",
    responses={
        HTTP_200_OK: documented(SubscriptionRecord),
        404: {"description": "Subscription not found"},
        409: {"description": "Already canceled, expired or paused"},
    },
)
def cancel_subscription(
    provider: Provider,
    provider_subscription_id: str,
    engine: ReconciliationEngine = Depends(get_engine),
) -> JSONResponse:
    return model_response(engine.cancel_subscription(provider, provider_subscription_id))
