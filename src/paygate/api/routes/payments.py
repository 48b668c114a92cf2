"""Payment, customer and reporting endpoints.

Provides REST endpoints for:
- Creating, capturing and refunding payments at a provider
- Reading ledger payments and the provider's live view of a payment
- Registering customers
- Payment statistics over a named period

Handlers are synchronous; FastAPI runs them in its threadpool so the
blocking provider and DynamoDB calls never stall the event loop.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.responses import JSONResponse
from starlette.status import HTTP_200_OK, HTTP_201_CREATED, HTTP_400_BAD_REQUEST

from paygate.api.dependencies import get_engine
from paygate.api.models import CreateCustomerRequest, CreatePaymentRequest, RefundRequest
from paygate.api.responses import documented, model_response
from paygate.models.enums import Provider
from paygate.models.outcomes import PaymentCreated
from paygate.models.provider import PaymentSnapshot, ProviderCustomer
from paygate.models.records import PaymentRecord
from paygate.models.statistics import PaymentStatistics
from paygate.services.reconciliation import ReconciliationEngine
from paygate.services.statistics import PERIODS

router = APIRouter(tags=["payments"])

PROVIDER_ERRORS = {
    402: {"description": "Provider rejected the request"},
    503: {"description": "Provider not configured"},
    504: {"description": "Provider unreachable"},
}


@router.post(
    "/payments",
    summary="Create payment",
    status_code=HTTP_201_CREATED,
    responses={HTTP_201_CREATED: documented(PaymentCreated), **PROVIDER_ERRORS},
)
def create_payment(
    request: CreatePaymentRequest,
    engine: ReconciliationEngine = Depends(get_engine),
) -> JSONResponse:
    """Create a payment and record it as pending or requires_action.

    The response carries the approval URL (PayPal) or client secret
    (Stripe) the payer needs to finish.
    """
    created = engine.create_payment(
        request.provider,
        request.amount,
        request.currency,
        customer_reference=request.customer_reference,
        capture=request.capture,
        metadata=request.metadata,
        idempotency_key=request.idempotency_key,
        description=request.description,
    )
    return model_response(created, HTTP_201_CREATED)


@router.get(
    "/payments/{payment_id}",
    summary="Get payment",
    responses={
        HTTP_200_OK: documented(PaymentRecord),
        404: {"description": "Payment not found"},
    },
)
def get_payment(
    payment_id: str,
    engine: ReconciliationEngine = Depends(get_engine),
) -> JSONResponse:
    return model_response(engine.get_payment(payment_id))


@router.post(
    "/payments/{provider}/{provider_payment_id}/capture",
    summary="Capture payment",
    responses={
        HTTP_200_OK: documented(PaymentRecord),
        **PROVIDER_ERRORS,
        409: {"description": "Payment cannot be captured"},
    },
)
def capture_payment(
    provider: Provider,
    provider_payment_id: str,
    engine: ReconciliationEngine = Depends(get_engine),
) -> JSONResponse:
    return model_response(engine.capture_payment(provider, provider_payment_id))


@router.post(
    "/payments/{provider}/{provider_payment_id}/refund",
    summary="Refund payment",
    responses={
        HTTP_200_OK: documented(PaymentRecord),
        **PROVIDER_ERRORS,
        404: {"description": "Payment not found"},
        409: {"description": "Not refundable or amount exceeds what remains"},
    },
)
def refund_payment(
    provider: Provider,
    provider_payment_id: str,
    request: RefundRequest | None = None,
    engine: ReconciliationEngine = Depends(get_engine),
) -> JSONResponse:
    """Refund part of a payment, or everything that remains when no amount is given."""
    amount = request.amount if request is not None else None
    return model_response(engine.refund_payment(provider, provider_payment_id, amount))


@router.get(
    "/payments/{provider}/{provider_payment_id}/provider-view",
    summary="Fetch payment from provider",
    responses={HTTP_200_OK: documented(PaymentSnapshot), **PROVIDER_ERRORS},
)
def fetch_provider_payment(
    provider: Provider,
    provider_payment_id: str,
    engine: ReconciliationEngine = Depends(get_engine),
) -> JSONResponse:
    return model_response(engine.fetch_provider_payment(provider, provider_payment_id))


@router.post(
    "/customers",
    summary="Register customer",
    status_code=HTTP_201_CREATED,
    responses={HTTP_201_CREATED: documented(ProviderCustomer), **PROVIDER_ERRORS},
)
def create_customer(
    request: CreateCustomerRequest,
    engine: ReconciliationEngine = Depends(get_engine),
) -> JSONResponse:
    customer = engine.create_customer(
        request.provider,
        email=request.email,
        name=request.name,
        metadata=request.metadata,
    )
    return model_response(customer, HTTP_201_CREATED)


@router.get(
    "/statistics",
    summary="Payment statistics",
    responses={
        HTTP_200_OK: documented(PaymentStatistics),
        400: {"description": "Unknown period"},
    },
)
def get_statistics(
    period: str = Query(default="30days", description=f"One of: {', '.join(PERIODS)}"),
    engine: ReconciliationEngine = Depends(get_engine),
) -> JSONResponse:
    if period not in PERIODS:
        raise HTTPException(status_code=HTTP_400_BAD_REQUEST, detail=f"Unknown period: {period}")
    return model_response(engine.get_statistics(period))
