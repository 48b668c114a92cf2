"""Webhook endpoints for provider event delivery.

One route serves every provider: POST /api/webhooks/{provider}.
These endpoints are not authenticated by the caller; each provider client
verifies its own signature against the raw body.

Status codes:
- 200: applied, duplicate, ignored, orphaned or stale (no redelivery wanted)
- 400: signature or payload rejected
- 404: unknown provider
- 5xx: processing failed; the provider will redeliver
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool
from starlette.status import HTTP_404_NOT_FOUND, HTTP_500_INTERNAL_SERVER_ERROR

from paygate.api.dependencies import get_engine
from paygate.api.models import WebhookResponse
from paygate.models.enums import Provider
from paygate.models.errors import LedgerConflict, RecordNotFound
from paygate.services.reconciliation import ReconciliationEngine
from paygate.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post(
    "/webhooks/{provider}",
    summary="Receive provider webhook",
    response_model=WebhookResponse,
    responses={
        400: {"description": "Signature verification failed or payload malformed"},
        404: {"description": "Unknown provider"},
        500: {"description": "Processing failed; redelivery expected"},
    },
)
async def receive_webhook(
    provider: str,
    request: Request,
    engine: ReconciliationEngine = Depends(get_engine),
) -> WebhookResponse:
    try:
        selected = Provider(provider.lower())
    except ValueError:
        raise HTTPException(
            status_code=HTTP_404_NOT_FOUND, detail=f"Unknown provider: {provider}"
        ) from None

    # Signatures are computed over the exact bytes received
    body = await request.body()
    try:
        outcome = await run_in_threadpool(
            engine.ingest_webhook, selected, body, dict(request.headers)
        )
    except (LedgerConflict, RecordNotFound) as e:
        # The event was released; a non-2xx answer makes the provider redeliver it
        logger.warning("%s webhook not applied yet: %s", selected.value, e.message)
        raise HTTPException(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.to_detail().model_dump(mode="json"),
        ) from e
    return WebhookResponse(
        event_id=outcome.event_id,
        event_type=outcome.event_type,
        processing_result=outcome.result,
        provider_id=outcome.provider_id,
    )
