"""FastAPI application for the payment gateway.

Routes (all under /api):
- /api/ping: health check
- /api/payments, /api/customers, /api/statistics
- /api/subscriptions
- /api/webhooks/{provider}: signed provider event delivery

Deployed as a Lambda behind API Gateway through Mangum, or run locally
with run_server().
"""

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from mangum import Mangum

from paygate import __version__
from paygate.api.exceptions import register_exception_handlers
from paygate.api.middleware import CorrelationIdMiddleware
from paygate.api.routes.payments import router as payments_router
from paygate.api.routes.subscriptions import router as subscriptions_router
from paygate.api.routes.webhooks import router as webhooks_router
from paygate.utils.logging import configure_logging


def create_app() -> FastAPI:
    """Build the application with middleware, handlers and routers attached."""
    app = FastAPI(
        title="Payment Gateway API",
        description="Stripe and PayPal payments reconciled into a single ledger",
        version=__version__,
    )
    app.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(app)

    app.include_router(payments_router, prefix="/api")
    app.include_router(subscriptions_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")

    @app.get("/api/ping")
    async def ping() -> dict[str, Any]:
        """Root health check endpoint at /api/ping."""
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "service": "paygate",
        }

    return app


configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

app = create_app()

# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = False) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: False)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run("paygate.api.main:app", host=host, port=port, reload=True)
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
