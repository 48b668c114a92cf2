"""HTTP surface for the payment gateway (FastAPI, deployable behind Mangum)."""
