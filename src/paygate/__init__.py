"""paygate: one contract over Stripe and PayPal, reconciled into a DynamoDB ledger."""

__version__ = "0.1.0"
