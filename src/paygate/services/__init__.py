"""Gateway services: ledger, provider clients, reconciliation and statistics."""
