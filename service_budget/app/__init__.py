"""
Budget Service package for the Budget Ledger API.

This package exposes the FastAPI application for personal budgets:

- app.main: Application entrypoint that wires routes and lifecycle.
- app.auth: Bearer token authentication against the Cognito user pool.
- app.ledger: Budget, income and expense models and the ledger service
  that keeps each budget's derived totals consistent.
- app.persistence: PostgreSQL store used by the ledger.

Design notes:
- Module import must not perform network calls. All IO happens in route
  handlers or explicit startup hooks.
- Use the shared/ utilities for configuration, logging, metrics and errors.
- Verified identities are passed to handlers as explicit parameters; the
  service keeps no per-user state between requests.
"""
