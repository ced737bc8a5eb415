"""
Shared utilities for the Budget Ledger API.

Common building blocks consumed by the service packages:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service skeleton with health and metrics endpoints

Do not import from service_* packages into shared/.
"""
