"""
Shared utilities for the Data Ingestion Service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators and backoff calculation
- circuit_breaker: Resilient external call protection
- base_service: FastAPI service scaffolding

Any cross-service logic should live here to avoid import cycles. Do not
import from service_* packages into shared/ (test_helpers excepted).
"""
