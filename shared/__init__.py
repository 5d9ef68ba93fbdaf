"""
Shared utilities for the Token Verifier service.

This package aggregates common building blocks consumed by the service:

- config: Verifier configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator with bounded backoff
- circuit_breaker: Resilient external call protection
- base_service: FastAPI service scaffolding

Do not import from service_verify into shared/.
"""
