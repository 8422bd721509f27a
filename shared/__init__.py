"""
Shared utilities for the Blog Access services.

This package aggregates common building blocks:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI app skeleton with health and metrics routes

Do not import from service packages into shared/.
"""
