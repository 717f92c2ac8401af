"""
Shared utilities for the Service Marketplace.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and HTTP payloads
- base_service: FastAPI application shell

Do not import from service packages into shared/.
"""
