"""
Shared utilities for the Tribute Cache service.

This package aggregates the ambient building blocks used by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- circuit_breaker: Protection for calls into unreachable cache tiers
- base_service: FastAPI service skeleton with health and metrics routes
- test_helpers: Fake clock, failing tier and payload factories for tests

Do not import from service packages into shared/.
"""
