"""
Shared utilities for the OSM GeoJSON tooling.

This package aggregates common building blocks consumed by the CLI and the
HTTP service:

- config: Settings via pydantic-settings
- logging: Structured logging with structlog
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator with backoff
- base_service: FastAPI service skeleton (CORS, health, metrics, errors)
- test_helpers: factories and fakes for tests

Only test_helpers imports from service_geojson.
"""
