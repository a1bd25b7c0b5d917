"""
Shared utilities for the StayChill client data layer.

This package aggregates common building blocks consumed by the client:

- config: Client configuration via pydantic-settings
- logging: Structured logging with request/tab correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helpers with exponential backoff
- test_helpers: Fake clock, scripted API and test data for the test suites

Do not import from staychill_client into shared/.
"""
