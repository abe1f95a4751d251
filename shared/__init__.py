"""
Shared utilities for the Request Pipeline.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- errors: Canonical error types and responses
- retry: Retry helpers with exponential backoff
- circuit_breaker: Resilient external call protection
- faults: Out-of-band fault channel
- queues: Success/failure outcome queues

Any cross-service logic should live here to avoid import cycles across
service packages. Runtime modules do not import from service_* packages;
test_helpers is test-only and may.
"""
