"""
Shared utilities for the distributed rate limiter.

This package aggregates the ambient building blocks used by the limiter:

- config: Limiter settings via pydantic-settings
- logging: Structured logging with limiter correlation
- metrics: Prometheus counters and histograms
- errors: Canonical error types and responses
- retry: Contention retry delay policy

Do not import from the ratelimiter package into shared/.
"""
