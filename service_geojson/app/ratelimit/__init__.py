"""
Rate limiting package for the GeoJSON service.

Holds the in-process token bucket limiter and the request helper that derives
the client identity, enforcing per-client request budgets with burst tolerance.
"""

from .token_bucket import ClientBucket, RateLimitDecision, RateLimitMiddleware, TokenBucketRateLimiter

__all__ = ["ClientBucket", "RateLimitDecision", "RateLimitMiddleware", "TokenBucketRateLimiter"]
