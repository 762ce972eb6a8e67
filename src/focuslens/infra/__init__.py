"""Infrastructure helpers."""

from focuslens.infra.rate_limiter import FixedWindowRateLimiter

__all__ = ["FixedWindowRateLimiter"]
