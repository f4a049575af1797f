"""限流、重试与熔断"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerRegistry
from .fetch import call_with_rate_limit, parse_retry_after, rate_limited_fetch
from .guard import CallGuard
from .rate_limiter import (
    DEFAULT_KEY,
    DEFAULT_SERVICE_CONFIGS,
    RateLimiter,
    RateLimiterRegistry,
)
from .retry import RetryConfig, retry_on_error, retry_with_backoff

__all__ = [
    'CircuitBreaker', 'CircuitBreakerConfig', 'CircuitBreakerRegistry',
    'call_with_rate_limit', 'parse_retry_after', 'rate_limited_fetch', 'CallGuard',
    'DEFAULT_KEY', 'DEFAULT_SERVICE_CONFIGS', 'RateLimiter', 'RateLimiterRegistry',
    'RetryConfig', 'retry_on_error', 'retry_with_backoff'
]
