from recommender.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerPolicy,
    CircuitState,
)
from recommender.resilience.client import HttpJsonClient, ResilientClient
from recommender.resilience.errors import (
    AdmissionDeniedError,
    ApiError,
    CircuitOpenError,
    MalformedResponseError,
    NetworkError,
    OperationCancelledError,
)
from recommender.resilience.rate_limiter import RateLimiter, RateLimitPolicy
from recommender.resilience.retry import RetryExecutor, RetryPolicy

__all__ = [
    "AdmissionDeniedError",
    "ApiError",
    "CircuitBreaker",
    "CircuitBreakerPolicy",
    "CircuitOpenError",
    "CircuitState",
    "HttpJsonClient",
    "MalformedResponseError",
    "NetworkError",
    "OperationCancelledError",
    "RateLimitPolicy",
    "RateLimiter",
    "ResilientClient",
    "RetryExecutor",
    "RetryPolicy",
]
