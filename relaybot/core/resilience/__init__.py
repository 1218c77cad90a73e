"""
Resilience primitives for gateway transport calls.

- RetryPolicy: bounded retry with fixed or exponential backoff
- CircuitBreaker: fail fast after consecutive failures
- PassthroughPolicy: run once, for tests and for disabled resilience
"""

from relaybot.core.resilience.circuit_breaker import CircuitBreaker, CircuitState
from relaybot.core.resilience.retry_policy import (
    PassthroughPolicy,
    ResiliencePolicy,
    RetryPolicy,
    is_retryable,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "PassthroughPolicy",
    "ResiliencePolicy",
    "RetryPolicy",
    "is_retryable",
]
