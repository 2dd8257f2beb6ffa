"""
quotaguard - Rate-limited request dispatcher

Serializes outbound calls to a quota-constrained HTTP API, spaces them out
under a shared request budget and retries throttled requests with
exponential backoff.
"""

__version__ = "1.0.0"

from quotaguard.core.errors import (
    DispatchError,
    RateLimitExhausted,
    TransportError,
    DecodeError,
    DispatchTimeout,
    DispatcherClosed,
)
from quotaguard.queue.rate_limiter import RateLimiter, BackoffTimer
from quotaguard.queue.dispatcher import RequestDispatcher

__all__ = [
    "RequestDispatcher",
    "RateLimiter",
    "BackoffTimer",
    "DispatchError",
    "RateLimitExhausted",
    "TransportError",
    "DecodeError",
    "DispatchTimeout",
    "DispatcherClosed",
]
