"""
Rate limiting and request queuing module.

Serializes outbound calls and keeps them inside the upstream request budget.
"""

from quotaguard.queue.rate_limiter import (
    RateLimiter,
    BackoffTimer,
    LimiterSnapshot,
)
from quotaguard.queue.dispatcher import (
    RequestDispatcher,
    QueuedCall,
    DispatchStats,
)

__all__ = [
    "RateLimiter",
    "BackoffTimer",
    "LimiterSnapshot",
    "RequestDispatcher",
    "QueuedCall",
    "DispatchStats",
]
