"""Core configuration and error types for quotaguard."""

from quotaguard.core.config import (
    Settings,
    LimiterSettings,
    DispatcherSettings,
    get_settings,
    reload_settings,
)
from quotaguard.core.errors import (
    DispatchError,
    RateLimitExhausted,
    TransportError,
    DecodeError,
    DispatchTimeout,
    DispatcherClosed,
)

__all__ = [
    "Settings",
    "LimiterSettings",
    "DispatcherSettings",
    "get_settings",
    "reload_settings",
    "DispatchError",
    "RateLimitExhausted",
    "TransportError",
    "DecodeError",
    "DispatchTimeout",
    "DispatcherClosed",
]
