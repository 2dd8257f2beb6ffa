"""
Error taxonomy for dispatched requests.

Throttling is recovered inside the dispatcher up to the retry ceiling; every
other failure is raised to the caller unchanged.
"""

from __future__ import annotations


class DispatchError(Exception):
    """Base exception for dispatcher errors."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class RateLimitExhausted(DispatchError):
    """Raised when the upstream keeps throttling after every retry."""

    def __init__(
        self,
        url: str | None = None,
        attempts: int = 0,
        message: str = "API rate limit reached. Please try again later.",
    ):
        super().__init__(message, url, status_code=429, retryable=False)
        self.attempts = attempts


class TransportError(DispatchError):
    """Raised for non-2xx responses (other than 429) and network failures."""

    def __init__(
        self,
        status_code: int | None,
        message: str,
        url: str | None = None,
    ):
        super().__init__(f"API call failed: {message}", url, status_code=status_code)
        self.message = message


class DecodeError(DispatchError):
    """Raised when a response body is not valid JSON."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message, url, status_code=status_code)


class DispatchTimeout(DispatchError):
    """Raised when a caller's per-call timeout elapses."""

    def __init__(self, url: str | None = None, timeout: float | None = None):
        super().__init__(f"Request timed out after {timeout}s", url)
        self.timeout = timeout


class DispatcherClosed(DispatchError):
    """Raised when the dispatcher shuts down before a call completes."""

    def __init__(self, url: str | None = None):
        super().__init__("Dispatcher is closed", url)
