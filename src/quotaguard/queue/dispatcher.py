"""
Serialized request dispatcher.

Every outbound call goes through one FIFO queue drained by a single worker,
so at most one request is in flight against the upstream API at any time.
"""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from quotaguard.core.config import DispatcherSettings
from quotaguard.core.errors import (
    DecodeError,
    DispatchError,
    DispatcherClosed,
    DispatchTimeout,
    RateLimitExhausted,
    TransportError,
)
from quotaguard.queue.rate_limiter import RateLimiter
from quotaguard.utils.logging import get_logger

logger = get_logger(__name__)

THROTTLED = 429


@dataclass
class QueuedCall:
    """A network call waiting for its turn at the head of the queue."""

    url: str
    credentials: str | None
    retry_count: int
    future: asyncio.Future
    enqueued_at: float
    attempts: int = 1


@dataclass
class Attempt:
    """Outcome of one queued call: decoded data, or a request to retry."""

    data: Any = None
    retry: bool = False


@dataclass
class DispatchStats:
    """Dispatcher statistics."""

    total_queued: int = 0
    total_processed: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    total_dropped: int = 0
    total_timeouts: int = 0
    throttled: int = 0
    retries: int = 0
    current_queue_size: int = 0
    avg_wait_time_ms: float = 0.0
    errors: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_queued": self.total_queued,
            "total_processed": self.total_processed,
            "total_succeeded": self.total_succeeded,
            "total_failed": self.total_failed,
            "total_dropped": self.total_dropped,
            "total_timeouts": self.total_timeouts,
            "throttled": self.throttled,
            "retries": self.retries,
            "current_queue_size": self.current_queue_size,
            "avg_wait_time_ms": round(self.avg_wait_time_ms, 2),
            "errors": dict(self.errors),
        }


class RequestDispatcher:
    """
    Rate-limited, serialized, retrying GET dispatcher.

    Features:
    - Admission delay from the RateLimiter before a call is queued
    - Strict FIFO execution, one network call at a time
    - Automatic bounded retry with backoff on HTTP 429
    - Immediate failure for every other error
    - Optional per-call timeout

    Example:
        async with RequestDispatcher() as dispatcher:
            data = await dispatcher.fetch_data(
                "https://api.example.com/v3/quote/AAPL",
                credentials=api_key,
            )

    Not thread-safe: create, use and close it on one event loop.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        settings: DispatcherSettings | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.rate_limiter = rate_limiter or RateLimiter()
        self.settings = settings or DispatcherSettings()

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self.settings.request_timeout_seconds,
            headers={"User-Agent": self.settings.user_agent},
            transport=transport,
        )

        self._queue: asyncio.Queue[QueuedCall] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._active: QueuedCall | None = None
        self._admitting: set[asyncio.Task] = set()
        self._aborted: set[asyncio.Task] = set()
        self._closed = False
        self._stats = DispatchStats()
        self._total_wait_time = 0.0

    async def __aenter__(self) -> "RequestDispatcher":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    def _safe_url(self, url: str) -> str:
        """URL with the credentials parameter stripped, for logging."""
        try:
            return str(httpx.URL(url).copy_remove_param(self.settings.credentials_param))
        except httpx.InvalidURL:
            return url

    def _record_error(self, error: Exception) -> None:
        name = type(error).__name__
        self._stats.errors[name] = self._stats.errors.get(name, 0) + 1

    async def fetch_data(
        self,
        url: str,
        credentials: str | None = None,
        retry_count: int = 0,
        *,
        timeout: float | None = None,
    ) -> Any:
        """
        Fetch ``url`` under the rate limit and return the decoded JSON body.

        Args:
            url: Absolute URL to GET
            credentials: Optional API key, sent as the credentials query parameter
            retry_count: Throttled attempts already made for this request
            timeout: Seconds before the caller gives up (defaults to
                ``call_timeout_seconds``; None waits indefinitely)

        Returns:
            Decoded JSON body

        Raises:
            RateLimitExhausted: Still throttled after ``max_retries`` retries
            TransportError: Non-2xx response or network failure
            DecodeError: Body is not valid JSON
            DispatchTimeout: ``timeout`` elapsed
            DispatcherClosed: Dispatcher was closed
        """
        if self._closed:
            raise DispatcherClosed(url)

        if timeout is None:
            timeout = self.settings.call_timeout_seconds
        if timeout is None:
            return await self._fetch_with_retries(url, credentials, retry_count)

        try:
            return await asyncio.wait_for(
                self._fetch_with_retries(url, credentials, retry_count),
                timeout,
            )
        except asyncio.TimeoutError as exc:
            self._stats.total_timeouts += 1
            logger.warning("Request timed out", url=self._safe_url(url), timeout=timeout)
            raise DispatchTimeout(url, timeout) from exc

    async def _fetch_with_retries(
        self,
        url: str,
        credentials: str | None,
        retry_count: int,
    ) -> Any:
        safe_url = self._safe_url(url)
        attempt = retry_count
        attempts = 0
        while True:
            admitted = False
            with structlog.contextvars.bound_contextvars(request_url=safe_url, retry_count=attempt):
                try:
                    with self._abort_on_close(url):
                        delay = await self.rate_limiter.admission_delay(url, attempt)
                        admitted = True
                        if delay > 0:
                            logger.info("Waiting before next request", delay_ms=delay)
                            await self.rate_limiter.sleep(delay)
                    attempts += 1
                    outcome = await self._submit(url, credentials, attempt, attempts)
                finally:
                    # A caller still polling never owned the marker
                    if admitted:
                        self.rate_limiter.release_pending(url)

            if not outcome.retry:
                return outcome.data

            attempt += 1
            self._stats.retries += 1
            logger.info("Retrying throttled request", url=safe_url, retry_count=attempt)

    @contextlib.contextmanager
    def _abort_on_close(self, url: str):
        """Turn a cancellation issued by ``aclose`` into DispatcherClosed."""
        task = asyncio.current_task()
        self._admitting.add(task)
        try:
            yield
        except asyncio.CancelledError:
            if task not in self._aborted:
                raise
            self._aborted.discard(task)
            task.uncancel()
            raise DispatcherClosed(url) from None
        finally:
            self._admitting.discard(task)

    async def _submit(
        self,
        url: str,
        credentials: str | None,
        retry_count: int,
        attempts: int = 1,
    ) -> Attempt:
        """Queue a call and wait for the worker to settle it."""
        if self._closed:
            raise DispatcherClosed(url)
        if self.settings.max_queue_size and self._queue.qsize() >= self.settings.max_queue_size:
            self._stats.total_dropped += 1
            raise DispatchError("Request queue is full", url)

        self._ensure_worker()

        future: asyncio.Future[Attempt] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(
            QueuedCall(
                url=url,
                credentials=credentials,
                retry_count=retry_count,
                future=future,
                enqueued_at=self.rate_limiter.now(),
                attempts=attempts,
            )
        )
        self._stats.total_queued += 1
        self._stats.current_queue_size = self._queue.qsize()

        return await future

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            # Fresh context so one caller's log bindings do not stick to the worker
            self._worker = asyncio.create_task(
                self._process_queue(), context=contextvars.Context()
            )

    async def _process_queue(self) -> None:
        """Drain the queue one call at a time."""
        while True:
            call = await self._queue.get()
            self._stats.current_queue_size = self._queue.qsize()
            try:
                if call.future.done():
                    # Caller timed out or was cancelled while queued
                    continue

                self._active = call
                wait_time_ms = (self.rate_limiter.now() - call.enqueued_at) * 1000
                self._total_wait_time += wait_time_ms

                try:
                    result = await self._execute(call)
                except asyncio.CancelledError:
                    if not call.future.done():
                        call.future.set_exception(DispatcherClosed(call.url))
                    raise
                except Exception as e:
                    self._stats.total_failed += 1
                    self._record_error(e)
                    logger.warning(
                        "Request failed",
                        url=self._safe_url(call.url),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    if not call.future.done():
                        call.future.set_exception(e)
                else:
                    if not result.retry:
                        self._stats.total_succeeded += 1
                    if not call.future.done():
                        call.future.set_result(result)

                self._stats.total_processed += 1
                self._stats.avg_wait_time_ms = (
                    self._total_wait_time / self._stats.total_processed
                )
            finally:
                self._active = None
                self._queue.task_done()

    async def _execute(self, call: QueuedCall) -> Attempt:
        """Run one call at the head of the queue."""
        spacing = self.rate_limiter.spacing_delay()
        if spacing > 0:
            await self.rate_limiter.sleep(spacing)

        self.rate_limiter.note_admitted()
        response = await self._send(call)

        if response.status_code == THROTTLED:
            self._stats.throttled += 1
            if call.retry_count < self.rate_limiter.max_retries:
                logger.warning(
                    "Upstream throttled request",
                    url=self._safe_url(call.url),
                    retry_count=call.retry_count,
                    max_retries=self.rate_limiter.max_retries,
                )
                timer = self.rate_limiter.backoff_delay(call.retry_count)
                try:
                    await timer.wait()
                except asyncio.CancelledError:
                    task = asyncio.current_task()
                    if task is not None and task.cancelling():
                        raise
                    # Timer superseded or limiter closed; the backoff is over
                    logger.info(
                        "Backoff cut short",
                        url=self._safe_url(call.url),
                        retry_count=call.retry_count,
                    )
                return Attempt(retry=True)
            raise RateLimitExhausted(call.url, attempts=call.attempts)

        if not response.is_success:
            reason = response.reason_phrase or f"HTTP {response.status_code}"
            raise TransportError(response.status_code, reason, call.url)

        try:
            data = response.json()
        except ValueError as exc:
            raise DecodeError(
                f"Response is not valid JSON: {exc}",
                call.url,
                status_code=response.status_code,
            ) from exc

        return Attempt(data=data)

    async def _send(self, call: QueuedCall) -> httpx.Response:
        try:
            url = httpx.URL(call.url)
            param = self.settings.credentials_param
            if call.credentials and param not in url.params:
                url = url.copy_add_param(param, call.credentials)
            return await self._client.get(url)
        except httpx.HTTPError as exc:
            raise TransportError(None, str(exc) or type(exc).__name__, call.url) from exc

    def get_stats(self) -> DispatchStats:
        """Get dispatcher statistics."""
        self._stats.current_queue_size = self._queue.qsize()
        return self._stats

    async def aclose(self) -> None:
        """Stop the worker, fail outstanding calls and release resources."""
        if self._closed:
            return
        self._closed = True

        # Callers still waiting for admission never reach the queue
        for task in list(self._admitting):
            self._aborted.add(task)
            task.cancel()

        active = self._active
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        if active is not None and not active.future.done():
            active.future.set_exception(DispatcherClosed(active.url))

        while not self._queue.empty():
            call = self._queue.get_nowait()
            if not call.future.done():
                call.future.set_exception(DispatcherClosed(call.url))

        self.rate_limiter.close()
        if self._owns_client:
            await self._client.aclose()
