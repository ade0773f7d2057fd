"""
Transport layer for the Venice AI Python SDK.

Every call reserves one admission slot, then runs its attempts through the
retry executor. Each attempt passes through the middleware chain before and
after the network call. Streams keep their slot until they are closed.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Iterator, Mapping, Optional, Tuple

import httpx

from ._logging import LoggerLike
from .cancellation import CancellationToken
from .config import ClientConfig
from .events import EventEmitter, EventType, LifecycleEvent
from .exceptions import (
    VeniceAPIError,
    VeniceCancelledError,
    VeniceConnectionError,
    VeniceError,
    VeniceTimeoutError,
    error_from_response,
    error_message_from_body,
)
from .middleware import ErrorContext, MiddlewareChain, RequestContext, ResponseContext
from .ratelimit import AdmissionController, Reservation, SyncAdmissionController
from .retry import RetryExecutor, RetryPolicy
from .streaming import AsyncStream, FrameDecoder, Stream, StreamFrame
from .types import BalanceInfo, RateLimitInfo

logger = logging.getLogger(__name__)

SSE_CONTENT_TYPE = "text/event-stream"

FrameParser = Callable[[StreamFrame], Any]


@dataclass(frozen=True)
class RequestDescriptor:
    """Everything needed to issue one logical API call."""

    method: str
    path: str
    params: Mapping[str, Any] = field(default_factory=dict)
    json: Optional[Any] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    stream: bool = False
    cancel: Optional[CancellationToken] = None
    operation: Optional[str] = None

    @property
    def label(self) -> str:
        return self.operation or f"{self.method} {self.path}"


@dataclass
class APIResponse:
    """A decoded response plus the metadata the service reports in headers."""

    status_code: int
    headers: Dict[str, str]
    body: Any
    elapsed: float
    rate_limit: Optional[RateLimitInfo] = None
    balance: Optional[BalanceInfo] = None


def _build_headers(api_key: str, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Build common HTTP headers."""
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Accept": "application/json",
    }
    headers.update(extra or {})
    return headers


def _translate(exc: Exception, what: str) -> VeniceError:
    """Map an httpx failure onto the SDK's error hierarchy."""
    if isinstance(exc, VeniceError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return VeniceTimeoutError(f"{what} timed out: {exc}")
    if isinstance(exc, httpx.ConnectError):
        return VeniceConnectionError(f"Failed to connect: {exc}")
    return VeniceConnectionError(f"HTTP error: {exc}")


def _decode_body(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return {}
    try:
        return response.json()
    except ValueError as e:
        raise VeniceAPIError(
            f"Invalid JSON in response: {response.text[:200]!r}",
            status_code=response.status_code,
            headers=response.headers,
        ) from e


def _error_for(response: httpx.Response) -> VeniceError:
    """Classify a non-2xx response. The body must already be read."""
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text or None
    message = error_message_from_body(
        body, response.reason_phrase or f"HTTP {response.status_code}"
    )
    return error_from_response(
        response.status_code,
        message,
        body,
        dict(response.headers),
        rate_limit=RateLimitInfo.from_headers(response.headers),
    )


class _PipelineMixin:
    """State and helpers shared by the sync and async transports."""

    config: ClientConfig
    middleware: MiddlewareChain
    events: EventEmitter
    retry: RetryExecutor
    logger: LoggerLike

    def _setup(
        self,
        config: ClientConfig,
        middleware: Optional[MiddlewareChain],
        events: Optional[EventEmitter],
        retry: Optional[RetryExecutor],
        log: Optional[LoggerLike],
    ) -> None:
        self.config = config
        self.logger = log or logger
        self.middleware = middleware if middleware is not None else MiddlewareChain(
            config.middleware, logger=self.logger
        )
        self.events = events if events is not None else EventEmitter(self.logger)
        self.retry = retry or RetryExecutor(RetryPolicy.from_config(config), logger=self.logger)

    def _context(self, descriptor: RequestDescriptor, attempt: int) -> RequestContext:
        headers = dict(descriptor.headers)
        if descriptor.stream:
            headers.setdefault("Accept", SSE_CONTENT_TYPE)
        return RequestContext(
            method=descriptor.method,
            path=descriptor.path,
            headers=headers,
            params=dict(descriptor.params),
            json=descriptor.json,
            stream=descriptor.stream,
            operation=descriptor.label,
            attempt=attempt,
        )

    def _build_request(self, client: Any, ctx: RequestContext) -> httpx.Request:
        return client.build_request(
            ctx.method,
            ctx.path,
            params=ctx.params or None,
            json=ctx.json,
            headers=ctx.headers,
        )

    def _emit(self, type: EventType, descriptor: RequestDescriptor, **data: Any) -> None:
        self.events.emit(LifecycleEvent(type=type, operation=descriptor.label, data=data))

    def _emit_request(self, descriptor: RequestDescriptor) -> None:
        self._emit(
            EventType.REQUEST,
            descriptor,
            method=descriptor.method,
            path=descriptor.path,
            stream=descriptor.stream,
        )

    def _response_context(
        self, ctx: RequestContext, response: httpx.Response, body: Any
    ) -> ResponseContext:
        return ResponseContext(
            request=ctx,
            status_code=response.status_code,
            headers=dict(response.headers),
            body=body,
            elapsed=time.monotonic() - ctx.started_at,
        )

    def _api_response(self, rctx: ResponseContext, response: httpx.Response) -> APIResponse:
        return APIResponse(
            status_code=rctx.status_code,
            headers=rctx.headers,
            body=rctx.body,
            elapsed=rctx.elapsed,
            rate_limit=RateLimitInfo.from_headers(response.headers),
            balance=BalanceInfo.from_headers(response.headers),
        )

    def _log_success(self, descriptor: RequestDescriptor, result: APIResponse) -> None:
        self.logger.debug(
            "%s %s -> %d in %.0fms",
            descriptor.method,
            descriptor.path,
            result.status_code,
            result.elapsed * 1000,
        )
        self._emit(
            EventType.RESPONSE,
            descriptor,
            status_code=result.status_code,
            elapsed=result.elapsed,
            rate_limit=result.rate_limit,
            balance=result.balance,
        )


# ============================================================================
# Async transport
# ============================================================================


class AsyncTransport(_PipelineMixin):
    """Async transport for Venice API communication."""

    def __init__(
        self,
        config: ClientConfig,
        middleware: Optional[MiddlewareChain] = None,
        events: Optional[EventEmitter] = None,
        limiter: Optional[AdmissionController] = None,
        retry: Optional[RetryExecutor] = None,
        logger: Optional[LoggerLike] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._setup(config, middleware, events, retry, logger)
        self.limiter = limiter or AdmissionController(
            config.max_concurrent,
            config.requests_per_minute,
            config.max_queued,
            logger=self.logger,
        )
        self.client = httpx.AsyncClient(
            base_url=config.base_url,
            headers=_build_headers(config.api_key, config.headers),
            timeout=config.timeout,
            transport=http_transport,
        )

    async def _reserve(self, cancel: Optional[CancellationToken]) -> Reservation:
        if cancel is None:
            return await self.limiter.reserve()
        return await cancel.race(self.limiter.reserve())

    async def _guard(self, awaitable: Any, cancel: Optional[CancellationToken]) -> Any:
        if cancel is None:
            return await awaitable
        return await cancel.race(awaitable)

    async def request(self, descriptor: RequestDescriptor) -> APIResponse:
        """Issue one call and return its decoded response."""
        if descriptor.cancel is not None:
            descriptor.cancel.raise_if_cancelled()
        reservation = await self._reserve(descriptor.cancel)
        try:
            self._emit_request(descriptor)
            result = await self.retry.execute(
                lambda attempt: self._attempt(descriptor, attempt),
                cancel=descriptor.cancel,
            )
        finally:
            self.limiter.release(reservation)
        self._log_success(descriptor, result)
        return result

    async def _attempt(self, descriptor: RequestDescriptor, attempt: int) -> APIResponse:
        ctx = self._context(descriptor, attempt)
        try:
            ctx = await self.middleware.arun_request(ctx)
            response = await self._guard(self._send(ctx), descriptor.cancel)
            if response.status_code >= 400:
                raise _error_for(response)
            rctx = self._response_context(ctx, response, _decode_body(response))
            rctx = await self.middleware.arun_response(rctx)
            return self._api_response(rctx, response)
        except Exception as error:
            await self.middleware.arun_error(
                ErrorContext(error=error, request=ctx, elapsed=time.monotonic() - ctx.started_at)
            )
            raise

    async def _send(self, ctx: RequestContext, stream: bool = False) -> httpx.Response:
        request = self._build_request(self.client, ctx)
        try:
            return await self.client.send(request, stream=stream)
        except httpx.HTTPError as e:
            raise _translate(e, "Request") from e

    async def stream(
        self, descriptor: RequestDescriptor, parse: Optional[FrameParser] = None
    ) -> AsyncStream[Any]:
        """
        Open a server-sent event stream.

        Admission and retries cover opening the stream. Once the first byte
        of the body is read, failures end the stream without a retry. The
        returned stream owns the connection and the admission slot, and gives
        both back when it is exhausted, fails or is closed, even before the
        first frame is read.

        Args:
            descriptor: The call to make
            parse: Converts each frame before it is yielded; a ``VeniceError``
                it raises ends the stream like any other stream failure
        """
        if descriptor.cancel is not None:
            descriptor.cancel.raise_if_cancelled()
        reservation = await self._reserve(descriptor.cancel)
        try:
            self._emit_request(descriptor)
            response, rctx = await self.retry.execute(
                lambda attempt: self._open(descriptor, attempt),
                cancel=descriptor.cancel,
            )
        except BaseException:
            self.limiter.release(reservation)
            raise

        async def _cleanup() -> None:
            try:
                await response.aclose()
            finally:
                self.limiter.release(reservation)

        return AsyncStream(self._frames(descriptor, response, rctx, parse), on_close=_cleanup)

    async def _open(
        self, descriptor: RequestDescriptor, attempt: int
    ) -> Tuple[httpx.Response, ResponseContext]:
        ctx = self._context(descriptor, attempt)
        response: Optional[httpx.Response] = None
        try:
            ctx = await self.middleware.arun_request(ctx)
            response = await self._guard(self._send(ctx, stream=True), descriptor.cancel)
            if response.status_code >= 400:
                await response.aread()
                raise _error_for(response)
            rctx = await self.middleware.arun_response(self._response_context(ctx, response, None))
            return response, rctx
        except Exception as error:
            if response is not None:
                await response.aclose()
            await self.middleware.arun_error(
                ErrorContext(error=error, request=ctx, elapsed=time.monotonic() - ctx.started_at)
            )
            raise

    async def _frames(
        self,
        descriptor: RequestDescriptor,
        response: httpx.Response,
        rctx: ResponseContext,
        parse: Optional[FrameParser],
    ) -> AsyncIterator[Any]:
        cancel = descriptor.cancel
        decoder = FrameDecoder(self.logger)
        chunks = response.aiter_bytes()
        failed = False
        try:
            while not decoder.done:
                chunk = await self._guard(_next_chunk(chunks), cancel)
                frames = decoder.flush() if chunk is None else decoder.feed(chunk)
                for frame in frames:
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    yield frame if parse is None else parse(frame)
        except (httpx.HTTPError, VeniceError) as exc:
            failed = True
            error = _translate(exc, "Stream")
            await self.middleware.arun_error(
                ErrorContext(
                    error=error,
                    request=rctx.request,
                    elapsed=time.monotonic() - rctx.request.started_at,
                )
            )
            if error is exc:
                raise
            raise error from exc
        finally:
            self.logger.debug("Stream %s closed after %d frames", descriptor.label, decoder.count)
            if not failed:
                self._emit(
                    EventType.RESPONSE,
                    descriptor,
                    status_code=rctx.status_code,
                    elapsed=time.monotonic() - rctx.request.started_at,
                    frames=decoder.count,
                )

    async def get(self, path: str, **kwargs: Any) -> Any:
        """Async GET request."""
        return await self._call("GET", path, **kwargs)

    async def post(self, path: str, json_data: Optional[Any] = None, **kwargs: Any) -> Any:
        """Async POST request."""
        return await self._call("POST", path, json=json_data, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        """Async DELETE request."""
        return await self._call("DELETE", path, **kwargs)

    async def post_stream(
        self,
        path: str,
        json_data: Optional[Any] = None,
        parse: Optional[FrameParser] = None,
        **kwargs: Any,
    ) -> AsyncStream[Any]:
        """Async streaming POST request."""
        return await self.stream(
            RequestDescriptor("POST", path, json=json_data, stream=True, **kwargs), parse
        )

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self.request(RequestDescriptor(method, path, **kwargs))
        return response.body

    async def close(self) -> None:
        """Close the async client."""
        await self.client.aclose()

    async def __aenter__(self) -> "AsyncTransport":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


async def _next_chunk(chunks: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


# ============================================================================
# Sync transport
# ============================================================================


class Transport(_PipelineMixin):
    """
    Blocking transport for Venice API communication.

    Safe to share between threads; admission is coordinated with a
    condition variable.
    """

    def __init__(
        self,
        config: ClientConfig,
        middleware: Optional[MiddlewareChain] = None,
        events: Optional[EventEmitter] = None,
        limiter: Optional[SyncAdmissionController] = None,
        retry: Optional[RetryExecutor] = None,
        logger: Optional[LoggerLike] = None,
        http_transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._setup(config, middleware, events, retry, logger)
        self.limiter = limiter or SyncAdmissionController(
            config.max_concurrent,
            config.requests_per_minute,
            config.max_queued,
            logger=self.logger,
        )
        self.client = httpx.Client(
            base_url=config.base_url,
            headers=_build_headers(config.api_key, config.headers),
            timeout=config.timeout,
            transport=http_transport,
        )

    def request(self, descriptor: RequestDescriptor) -> APIResponse:
        """Issue one call and return its decoded response."""
        cancel = descriptor.cancel
        if cancel is not None:
            cancel.raise_if_cancelled()
        reservation = self.limiter.reserve(cancel)
        try:
            self._emit_request(descriptor)
            result = self.retry.execute_sync(
                lambda attempt: self._attempt(descriptor, attempt),
                cancel=cancel,
            )
        finally:
            self.limiter.release(reservation)
        self._log_success(descriptor, result)
        return result

    def _attempt(self, descriptor: RequestDescriptor, attempt: int) -> APIResponse:
        ctx = self._context(descriptor, attempt)
        try:
            ctx = self.middleware.run_request(ctx)
            response = self._send(ctx, descriptor.cancel)
            try:
                self._read(response, descriptor.cancel)
            finally:
                response.close()
            if response.status_code >= 400:
                raise _error_for(response)
            rctx = self.middleware.run_response(
                self._response_context(ctx, response, _decode_body(response))
            )
            return self._api_response(rctx, response)
        except Exception as error:
            self.middleware.run_error(
                ErrorContext(error=error, request=ctx, elapsed=time.monotonic() - ctx.started_at)
            )
            raise

    def _send(
        self, ctx: RequestContext, cancel: Optional[CancellationToken]
    ) -> httpx.Response:
        """Send with a streamed body so a cancellation can close the connection."""
        if cancel is not None:
            cancel.raise_if_cancelled()
        request = self._build_request(self.client, ctx)
        try:
            response = self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            if cancel is not None and cancel.cancelled:
                raise VeniceCancelledError() from e
            raise _translate(e, "Request") from e
        if cancel is not None and cancel.cancelled:
            response.close()
            raise VeniceCancelledError()
        return response

    def _read(self, response: httpx.Response, cancel: Optional[CancellationToken]) -> None:
        """Read the whole body. Cancelling the token closes the response mid-read."""
        unregister = cancel.add_callback(response.close) if cancel is not None else None
        try:
            response.read()
        except (httpx.HTTPError, httpx.StreamError) as e:
            if cancel is not None and cancel.cancelled:
                raise VeniceCancelledError() from e
            raise _translate(e, "Request") from e
        finally:
            if unregister is not None:
                unregister()
        if cancel is not None:
            cancel.raise_if_cancelled()

    def stream(
        self, descriptor: RequestDescriptor, parse: Optional[FrameParser] = None
    ) -> Stream[Any]:
        """Open a server-sent event stream. See ``AsyncTransport.stream``."""
        cancel = descriptor.cancel
        if cancel is not None:
            cancel.raise_if_cancelled()
        reservation = self.limiter.reserve(cancel)
        try:
            self._emit_request(descriptor)
            response, rctx = self.retry.execute_sync(
                lambda attempt: self._open(descriptor, attempt),
                cancel=cancel,
            )
        except BaseException:
            self.limiter.release(reservation)
            raise

        # Registered here so a cancellation closes the connection even
        # before the first frame is requested.
        unregister = cancel.add_callback(response.close) if cancel is not None else None

        def _cleanup() -> None:
            if unregister is not None:
                unregister()
            try:
                response.close()
            finally:
                self.limiter.release(reservation)

        return Stream(self._frames(descriptor, response, rctx, parse), on_close=_cleanup)

    def _open(
        self, descriptor: RequestDescriptor, attempt: int
    ) -> Tuple[httpx.Response, ResponseContext]:
        ctx = self._context(descriptor, attempt)
        response: Optional[httpx.Response] = None
        try:
            ctx = self.middleware.run_request(ctx)
            response = self._send(ctx, descriptor.cancel)
            if response.status_code >= 400:
                self._read(response, descriptor.cancel)
                raise _error_for(response)
            rctx = self.middleware.run_response(self._response_context(ctx, response, None))
            return response, rctx
        except Exception as error:
            if response is not None:
                response.close()
            self.middleware.run_error(
                ErrorContext(error=error, request=ctx, elapsed=time.monotonic() - ctx.started_at)
            )
            raise

    def _frames(
        self,
        descriptor: RequestDescriptor,
        response: httpx.Response,
        rctx: ResponseContext,
        parse: Optional[FrameParser],
    ) -> Iterator[Any]:
        cancel = descriptor.cancel
        decoder = FrameDecoder(self.logger)
        failed = False
        try:
            for chunk in response.iter_bytes():
                for frame in decoder.feed(chunk):
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    yield frame if parse is None else parse(frame)
                if decoder.done:
                    break
            else:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                for frame in decoder.flush():
                    yield frame if parse is None else parse(frame)
        except (httpx.HTTPError, httpx.StreamError, VeniceError) as exc:
            failed = True
            if cancel is not None and cancel.cancelled and not isinstance(exc, VeniceError):
                error: VeniceError = VeniceCancelledError()
            else:
                error = _translate(exc, "Stream")
            self.middleware.run_error(
                ErrorContext(
                    error=error,
                    request=rctx.request,
                    elapsed=time.monotonic() - rctx.request.started_at,
                )
            )
            if error is exc:
                raise
            raise error from exc
        finally:
            self.logger.debug("Stream %s closed after %d frames", descriptor.label, decoder.count)
            if not failed:
                self._emit(
                    EventType.RESPONSE,
                    descriptor,
                    status_code=rctx.status_code,
                    elapsed=time.monotonic() - rctx.request.started_at,
                    frames=decoder.count,
                )

    def get(self, path: str, **kwargs: Any) -> Any:
        """GET request."""
        return self._call("GET", path, **kwargs)

    def post(self, path: str, json_data: Optional[Any] = None, **kwargs: Any) -> Any:
        """POST request."""
        return self._call("POST", path, json=json_data, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        """DELETE request."""
        return self._call("DELETE", path, **kwargs)

    def post_stream(
        self,
        path: str,
        json_data: Optional[Any] = None,
        parse: Optional[FrameParser] = None,
        **kwargs: Any,
    ) -> Stream[Any]:
        """Streaming POST request."""
        return self.stream(
            RequestDescriptor("POST", path, json=json_data, stream=True, **kwargs), parse
        )

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return self.request(RequestDescriptor(method, path, **kwargs)).body

    def close(self) -> None:
        """Close the client."""
        self.client.close()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
