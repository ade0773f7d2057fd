"""
Request/response middleware.

Every attempt passes through the chain: ``on_request`` hooks run in
registration order before the network call, ``on_response`` hooks run in the
same order after a successful call, and ``on_error`` hooks observe failures.
Error observers never suppress the error they observe.
"""

import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ._logging import LoggerLike

REDACTED_HEADERS = frozenset({"authorization"})


@dataclass
class RequestContext:
    """Mutable view of an outgoing request."""

    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    json: Optional[Any] = None
    stream: bool = False
    operation: str = ""
    attempt: int = 1
    started_at: float = field(default_factory=time.monotonic)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResponseContext:
    """Mutable view of a completed response. ``body`` is None for streams."""

    request: RequestContext
    status_code: int
    headers: Dict[str, str]
    body: Any
    elapsed: float

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.request.metadata


@dataclass
class ErrorContext:
    """A failed attempt, as seen by error observers."""

    error: BaseException
    request: RequestContext
    elapsed: float


class Middleware:
    """
    A pipeline stage. Override any subset of the hooks, or pass callables.

    ``on_request`` and ``on_response`` may mutate the context in place and
    return None, or return a replacement context. Raising from
    ``on_request`` rejects the request before it is sent.

    Example:
        >>> class Tracing(Middleware):
        ...     def on_request(self, ctx):
        ...         ctx.headers["X-Trace"] = "abc"
    """

    name: Optional[str] = None

    def __init__(
        self,
        name: Optional[str] = None,
        on_request: Optional[Callable[[RequestContext], Any]] = None,
        on_response: Optional[Callable[[ResponseContext], Any]] = None,
        on_error: Optional[Callable[[ErrorContext], Any]] = None,
    ) -> None:
        if name is not None:
            self.name = name
        if on_request is not None:
            self.on_request = on_request  # type: ignore[method-assign]
        if on_response is not None:
            self.on_response = on_response  # type: ignore[method-assign]
        if on_error is not None:
            self.on_error = on_error  # type: ignore[method-assign]

    def on_request(self, ctx: RequestContext) -> Any:
        return None

    def on_response(self, ctx: ResponseContext) -> Any:
        return None

    def on_error(self, ctx: ErrorContext) -> Any:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class MiddlewareChain:
    """Ordered collection of middleware."""

    def __init__(
        self,
        middlewares: Sequence[Middleware] = (),
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._middlewares: List[Middleware] = list(middlewares)
        self._logger = logger or logging.getLogger(__name__)

    def use(self, middleware: Middleware) -> "MiddlewareChain":
        self._middlewares.append(middleware)
        self._logger.debug("Middleware registered: %r", middleware)
        return self

    def remove(self, name: str) -> bool:
        """Remove the first middleware called ``name``."""
        for index, middleware in enumerate(self._middlewares):
            if middleware.name == name:
                del self._middlewares[index]
                return True
        return False

    def clear(self) -> None:
        self._middlewares.clear()

    @property
    def middlewares(self) -> List[Middleware]:
        return list(self._middlewares)

    def __len__(self) -> int:
        return len(self._middlewares)

    # Sync folds (blocking client)

    def run_request(self, ctx: RequestContext) -> RequestContext:
        for middleware in list(self._middlewares):
            ctx = _sync_result(middleware.on_request(ctx), ctx)
        return ctx

    def run_response(self, ctx: ResponseContext) -> ResponseContext:
        for middleware in list(self._middlewares):
            ctx = _sync_result(middleware.on_response(ctx), ctx)
        return ctx

    def run_error(self, ctx: ErrorContext) -> None:
        for middleware in list(self._middlewares):
            try:
                _sync_result(middleware.on_error(ctx), None)
            except Exception:
                self._logger.exception("Error observer %r failed", middleware)

    # Async folds (hooks may be coroutines)

    async def arun_request(self, ctx: RequestContext) -> RequestContext:
        for middleware in list(self._middlewares):
            ctx = await _async_result(middleware.on_request(ctx), ctx)
        return ctx

    async def arun_response(self, ctx: ResponseContext) -> ResponseContext:
        for middleware in list(self._middlewares):
            ctx = await _async_result(middleware.on_response(ctx), ctx)
        return ctx

    async def arun_error(self, ctx: ErrorContext) -> None:
        for middleware in list(self._middlewares):
            try:
                await _async_result(middleware.on_error(ctx), None)
            except Exception:
                self._logger.exception("Error observer %r failed", middleware)


def _sync_result(result: Any, ctx: Any) -> Any:
    if inspect.isawaitable(result):
        if inspect.iscoroutine(result):
            result.close()
        raise TypeError("Async middleware hooks require the async client")
    return ctx if result is None else result


async def _async_result(result: Any, ctx: Any) -> Any:
    if inspect.isawaitable(result):
        result = await result
    return ctx if result is None else result


# Built-in middleware


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {
        name: ("[REDACTED]" if name.lower() in REDACTED_HEADERS else value)
        for name, value in headers.items()
    }


class LoggingMiddleware(Middleware):
    """Logs every request, response and failure."""

    name = "logging"

    def __init__(
        self,
        logger: Optional[LoggerLike] = None,
        log_headers: bool = False,
        log_body: bool = False,
        log_response: bool = False,
    ) -> None:
        super().__init__()
        self.logger = logger or logging.getLogger("veniceai.requests")
        self.log_headers = log_headers
        self.log_body = log_body
        self.log_response = log_response

    def on_request(self, ctx: RequestContext) -> None:
        extra = ""
        if self.log_headers:
            extra += f" headers={redact_headers(ctx.headers)}"
        if self.log_body and ctx.json is not None:
            extra += f" body={ctx.json}"
        self.logger.info("-> %s %s (attempt %d)%s", ctx.method, ctx.path, ctx.attempt, extra)

    def on_response(self, ctx: ResponseContext) -> None:
        self.logger.info(
            "<- %d %s (%.0fms)", ctx.status_code, ctx.request.path, ctx.elapsed * 1000
        )
        if self.log_response and ctx.body is not None:
            self.logger.debug("Response body: %s", ctx.body)

    def on_error(self, ctx: ErrorContext) -> None:
        self.logger.error(
            "x %s %s failed (%.0fms): %s",
            ctx.request.method,
            ctx.request.path,
            ctx.elapsed * 1000,
            ctx.error,
        )


class HeadersMiddleware(Middleware):
    """Injects fixed headers into every request."""

    name = "headers"

    def __init__(self, headers: Mapping[str, str]) -> None:
        super().__init__()
        self.headers = dict(headers)

    def on_request(self, ctx: RequestContext) -> None:
        ctx.headers.update(self.headers)


class RequestIdMiddleware(Middleware):
    """Tags each request with a unique id header and ``metadata['request_id']``."""

    name = "request-id"

    def __init__(
        self,
        header_name: str = "X-Request-ID",
        generator: Optional[Callable[[], str]] = None,
    ) -> None:
        super().__init__()
        self.header_name = header_name
        self.generator = generator or (lambda: f"req_{uuid.uuid4().hex}")

    def on_request(self, ctx: RequestContext) -> None:
        request_id = self.generator()
        ctx.headers[self.header_name] = request_id
        ctx.metadata["request_id"] = request_id


class TimingMiddleware(Middleware):
    name = "timing"

    def on_request(self, ctx: RequestContext) -> None:
        ctx.metadata["start_time"] = time.monotonic()

    def on_response(self, ctx: ResponseContext) -> None:
        ctx.metadata["total_duration"] = ctx.elapsed
        ctx.headers["X-Response-Time"] = f"{ctx.elapsed * 1000:.0f}ms"


class RetryHeaderMiddleware(Middleware):
    """Marks retried attempts with ``X-Retry-Attempt``."""

    name = "retry-header"

    def on_request(self, ctx: RequestContext) -> None:
        if ctx.attempt > 1:
            ctx.headers["X-Retry-Attempt"] = str(ctx.attempt)
