"""
veniceai - Python SDK for the Venice AI inference API.

Provides sync and async clients with admission control, retries with
backoff, a middleware pipeline and server-sent event streaming.
"""

__version__ = "0.1.0"

from .async_client import AsyncVenice
from .cancellation import CancellationToken
from .client import Venice
from .config import ClientConfig, LogLevel
from .events import EventType, LifecycleEvent
from .exceptions import (
    ErrorKind,
    VeniceAPIError,
    VeniceAuthenticationError,
    VeniceCancelledError,
    VeniceConnectionError,
    VeniceError,
    VeniceNotFoundError,
    VenicePaymentRequiredError,
    VenicePermissionError,
    VeniceRateLimitError,
    VeniceServerError,
    VeniceStreamError,
    VeniceTimeoutError,
    VeniceValidationError,
)
from .middleware import (
    ErrorContext,
    HeadersMiddleware,
    LoggingMiddleware,
    Middleware,
    RequestContext,
    RequestIdMiddleware,
    ResponseContext,
    RetryHeaderMiddleware,
    TimingMiddleware,
)
from .streaming import AsyncStream, Stream, StreamFrame, acollect_content, collect_content
from .types import (
    BalanceInfo,
    ChatCompletion,
    ChatCompletionChunk,
    ChatMessage,
    EmbeddingResponse,
    ImageGenerationResponse,
    Model,
    ModelList,
    RateLimitInfo,
)

__all__ = [
    # Version
    "__version__",
    # Main clients
    "Venice",
    "AsyncVenice",
    "ClientConfig",
    "LogLevel",
    "CancellationToken",
    # Exceptions
    "ErrorKind",
    "VeniceError",
    "VeniceAPIError",
    "VeniceAuthenticationError",
    "VeniceCancelledError",
    "VeniceConnectionError",
    "VeniceNotFoundError",
    "VenicePaymentRequiredError",
    "VenicePermissionError",
    "VeniceRateLimitError",
    "VeniceServerError",
    "VeniceStreamError",
    "VeniceTimeoutError",
    "VeniceValidationError",
    # Middleware and events
    "Middleware",
    "RequestContext",
    "ResponseContext",
    "ErrorContext",
    "LoggingMiddleware",
    "HeadersMiddleware",
    "RequestIdMiddleware",
    "TimingMiddleware",
    "RetryHeaderMiddleware",
    "EventType",
    "LifecycleEvent",
    # Streaming
    "AsyncStream",
    "Stream",
    "StreamFrame",
    "collect_content",
    "acollect_content",
    # Types
    "ChatCompletion",
    "ChatCompletionChunk",
    "ChatMessage",
    "EmbeddingResponse",
    "ImageGenerationResponse",
    "Model",
    "ModelList",
    "RateLimitInfo",
    "BalanceInfo",
]
