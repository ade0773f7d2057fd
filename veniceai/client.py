"""
Main client for the Venice AI Python SDK.
"""

from typing import Any, Dict, Optional, Sequence

import httpx

from ._logging import client_logger
from .api import VeniceAPI
from .config import ClientConfig, LogLevel, resolve_config
from .events import EventEmitter, EventType, Listener
from .middleware import Middleware, MiddlewareChain
from .transport import Transport


class Venice:
    """
    Blocking Venice AI client.

    Example:
        >>> client = Venice(api_key="...")
        >>> response = client.chat.completions.create(
        ...     model="llama-3.3-70b",
        ...     messages=[{"role": "user", "content": "Hello!"}]
        ... )
        >>> print(response.choices[0].message.content)

    Attributes:
        chat: Chat completions API
        images: Image generation API
        embeddings: Embeddings API
        models: Model catalogue API
        api_keys: API key management
        characters: Character catalogue
        vvv: VVV token statistics
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        requests_per_minute: Optional[int] = None,
        max_retries: Optional[int] = None,
        middleware: Optional[Sequence[Middleware]] = None,
        headers: Optional[Dict[str, str]] = None,
        log_level: Optional[LogLevel] = None,
        config: Optional[ClientConfig] = None,
        http_transport: Optional[httpx.BaseTransport] = None,
        **options: Any,
    ) -> None:
        """
        Initialize the client.

        Args:
            api_key: Venice API key (default: ``VENICE_API_KEY``)
            base_url: API base URL (default: https://api.venice.ai/api/v1)
            timeout: Per-attempt timeout in seconds
            max_concurrent: Maximum requests in flight
            requests_per_minute: Maximum requests started per minute
            max_retries: Retries after the first failed attempt
            middleware: Initial middleware, run in order
            headers: Extra headers sent with every request
            log_level: SDK log verbosity
            config: Complete configuration; keyword arguments override it
            http_transport: Custom httpx transport, e.g. ``httpx.MockTransport``
            **options: Any other ``ClientConfig`` field
        """
        self.config = resolve_config(
            api_key,
            config,
            base_url=base_url,
            timeout=timeout,
            max_concurrent=max_concurrent,
            requests_per_minute=requests_per_minute,
            max_retries=max_retries,
            middleware=middleware,
            headers=headers,
            log_level=log_level,
            **options,
        )
        self.logger = client_logger(self.config.log_level)
        self.events = EventEmitter(self.logger)
        self.middleware = MiddlewareChain(self.config.middleware, logger=self.logger)
        self.transport = Transport(
            self.config,
            middleware=self.middleware,
            events=self.events,
            logger=self.logger,
            http_transport=http_transport,
        )

        api = VeniceAPI(self.transport)
        self.chat = api.chat
        self.images = api.images
        self.embeddings = api.embeddings
        self.models = api.models
        self.api_keys = api.api_keys
        self.characters = api.characters
        self.vvv = api.vvv

    def use(self, middleware: Middleware) -> "Venice":
        """Append a middleware to the chain."""
        self.middleware.use(middleware)
        return self

    def remove_middleware(self, name: str) -> bool:
        return self.middleware.remove(name)

    def on(self, event: EventType, listener: Listener) -> "Venice":
        """Subscribe to ``request`` or ``response`` lifecycle events."""
        self.events.on(event, listener)
        return self

    def off(self, event: EventType, listener: Listener) -> bool:
        return self.events.off(event, listener)

    def close(self) -> None:
        """Close the client connection."""
        self.transport.close()

    def __enter__(self) -> "Venice":
        return self

    def __exit__(self, *args) -> None:
        self.close()
