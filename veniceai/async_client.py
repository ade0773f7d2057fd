"""
Async client for the Venice AI Python SDK.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from ._logging import client_logger
from .api import (
    DEFAULT_EMBEDDING_MODEL,
    api_key_request,
    chat_request,
    chunk_from_frame,
    drop_none,
    embedding_request,
    image_request,
    require_fields,
)
from .cancellation import CancellationToken
from .config import ClientConfig, LogLevel, resolve_config
from .events import EventEmitter, EventType, Listener
from .middleware import Middleware, MiddlewareChain
from .streaming import AsyncStream
from .transport import AsyncTransport
from .types import (
    ApiKeyList,
    CharacterList,
    ChatCompletion,
    ChatCompletionChunk,
    CirculatingSupply,
    CreateApiKeyResponse,
    DeleteApiKeyResponse,
    EmbeddingResponse,
    ImageGenerationResponse,
    ImageStyleList,
    ModelCompatibilityMapping,
    ModelList,
    ModelTraits,
    NetworkUtilization,
    RateLimitLogList,
    RateLimitsResponse,
    StakingYield,
)


class AsyncChatCompletions:
    """Async chat completions API."""

    def __init__(self, transport: AsyncTransport) -> None:
        self.transport = transport

    async def create(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        stream: bool = False,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop: Optional[Union[str, List[str]]] = None,
        frequency_penalty: Optional[float] = None,
        presence_penalty: Optional[float] = None,
        seed: Optional[int] = None,
        venice_parameters: Optional[Dict[str, Any]] = None,
        cancel: Optional[CancellationToken] = None,
        **kwargs: Any,
    ) -> Union[ChatCompletion, AsyncStream[ChatCompletionChunk]]:
        """
        Create an async chat completion.

        With ``stream=True`` the returned ``AsyncStream`` must be consumed or
        closed; it holds an admission slot until then.
        """
        request_data = chat_request(
            model,
            messages,
            stream=stream,
            venice_parameters=venice_parameters,
            temperature=temperature,
            top_p=top_p,
            max_tokens=max_tokens,
            stop=stop,
            frequency_penalty=frequency_penalty,
            presence_penalty=presence_penalty,
            seed=seed,
            **kwargs,
        )
        operation = "chat.completions.create"
        if stream:
            return await self.transport.post_stream(
                "/chat/completions",
                json_data=request_data,
                parse=chunk_from_frame,
                cancel=cancel,
                operation=operation,
            )
        response = await self.transport.post(
            "/chat/completions", json_data=request_data, cancel=cancel, operation=operation
        )
        return ChatCompletion(**response)


class AsyncChat:
    """Async chat API."""

    def __init__(self, transport: AsyncTransport) -> None:
        self.completions = AsyncChatCompletions(transport)


class AsyncImages:
    """Async image generation API."""

    def __init__(self, transport: AsyncTransport) -> None:
        self.transport = transport

    async def generate(
        self,
        model: str,
        prompt: str,
        negative_prompt: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        steps: Optional[int] = None,
        cfg_scale: Optional[float] = None,
        seed: Optional[int] = None,
        style_preset: Optional[str] = None,
        format: Optional[str] = None,
        safe_mode: Optional[bool] = None,
        hide_watermark: Optional[bool] = None,
        cancel: Optional[CancellationToken] = None,
        **kwargs: Any,
    ) -> ImageGenerationResponse:
        """Generate images from a prompt."""
        request_data = image_request(
            model,
            prompt,
            negative_prompt=negative_prompt,
            width=width,
            height=height,
            steps=steps,
            cfg_scale=cfg_scale,
            seed=seed,
            style_preset=style_preset,
            format=format,
            safe_mode=safe_mode,
            hide_watermark=hide_watermark,
            **kwargs,
        )
        response = await self.transport.post(
            "/image/generate", json_data=request_data, cancel=cancel, operation="images.generate"
        )
        return ImageGenerationResponse(**response)

    async def styles(self) -> ImageStyleList:
        response = await self.transport.get("/image/styles", operation="images.styles")
        return ImageStyleList(**response)


class AsyncEmbeddings:
    """Async embeddings API."""

    def __init__(self, transport: AsyncTransport) -> None:
        self.transport = transport

    async def create(
        self,
        input: Union[str, List[str]],
        model: str = DEFAULT_EMBEDDING_MODEL,
        encoding_format: Optional[str] = None,
        dimensions: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
        **kwargs: Any,
    ) -> EmbeddingResponse:
        """Create async embeddings."""
        request_data = embedding_request(
            input, model, encoding_format=encoding_format, dimensions=dimensions, **kwargs
        )
        response = await self.transport.post(
            "/embeddings", json_data=request_data, cancel=cancel, operation="embeddings.create"
        )
        return EmbeddingResponse(**response)


class AsyncModels:
    """Async model catalogue API."""

    def __init__(self, transport: AsyncTransport) -> None:
        self.transport = transport

    async def list(self, type: Optional[str] = None) -> ModelList:
        response = await self.transport.get(
            "/models", params=drop_none({"type": type}), operation="models.list"
        )
        return ModelList(**response)

    async def traits(self, type: Optional[str] = None) -> ModelTraits:
        response = await self.transport.get(
            "/models/traits", params=drop_none({"type": type}), operation="models.traits"
        )
        return ModelTraits(**response)

    async def compatibility_mapping(
        self, type: Optional[str] = None
    ) -> ModelCompatibilityMapping:
        response = await self.transport.get(
            "/models/compatibility_mapping",
            params=drop_none({"type": type}),
            operation="models.compatibility_mapping",
        )
        return ModelCompatibilityMapping(**response)


class AsyncApiKeys:
    """Async API key management."""

    def __init__(self, transport: AsyncTransport) -> None:
        self.transport = transport

    async def list(self) -> ApiKeyList:
        return ApiKeyList(**await self.transport.get("/api_keys", operation="api_keys.list"))

    async def create(
        self,
        description: str,
        api_key_type: str = "INFERENCE",
        consumption_limit: Optional[Dict[str, Any]] = None,
        expires_at: Optional[str] = None,
    ) -> CreateApiKeyResponse:
        request_data = api_key_request(description, api_key_type, consumption_limit, expires_at)
        response = await self.transport.post(
            "/api_keys", json_data=request_data, operation="api_keys.create"
        )
        return CreateApiKeyResponse(**response)

    async def delete(self, id: str) -> DeleteApiKeyResponse:
        require_fields("api_keys.delete", id=id)
        response = await self.transport.delete(
            "/api_keys", params={"id": id}, operation="api_keys.delete"
        )
        return DeleteApiKeyResponse(**response)

    async def rate_limits(self) -> RateLimitsResponse:
        response = await self.transport.get(
            "/api_keys/rate_limits", operation="api_keys.rate_limits"
        )
        return RateLimitsResponse(**response)

    async def rate_limit_logs(self) -> RateLimitLogList:
        response = await self.transport.get(
            "/api_keys/rate_limits/log", operation="api_keys.rate_limit_logs"
        )
        return RateLimitLogList(**response)


class AsyncCharacters:
    def __init__(self, transport: AsyncTransport) -> None:
        self.transport = transport

    async def list(self) -> CharacterList:
        return CharacterList(
            **await self.transport.get("/characters", operation="characters.list")
        )


class AsyncVVV:
    def __init__(self, transport: AsyncTransport) -> None:
        self.transport = transport

    async def circulating_supply(self) -> CirculatingSupply:
        response = await self.transport.get(
            "/vvv/circulating_supply", operation="vvv.circulating_supply"
        )
        return CirculatingSupply(**response)

    async def utilization(self) -> NetworkUtilization:
        response = await self.transport.get("/vvv/utilization", operation="vvv.utilization")
        return NetworkUtilization(**response)

    async def staking_yield(self) -> StakingYield:
        response = await self.transport.get("/vvv/staking_yield", operation="vvv.staking_yield")
        return StakingYield(**response)


class AsyncVenice:
    """
    Async Venice AI client.

    Example:
        >>> async with AsyncVenice(api_key="...") as client:
        ...     response = await client.chat.completions.create(
        ...         model="llama-3.3-70b",
        ...         messages=[{"role": "user", "content": "Hello!"}]
        ...     )
        ...     print(response.choices[0].message.content)

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
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        **options: Any,
    ) -> None:
        """
        Initialize the async client.

        Accepts the same arguments as ``Venice``; ``http_transport`` must be
        an async httpx transport.
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
        self.transport = AsyncTransport(
            self.config,
            middleware=self.middleware,
            events=self.events,
            logger=self.logger,
            http_transport=http_transport,
        )

        self.chat = AsyncChat(self.transport)
        self.images = AsyncImages(self.transport)
        self.embeddings = AsyncEmbeddings(self.transport)
        self.models = AsyncModels(self.transport)
        self.api_keys = AsyncApiKeys(self.transport)
        self.characters = AsyncCharacters(self.transport)
        self.vvv = AsyncVVV(self.transport)

    def use(self, middleware: Middleware) -> "AsyncVenice":
        """Append a middleware to the chain. Hooks may be coroutines."""
        self.middleware.use(middleware)
        return self

    def remove_middleware(self, name: str) -> bool:
        return self.middleware.remove(name)

    def on(self, event: EventType, listener: Listener) -> "AsyncVenice":
        self.events.on(event, listener)
        return self

    def off(self, event: EventType, listener: Listener) -> bool:
        return self.events.off(event, listener)

    async def aclose(self) -> None:
        """Close the async client."""
        await self.transport.close()

    async def close(self) -> None:
        await self.aclose()

    async def __aenter__(self) -> "AsyncVenice":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
