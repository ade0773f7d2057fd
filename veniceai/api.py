"""
Venice API resources for the blocking client.

Each resource validates its parameters, builds the request body and wraps
the decoded JSON in a model from ``types``. The request builders at the top
of this module are shared with the async resources.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from .cancellation import CancellationToken
from .exceptions import (
    VeniceError,
    VeniceStreamError,
    VeniceValidationError,
    error_from_response,
    error_message_from_body,
)
from .streaming import Stream, StreamFrame
from .transport import Transport
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

DEFAULT_EMBEDDING_MODEL = "text-embedding-bge-m3"
API_KEY_TYPES = ("INFERENCE", "ADMIN")
MESSAGE_ROLES = ("system", "user", "assistant", "tool")


# ============================================================================
# Request builders
# ============================================================================


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def require_fields(operation: str, **values: Any) -> None:
    missing = [name for name, value in values.items() if _blank(value)]
    if missing:
        raise VeniceValidationError(
            f"{operation}: missing required {', '.join(missing)}", fields=missing
        )


def drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def _parse_suffix_value(value: str) -> Any:
    if value == "true":
        return True
    if value == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def split_model_features(model: str) -> Tuple[str, Dict[str, Any]]:
    """
    Split ``"llama-3.3-70b:enable_web_search=on&include_venice_system_prompt=false"``
    into the base model id and its ``venice_parameters``.
    """
    base, sep, suffix = model.partition(":")
    features: Dict[str, Any] = {}
    if not sep:
        return model, features
    for pair in suffix.split("&"):
        key, eq, value = pair.partition("=")
        if key and eq and value:
            features[key] = _parse_suffix_value(value)
    return base, features


def _check_messages(messages: Sequence[Any]) -> None:
    bad: List[str] = []
    for index, message in enumerate(messages):
        if not isinstance(message, dict):
            bad.append(f"messages[{index}]")
            continue
        if message.get("role") not in MESSAGE_ROLES:
            bad.append(f"messages[{index}].role")
        if "content" not in message and not message.get("tool_calls"):
            bad.append(f"messages[{index}].content")
    if bad:
        raise VeniceValidationError(
            f"chat.completions.create: invalid {', '.join(bad)}", fields=bad
        )


def chat_request(
    model: str,
    messages: List[Dict[str, Any]],
    stream: bool = False,
    venice_parameters: Optional[Dict[str, Any]] = None,
    **options: Any,
) -> Dict[str, Any]:
    """Validate chat parameters and build the request body."""
    require_fields("chat.completions.create", model=model, messages=messages)
    _check_messages(messages)

    model, features = split_model_features(model)
    if venice_parameters:
        features.update(venice_parameters)

    request_data: Dict[str, Any] = {"model": model, "messages": list(messages)}
    if stream:
        request_data["stream"] = True
    if features:
        request_data["venice_parameters"] = features
    request_data.update(drop_none(options))
    return request_data


def image_request(model: str, prompt: str, **options: Any) -> Dict[str, Any]:
    require_fields("images.generate", model=model, prompt=prompt)
    for name in ("width", "height", "steps"):
        value = options.get(name)
        if value is not None and value <= 0:
            raise VeniceValidationError(
                f"images.generate: {name} must be positive", fields=[name]
            )
    request_data = {"model": model, "prompt": prompt}
    request_data.update(drop_none(options))
    # Base64 JSON only; binary image bodies are not decoded.
    request_data["return_binary"] = False
    return request_data


def embedding_request(
    input: Union[str, List[str]], model: str, **options: Any
) -> Dict[str, Any]:
    require_fields("embeddings.create", input=input, model=model)
    if isinstance(input, (list, tuple)):
        blanks = [f"input[{i}]" for i, text in enumerate(input) if _blank(text)]
        if blanks:
            raise VeniceValidationError(
                f"embeddings.create: empty {', '.join(blanks)}", fields=blanks
            )
    request_data = {"input": input, "model": model}
    request_data.update(drop_none(options))
    return request_data


def api_key_request(
    description: str,
    api_key_type: str = "INFERENCE",
    consumption_limit: Optional[Dict[str, Any]] = None,
    expires_at: Optional[str] = None,
) -> Dict[str, Any]:
    require_fields("api_keys.create", description=description)
    if api_key_type not in API_KEY_TYPES:
        raise VeniceValidationError(
            f"api_keys.create: api_key_type must be one of {', '.join(API_KEY_TYPES)}",
            fields=["api_key_type"],
        )
    return drop_none(
        {
            "description": description,
            "apiKeyType": api_key_type,
            "consumptionLimit": consumption_limit,
            "expiresAt": expires_at,
        }
    )


def _stream_error(payload: Dict[str, Any]) -> VeniceError:
    error = payload["error"]
    message = error_message_from_body(payload, "Stream reported an error")
    if isinstance(error, dict):
        for key in ("status", "code"):
            status = error.get(key)
            if isinstance(status, int) and not isinstance(status, bool) and 400 <= status < 600:
                return error_from_response(status, message, body=payload)
    return VeniceStreamError(message, body=payload)


def chunk_from_frame(frame: StreamFrame) -> ChatCompletionChunk:
    """
    Convert one streamed frame into a chat chunk.

    A frame carrying an ``error`` object becomes the matching ``VeniceError``
    (by its ``status``/``code`` when present). Any other payload that is not
    a chunk raises ``VeniceStreamError``.
    """
    data = frame.data
    if isinstance(data, dict) and data.get("error"):
        raise _stream_error(data)
    if not isinstance(data, dict):
        raise VeniceStreamError(
            f"Unexpected stream payload at frame {frame.index}: {frame.raw[:100]!r}", body=data
        )
    try:
        return ChatCompletionChunk(**data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise VeniceStreamError(
            f"Unexpected stream payload at frame {frame.index}: invalid {fields}", body=data
        ) from e


# ============================================================================
# Chat
# ============================================================================


class ChatCompletions:
    """Chat completions API."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def create(
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
    ) -> Union[ChatCompletion, Stream[ChatCompletionChunk]]:
        """
        Create a chat completion.

        Args:
            model: Model ID, optionally with a feature suffix
                (``"llama-3.3-70b:enable_web_search=on"``)
            messages: Conversation so far
            stream: Return a ``Stream`` of chunks instead of one response
            temperature: Sampling temperature
            top_p: Nucleus sampling parameter
            max_tokens: Maximum tokens to generate
            stop: Stop sequences
            frequency_penalty: Frequency penalty
            presence_penalty: Presence penalty
            seed: Sampling seed
            venice_parameters: Venice-specific options, e.g. ``enable_web_search``
            cancel: Token that aborts the call
            **kwargs: Additional body parameters

        Returns:
            ChatCompletion or Stream[ChatCompletionChunk]
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
            return self.transport.post_stream(
                "/chat/completions",
                json_data=request_data,
                parse=chunk_from_frame,
                cancel=cancel,
                operation=operation,
            )
        response = self.transport.post(
            "/chat/completions", json_data=request_data, cancel=cancel, operation=operation
        )
        return ChatCompletion(**response)


class Chat:
    """Chat API."""

    def __init__(self, transport: Transport) -> None:
        self.completions = ChatCompletions(transport)


# ============================================================================
# Images
# ============================================================================


class Images:
    """Image generation API."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def generate(
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
        """Generate images from a prompt. Images come back base64 encoded."""
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
        response = self.transport.post(
            "/image/generate", json_data=request_data, cancel=cancel, operation="images.generate"
        )
        return ImageGenerationResponse(**response)

    def styles(self) -> ImageStyleList:
        response = self.transport.get("/image/styles", operation="images.styles")
        return ImageStyleList(**response)


# ============================================================================
# Embeddings
# ============================================================================


class Embeddings:
    """Embeddings API."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def create(
        self,
        input: Union[str, List[str]],
        model: str = DEFAULT_EMBEDDING_MODEL,
        encoding_format: Optional[str] = None,
        dimensions: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
        **kwargs: Any,
    ) -> EmbeddingResponse:
        """
        Create embeddings.

        Args:
            input: Text or list of texts to embed
            model: Embedding model ID
            encoding_format: ``"float"`` or ``"base64"``
            dimensions: Output dimensions, for models that support it

        Returns:
            EmbeddingResponse
        """
        request_data = embedding_request(
            input, model, encoding_format=encoding_format, dimensions=dimensions, **kwargs
        )
        response = self.transport.post(
            "/embeddings", json_data=request_data, cancel=cancel, operation="embeddings.create"
        )
        return EmbeddingResponse(**response)


# ============================================================================
# Models
# ============================================================================


class Models:
    """Model catalogue API."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def list(self, type: Optional[str] = None) -> ModelList:
        """List available models, optionally filtered by type (``text``, ``image``, ``all``...)."""
        response = self.transport.get(
            "/models", params=drop_none({"type": type}), operation="models.list"
        )
        return ModelList(**response)

    def traits(self, type: Optional[str] = None) -> ModelTraits:
        response = self.transport.get(
            "/models/traits", params=drop_none({"type": type}), operation="models.traits"
        )
        return ModelTraits(**response)

    def compatibility_mapping(self, type: Optional[str] = None) -> ModelCompatibilityMapping:
        response = self.transport.get(
            "/models/compatibility_mapping",
            params=drop_none({"type": type}),
            operation="models.compatibility_mapping",
        )
        return ModelCompatibilityMapping(**response)


# ============================================================================
# API keys
# ============================================================================


class ApiKeys:
    """API key management. Requires an admin key."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def list(self) -> ApiKeyList:
        return ApiKeyList(**self.transport.get("/api_keys", operation="api_keys.list"))

    def create(
        self,
        description: str,
        api_key_type: str = "INFERENCE",
        consumption_limit: Optional[Dict[str, Any]] = None,
        expires_at: Optional[str] = None,
    ) -> CreateApiKeyResponse:
        """Create a key. The secret is only returned by this call."""
        request_data = api_key_request(description, api_key_type, consumption_limit, expires_at)
        response = self.transport.post(
            "/api_keys", json_data=request_data, operation="api_keys.create"
        )
        return CreateApiKeyResponse(**response)

    def delete(self, id: str) -> DeleteApiKeyResponse:
        require_fields("api_keys.delete", id=id)
        response = self.transport.delete(
            "/api_keys", params={"id": id}, operation="api_keys.delete"
        )
        return DeleteApiKeyResponse(**response)

    def rate_limits(self) -> RateLimitsResponse:
        response = self.transport.get("/api_keys/rate_limits", operation="api_keys.rate_limits")
        return RateLimitsResponse(**response)

    def rate_limit_logs(self) -> RateLimitLogList:
        response = self.transport.get(
            "/api_keys/rate_limits/log", operation="api_keys.rate_limit_logs"
        )
        return RateLimitLogList(**response)


# ============================================================================
# Characters and VVV
# ============================================================================


class Characters:
    """Public character catalogue."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def list(self) -> CharacterList:
        return CharacterList(**self.transport.get("/characters", operation="characters.list"))


class VVV:
    """VVV token statistics."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def circulating_supply(self) -> CirculatingSupply:
        response = self.transport.get(
            "/vvv/circulating_supply", operation="vvv.circulating_supply"
        )
        return CirculatingSupply(**response)

    def utilization(self) -> NetworkUtilization:
        return NetworkUtilization(
            **self.transport.get("/vvv/utilization", operation="vvv.utilization")
        )

    def staking_yield(self) -> StakingYield:
        return StakingYield(
            **self.transport.get("/vvv/staking_yield", operation="vvv.staking_yield")
        )


class VeniceAPI:
    """All resources bound to one transport."""

    def __init__(self, transport: Transport) -> None:
        self.chat = Chat(transport)
        self.images = Images(transport)
        self.embeddings = Embeddings(transport)
        self.models = Models(transport)
        self.api_keys = ApiKeys(transport)
        self.characters = Characters(transport)
        self.vvv = VVV(transport)
