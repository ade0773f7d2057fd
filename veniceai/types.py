"""
Type definitions for the Venice AI Python SDK.

Pydantic models for API payloads. Every model accepts fields it does not
declare, so additions on the service side pass through untouched.
"""

from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class VeniceModel(BaseModel):
    """Base for response models."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ============================================================================
# Response metadata
# ============================================================================


def _header_number(headers: Mapping[str, str], name: str) -> Optional[float]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _header_int(headers: Mapping[str, str], name: str) -> Optional[int]:
    number = _header_number(headers, name)
    return None if number is None else int(number)


class RateLimitInfo(VeniceModel):
    """Rate-limit quota reported by the service in response headers."""

    limit_requests: Optional[int] = None
    remaining_requests: Optional[int] = None
    reset_requests: Optional[float] = None
    limit_tokens: Optional[int] = None
    remaining_tokens: Optional[int] = None
    reset_tokens: Optional[float] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> Optional["RateLimitInfo"]:
        """Parse ``x-ratelimit-*`` headers. None when none are present."""
        info = cls(
            limit_requests=_header_int(headers, "x-ratelimit-limit-requests"),
            remaining_requests=_header_int(headers, "x-ratelimit-remaining-requests"),
            reset_requests=_header_number(headers, "x-ratelimit-reset-requests"),
            limit_tokens=_header_int(headers, "x-ratelimit-limit-tokens"),
            remaining_tokens=_header_int(headers, "x-ratelimit-remaining-tokens"),
            reset_tokens=_header_number(headers, "x-ratelimit-reset-tokens"),
        )
        if all(value is None for value in info.model_dump().values()):
            return None
        return info


class BalanceInfo(VeniceModel):
    """Account balance reported in response headers."""

    vcu: Optional[float] = None
    usd: Optional[float] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> Optional["BalanceInfo"]:
        vcu = _header_number(headers, "x-venice-balance-vcu")
        usd = _header_number(headers, "x-venice-balance-usd")
        if vcu is None and usd is None:
            return None
        return cls(vcu=vcu, usd=usd)


# ============================================================================
# Chat
# ============================================================================


class ChatMessage(VeniceModel):
    """A message in a chat conversation."""

    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[Union[str, List[Dict[str, Any]]]] = None
    name: Optional[str] = None
    reasoning_content: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None


class ChatCompletionChoice(VeniceModel):
    """A choice in a chat completion response."""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


class ChatCompletionChunkDelta(VeniceModel):
    """Delta content in a streaming chunk."""

    role: Optional[str] = None
    content: Optional[str] = None
    reasoning_content: Optional[str] = None


class ChatCompletionChunkChoice(VeniceModel):
    """A choice in a streaming chat completion chunk."""

    index: int
    delta: ChatCompletionChunkDelta
    finish_reason: Optional[str] = None


class Usage(VeniceModel):
    """Token usage statistics."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletion(VeniceModel):
    """Chat completion response."""

    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[ChatCompletionChoice]
    usage: Optional[Usage] = None
    venice_parameters: Optional[Dict[str, Any]] = None


class ChatCompletionChunk(VeniceModel):
    """Streaming chat completion chunk."""

    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: str
    choices: List[ChatCompletionChunkChoice] = Field(default_factory=list)
    usage: Optional[Usage] = None


# ============================================================================
# Images
# ============================================================================


class ImageGenerationResponse(VeniceModel):
    """Generated images, base64 encoded."""

    id: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    timing: Optional[Dict[str, Any]] = None


class ImageStyleList(VeniceModel):
    """Names of the available image styles."""

    object: str = "list"
    data: List[str] = Field(default_factory=list)


# ============================================================================
# Embeddings
# ============================================================================


class Embedding(VeniceModel):
    """A single embedding vector."""

    object: str = "embedding"
    embedding: List[float]
    index: int


class EmbeddingResponse(VeniceModel):
    """Embeddings response."""

    object: str = "list"
    data: List[Embedding]
    model: str
    usage: Optional[Usage] = None


# ============================================================================
# Models
# ============================================================================


class Model(VeniceModel):
    """Model information."""

    id: str
    object: str = "model"
    type: Optional[str] = None
    created: Optional[int] = None
    owned_by: Optional[str] = None
    model_spec: Optional[Dict[str, Any]] = None


class ModelList(VeniceModel):
    """List of models."""

    object: str = "list"
    type: Optional[str] = None
    data: List[Model] = Field(default_factory=list)


class ModelTraits(VeniceModel):
    """Trait name to model id, e.g. ``{"default": "llama-3.3-70b"}``."""

    object: str = "list"
    type: Optional[str] = None
    data: Dict[str, str] = Field(default_factory=dict)


class ModelCompatibilityMapping(VeniceModel):
    """Third-party model name to Venice model id."""

    object: str = "list"
    type: Optional[str] = None
    data: Dict[str, str] = Field(default_factory=dict)


# ============================================================================
# API keys
# ============================================================================


class ApiKey(VeniceModel):
    """An API key as listed by the service. The secret is never included."""

    id: str
    description: Optional[str] = None
    api_key_type: Optional[str] = Field(default=None, alias="apiKeyType")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    expires_at: Optional[str] = Field(default=None, alias="expiresAt")
    last_used_at: Optional[str] = Field(default=None, alias="lastUsedAt")
    last6_chars: Optional[str] = Field(default=None, alias="last6Chars")
    consumption_limits: Optional[Dict[str, Any]] = Field(
        default=None, alias="consumptionLimits"
    )


class ApiKeyList(VeniceModel):
    object: str = "list"
    data: List[ApiKey] = Field(default_factory=list)


class CreatedApiKey(ApiKey):
    """A newly created key. ``api_key`` holds the secret and is shown once."""

    api_key: Optional[str] = Field(default=None, alias="apiKey")


class CreateApiKeyResponse(VeniceModel):
    success: bool = True
    data: CreatedApiKey


class DeleteApiKeyResponse(VeniceModel):
    success: bool = True


class RateLimitsResponse(VeniceModel):
    """Account tier, balances and per-model rate limits."""

    data: Dict[str, Any] = Field(default_factory=dict)


class RateLimitLogList(VeniceModel):
    """Recent requests that hit a rate limit."""

    object: str = "list"
    data: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# Characters
# ============================================================================


class Character(VeniceModel):
    name: str
    slug: str
    description: Optional[str] = None
    model_id: Optional[str] = Field(default=None, alias="modelId")
    adult: Optional[bool] = None
    tags: List[str] = Field(default_factory=list)
    share_url: Optional[str] = Field(default=None, alias="shareUrl")


class CharacterList(VeniceModel):
    object: str = "list"
    data: List[Character] = Field(default_factory=list)


# ============================================================================
# VVV token
# ============================================================================


class CirculatingSupply(VeniceModel):
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None


class NetworkUtilization(VeniceModel):
    percentage: Optional[float] = None


class StakingYield(VeniceModel):
    staking_yield: Optional[float] = Field(default=None, alias="stakingYield")
    total_staked: Optional[float] = Field(default=None, alias="totalStaked")
