"""
Shared fixtures: deterministic clocks and sleeps, and helpers for building
canned httpx responses.
"""

import json
from typing import Any, AsyncIterator, Iterable, Iterator, List

import httpx
import pytest

from veniceai.config import ClientConfig

API_KEY = "test-key-123"
BASE_URL = "https://api.venice.test/api/v1"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)

    def sync(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def config() -> ClientConfig:
    """Fast configuration: no jitter and zero backoff."""
    return ClientConfig(
        api_key=API_KEY,
        base_url=BASE_URL,
        retry_initial_delay=0.0,
        retry_max_delay=0.0,
        retry_jitter=0.0,
    )


def sse(*payloads: Any, done: bool = True) -> bytes:
    """Encode payloads as SSE ``data:`` events, optionally followed by ``[DONE]``."""
    lines = []
    for payload in payloads:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {text}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def chunk_payload(content: str, index: int = 0) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "llama-3.3-70b",
        "choices": [{"index": index, "delta": {"content": content}, "finish_reason": None}],
    }


def completion_payload(content: str = "Hello!") -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "llama-3.3-70b",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
    }


def split_every(data: bytes, size: int) -> List[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


async def async_chunks(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


def sync_chunks(chunks: Iterable[bytes]) -> Iterator[bytes]:
    yield from chunks


def sse_response(body: bytes, chunk_size: int = 0, is_async: bool = True) -> httpx.Response:
    """A 200 event-stream response delivering ``body`` in pieces of ``chunk_size``."""
    chunks = split_every(body, chunk_size) if chunk_size else [body]
    content = async_chunks(chunks) if is_async else sync_chunks(chunks)
    return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=content)

