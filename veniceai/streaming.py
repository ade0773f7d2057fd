"""
Server-Sent Events decoding.

Bytes arrive in arbitrary pieces; ``SSEDecoder`` buffers partial lines and
multi-byte characters until complete events are available. ``FrameDecoder``
turns event payloads into JSON frames and stops at the ``[DONE]`` sentinel.
``AsyncStream`` and ``Stream`` expose the frames as single-pass iterators.
"""

import codecs
import json
import logging
import re
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    TypeVar,
)

from ._logging import LoggerLike
from .exceptions import VeniceStreamError

_logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

_LINE_END = re.compile(r"\r\n|\r|\n")

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ServerSentEvent:
    """One dispatched SSE event."""

    data: str
    event: Optional[str] = None
    id: Optional[str] = None
    retry: Optional[int] = None


@dataclass(frozen=True)
class StreamFrame:
    """A decoded JSON payload and its position in the stream."""

    index: int
    data: Any
    raw: str
    event: Optional[str] = None
    id: Optional[str] = None


class SSEDecoder:
    """Incremental SSE parser. Feed bytes, receive completed events."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._data: List[str] = []
        self._event: Optional[str] = None
        self._last_id: Optional[str] = None
        self._retry: Optional[int] = None

    def feed(self, chunk: bytes) -> List[ServerSentEvent]:
        try:
            text = self._decoder.decode(chunk)
        except UnicodeDecodeError as e:
            raise VeniceStreamError(f"Stream is not valid UTF-8: {e}") from e
        return self._consume(text, final=False)

    def flush(self) -> List[ServerSentEvent]:
        """Finish decoding at end of stream, dispatching any pending event."""
        try:
            text = self._decoder.decode(b"", final=True)
        except UnicodeDecodeError as e:
            raise VeniceStreamError(f"Stream ended inside a UTF-8 sequence: {e}") from e
        events = self._consume(text, final=True)
        if self._buffer:
            event = self._process_line(self._buffer)
            self._buffer = ""
            if event is not None:
                events.append(event)
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _consume(self, text: str, final: bool) -> List[ServerSentEvent]:
        buffer = self._buffer + text
        events: List[ServerSentEvent] = []
        pos = 0
        while True:
            match = _LINE_END.search(buffer, pos)
            if match is None:
                break
            # A trailing CR may be the first half of CRLF.
            if match.group() == "\r" and match.end() == len(buffer) and not final:
                break
            line = buffer[pos : match.start()]
            pos = match.end()
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        self._buffer = buffer[pos:]
        return events

    def _process_line(self, line: str) -> Optional[ServerSentEvent]:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            if "\0" not in value:
                self._last_id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            self._event = None
            return None
        event = ServerSentEvent(
            data="\n".join(self._data),
            event=self._event,
            id=self._last_id,
            retry=self._retry,
        )
        self._data = []
        self._event = None
        return event


class FrameDecoder:
    """
    SSE bytes in, JSON frames out.

    After the sentinel is seen ``done`` is set and further input is ignored.
    A payload that is neither JSON nor the sentinel raises
    ``VeniceStreamError``.
    """

    def __init__(self, logger: Optional[LoggerLike] = None) -> None:
        self._sse = SSEDecoder()
        self._logger = logger or _logger
        self.done = False
        self.count = 0

    def feed(self, chunk: bytes) -> List[StreamFrame]:
        if self.done:
            return []
        return self._frames(self._sse.feed(chunk))

    def flush(self) -> List[StreamFrame]:
        if self.done:
            return []
        frames = self._frames(self._sse.flush())
        self.done = True
        return frames

    def _frames(self, events: Iterable[ServerSentEvent]) -> List[StreamFrame]:
        frames: List[StreamFrame] = []
        for event in events:
            payload = event.data.strip()
            if payload == DONE_SENTINEL:
                self.done = True
                break
            if not payload:
                self._logger.debug("Skipping empty stream event")
                continue
            try:
                data = json.loads(payload)
            except json.JSONDecodeError as e:
                raise VeniceStreamError(
                    f"Malformed stream payload at frame {self.count}: {payload[:100]!r}"
                ) from e
            frames.append(
                StreamFrame(
                    index=self.count,
                    data=data,
                    raw=event.data,
                    event=event.event,
                    id=event.id,
                )
            )
            self.count += 1
        return frames


def iter_frames(chunks: Iterable[bytes]) -> Iterator[StreamFrame]:
    """Decode frames from an iterable of byte chunks."""
    decoder = FrameDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
        if decoder.done:
            return
    yield from decoder.flush()


class AsyncStream(Generic[T]):
    """
    Single-pass async iterator over stream items.

    Leaving an ``async with`` block or calling ``aclose()`` closes the
    underlying connection; no items are produced afterwards. ``on_close``
    runs exactly once when the stream ends, is closed or fails, whether or
    not any item was read.
    """

    def __init__(
        self,
        iterator: AsyncIterator[T],
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self._iterator = iterator
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "AsyncStream[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._iterator.__anext__()
        except BaseException:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            aclose = getattr(self._iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()

    def map(self, fn: Callable[[T], R]) -> "AsyncStream[R]":
        """Stream of ``fn(item)``. Closing the result closes this stream."""
        return AsyncStream(_amap(self, fn), on_close=self.aclose)

    async def __aenter__(self) -> "AsyncStream[T]":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


async def _amap(source: AsyncStream[T], fn: Callable[[T], R]) -> AsyncIterator[R]:
    async for item in source:
        yield fn(item)


class Stream(Generic[T]):
    """Single-pass iterator over stream items for the blocking client."""

    def __init__(
        self, iterator: Iterator[T], on_close: Optional[Callable[[], None]] = None
    ) -> None:
        self._iterator = iterator
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> "Stream[T]":
        return self

    def __next__(self) -> T:
        if self._closed:
            raise StopIteration
        try:
            return next(self._iterator)
        except BaseException:
            self.close()
            raise

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            close = getattr(self._iterator, "close", None)
            if close is not None:
                close()
        finally:
            if self._on_close is not None:
                self._on_close()

    def map(self, fn: Callable[[T], R]) -> "Stream[R]":
        return Stream(_map(self, fn), on_close=self.close)

    def __enter__(self) -> "Stream[T]":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def _map(source: Stream[T], fn: Callable[[T], R]) -> Iterator[R]:
    for item in source:
        yield fn(item)


def _delta_content(chunk: Any) -> str:
    if isinstance(chunk, StreamFrame):
        chunk = chunk.data
    if isinstance(chunk, dict):
        choices = chunk.get("choices") or []
        delta = (choices[0].get("delta") or {}) if choices else {}
        return delta.get("content") or ""
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return ""
    return getattr(choices[0].delta, "content", None) or ""


async def acollect_content(stream: AsyncIterator[Any]) -> str:
    """Join the delta text of a streamed chat completion."""
    parts = []
    async for chunk in stream:
        parts.append(_delta_content(chunk))
    return "".join(parts)


def collect_content(stream: Iterable[Any]) -> str:
    """Join the delta text of a streamed chat completion."""
    return "".join(_delta_content(chunk) for chunk in stream)
