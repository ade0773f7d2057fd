"""
Caller-controlled cancellation.

A ``CancellationToken`` can be shared by any number of requests. Triggering
it aborts in-flight network waits, interrupts retry backoff and stops
streams; a cancelled request is never retried.
"""

import asyncio
import inspect
import threading
from typing import Awaitable, Callable, List, TypeVar

from .exceptions import VeniceCancelledError

T = TypeVar("T")


class CancellationToken:
    """
    Thread-safe cancellation signal.

    Example:
        >>> token = CancellationToken()
        >>> stream = await client.chat.completions.create(..., stream=True, cancel=token)
        >>> token.cancel()  # from anywhere, e.g. a UI callback
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` on cancellation. Returns a function that unregisters it."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove(callback)
        callback()
        return lambda: None

    def _remove(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise VeniceCancelledError()

    def wait(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first."""
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise VeniceCancelledError()
        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(awaitable)
        waiter = loop.create_future()

        def _wake() -> None:
            if not waiter.done():
                waiter.set_result(None)

        unregister = self.add_callback(lambda: loop.call_soon_threadsafe(_wake))
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            unregister()
            if not waiter.done():
                waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            raise VeniceCancelledError() from exc
        raise VeniceCancelledError()
