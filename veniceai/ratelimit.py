"""
Admission control for outbound requests.

Bounds both the number of requests in flight and the number of requests
granted within a sliding window (one minute by default). Callers beyond
capacity wait in a FIFO queue; a later caller is never granted before an
earlier one.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Deque, Iterator, Optional

from ._logging import LoggerLike
from .cancellation import CancellationToken
from .exceptions import VeniceRateLimitError

WINDOW_SECONDS = 60.0


@dataclass(eq=False)
class Reservation:
    """Handle for one granted slot. Pass it back to ``release``."""

    granted_at: float
    released: bool = field(default=False, repr=False)


@dataclass(eq=False)
class _Ticket:
    arrived_at: float
    future: Optional["asyncio.Future[Reservation]"] = None


class _AdmissionState:
    """Counters shared by the async and thread-based controllers."""

    def __init__(
        self,
        max_concurrent: int = 5,
        requests_per_minute: int = 60,
        max_queued: Optional[int] = None,
        window: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        if max_concurrent < 1 or requests_per_minute < 1:
            raise ValueError("max_concurrent and requests_per_minute must be positive")
        self.max_concurrent = max_concurrent
        self.requests_per_minute = requests_per_minute
        self.max_queued = max_queued
        self.window = window
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._in_flight = 0
        self._grants: Deque[float] = deque()
        self._queue: Deque[_Ticket] = deque()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def queued(self) -> int:
        return len(self._queue)

    @property
    def window_count(self) -> int:
        """Grants recorded within the current window."""
        self._prune(self._clock())
        return len(self._grants)

    def _prune(self, now: float) -> None:
        horizon = now - self.window
        while self._grants and self._grants[0] <= horizon:
            self._grants.popleft()

    def _has_capacity(self, now: float) -> bool:
        self._prune(now)
        return (
            self._in_flight < self.max_concurrent
            and len(self._grants) < self.requests_per_minute
        )

    def _window_wait(self, now: float) -> Optional[float]:
        """Seconds until the window frees a slot, or None if it is not the blocker."""
        self._prune(now)
        if len(self._grants) < self.requests_per_minute:
            return None
        return max(0.0, self._grants[0] + self.window - now)

    def _grant(self, now: float) -> Reservation:
        self._in_flight += 1
        self._grants.append(now)
        return Reservation(granted_at=now)

    def _check_queue_depth(self) -> None:
        if self.max_queued is not None and len(self._queue) >= self.max_queued:
            raise VeniceRateLimitError(
                f"Admission queue is full ({self.max_queued} waiting)",
                status_code=None,
            )

    def _release_counts(self, reservation: Reservation) -> bool:
        if reservation.released:
            return False
        reservation.released = True
        self._in_flight -= 1
        return True


class AdmissionController(_AdmissionState):
    """
    Async admission controller.

    Example:
        >>> limiter = AdmissionController(max_concurrent=2, requests_per_minute=30)
        >>> async with limiter.slot():
        ...     await do_request()
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._timer: Optional[asyncio.TimerHandle] = None

    async def reserve(self) -> Reservation:
        """Wait for capacity and take one slot."""
        now = self._clock()
        if not self._queue and self._has_capacity(now):
            return self._grant(now)

        self._check_queue_depth()
        loop = asyncio.get_running_loop()
        ticket = _Ticket(arrived_at=now, future=loop.create_future())
        self._queue.append(ticket)
        self._logger.debug(
            "Admission queued (in flight %d/%d, window %d/%d, waiting %d)",
            self._in_flight,
            self.max_concurrent,
            len(self._grants),
            self.requests_per_minute,
            len(self._queue),
        )
        self._pump()

        try:
            return await ticket.future
        except asyncio.CancelledError:
            if ticket.future.done() and not ticket.future.cancelled():
                self.release(ticket.future.result())
            elif ticket in self._queue:
                self._queue.remove(ticket)
                self._pump()
            raise

    def release(self, reservation: Reservation) -> None:
        """Return a slot. Releasing twice is a no-op."""
        if self._release_counts(reservation):
            self._pump()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[Reservation]:
        reservation = await self.reserve()
        try:
            yield reservation
        finally:
            self.release(reservation)

    def _pump(self) -> None:
        now = self._clock()
        while self._queue:
            ticket = self._queue[0]
            if ticket.future.done():
                self._queue.popleft()
                continue
            if not self._has_capacity(now):
                break
            self._queue.popleft()
            ticket.future.set_result(self._grant(now))

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._queue:
            wait = self._window_wait(now)
            if wait is not None:
                loop = self._queue[0].future.get_loop()
                self._timer = loop.call_later(wait, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._pump()


class SyncAdmissionController(_AdmissionState):
    """Thread-safe admission controller for the blocking client."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._cond = threading.Condition()

    @property
    def window_count(self) -> int:
        with self._cond:
            return super().window_count

    def reserve(self, cancel: Optional[CancellationToken] = None) -> Reservation:
        """Block until capacity is available and take one slot."""
        with self._cond:
            now = self._clock()
            if not self._queue and self._has_capacity(now):
                return self._grant(now)

            self._check_queue_depth()
            ticket = _Ticket(arrived_at=now)
            self._queue.append(ticket)
            unregister = cancel.add_callback(self._wake) if cancel is not None else None
            try:
                while True:
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    now = self._clock()
                    at_head = self._queue[0] is ticket
                    if at_head and self._has_capacity(now):
                        self._queue.popleft()
                        self._cond.notify_all()
                        return self._grant(now)
                    self._cond.wait(self._window_wait(now) if at_head else None)
            except BaseException:
                if ticket in self._queue:
                    self._queue.remove(ticket)
                    self._cond.notify_all()
                raise
            finally:
                if unregister is not None:
                    unregister()

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()

    def release(self, reservation: Reservation) -> None:
        with self._cond:
            if self._release_counts(reservation):
                self._cond.notify_all()

    @contextmanager
    def slot(self) -> Iterator[Reservation]:
        reservation = self.reserve()
        try:
            yield reservation
        finally:
            self.release(reservation)
