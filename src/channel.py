"""Bounded hand-off channel between the consumer and the sink."""

import queue
import threading
from dataclasses import dataclass

from src.models import LogEntry

_POLL_INTERVAL = 0.1


class ChannelClosed(Exception):
    """Raised by get() once the channel is closed and fully drained."""


class HandoffChannel:
    """FIFO queue of fixed capacity.

    Capacity is the backpressure knob: once ``capacity`` items are waiting,
    put() blocks until the sink takes one. Blocking calls wake up every
    ``poll_interval`` seconds so a cancel event or close() can release them.
    """

    def __init__(self, capacity: int = 1, poll_interval: float = _POLL_INTERVAL):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._capacity = capacity
        self._poll_interval = poll_interval
        self._closed = threading.Event()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    def put(self, item, cancel_event: threading.Event | None = None) -> bool:
        """Block until the item is accepted. Returns False if cancelled or closed."""
        while not self._closed.is_set():
            if cancel_event is not None and cancel_event.is_set():
                return False
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return True
            except queue.Full:
                continue
        return False

    def get(self, timeout: float | None = None):
        """Return the next item, or None if nothing arrived within timeout.

        Raises:
            ChannelClosed: the channel is closed and no items remain.
        """
        wait = self._poll_interval if timeout is None else min(timeout, self._poll_interval)
        remaining = timeout
        while True:
            try:
                return self._queue.get(timeout=wait)
            except queue.Empty:
                pass
            if self._closed.is_set() and self._queue.empty():
                raise ChannelClosed()
            if remaining is not None:
                remaining -= wait
                if remaining <= 0:
                    return None

    def close(self):
        """Stop accepting items. Items already queued can still be drained."""
        self._closed.set()


class DeliveryTracker:
    """Counts outstanding deliveries for the entries of one queue message.

    The consumer calls add() per entry handed off and seal() once the message
    is fully handed off; the sink calls resolve() once per entry.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending = 0
        self._failed = 0
        self._sealed = False
        self._done = threading.Event()

    def add(self):
        with self._lock:
            self._pending += 1

    def resolve(self, delivered: bool):
        with self._lock:
            self._pending -= 1
            if not delivered:
                self._failed += 1
            if self._sealed and self._pending <= 0:
                self._done.set()

    def seal(self):
        with self._lock:
            self._sealed = True
            if self._pending <= 0:
                self._done.set()

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    def wait(
        self,
        timeout: float,
        cancel_event: threading.Event | None = None,
        poll_interval: float = _POLL_INTERVAL,
    ) -> bool:
        """Block until every entry is resolved. True only if all were delivered."""
        waited = 0.0
        while not self._done.wait(poll_interval):
            waited += poll_interval
            if waited >= timeout:
                return False
            if cancel_event is not None and cancel_event.is_set():
                return False
        return self.failed == 0


@dataclass(frozen=True)
class Handoff:
    """One channel item: a parsed entry plus the tracker of its source message."""

    entry: LogEntry
    tracker: DeliveryTracker | None = None
