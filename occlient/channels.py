"""A fixed pool of thread-safe message channels and a small thread runner."""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Iterable
from typing import Any

THREAD_COUNT = 10


class ChannelPool:
    """A fixed number of FIFO channels, addressed by index."""

    def __init__(self, size: int = THREAD_COUNT) -> None:
        self._channels: list[queue.SimpleQueue[Any]] = [
            queue.SimpleQueue() for _ in range(size)
        ]

    def __len__(self) -> int:
        return len(self._channels)

    def _channel(self, thread_id: int) -> queue.SimpleQueue[Any]:
        if not 0 <= thread_id < len(self._channels):
            raise IndexError(
                f"channel {thread_id} out of range (pool has {len(self._channels)})"
            )
        return self._channels[thread_id]

    def send(self, thread_id: int, val: Any) -> None:
        """Put a value on the channel for ``thread_id``."""
        self._channel(thread_id).put(val)

    def recv(self, thread_id: int) -> Any:
        """Take the next value from the channel, blocking until one arrives."""
        return self._channel(thread_id).get()

    def try_recv(self, thread_id: int) -> Any | None:
        """Take the next value from the channel, or return None if it is empty."""
        try:
            return self._channel(thread_id).get_nowait()
        except queue.Empty:
            return None


_CHANNEL_POOL = ChannelPool()


def send_msg(thread_id: int, msg: Any) -> None:
    """Send a message on the shared pool."""
    _CHANNEL_POOL.send(thread_id, msg)


def recv_msg(thread_id: int) -> Any:
    """Receive a message from the shared pool, blocking."""
    return _CHANNEL_POOL.recv(thread_id)


def try_recv_msg(thread_id: int) -> Any | None:
    """Receive a message from the shared pool without blocking."""
    return _CHANNEL_POOL.try_recv(thread_id)


class ThreadManager:
    """Starts one thread per task; ``join`` waits for all of them."""

    def __init__(self, tasks: Iterable[Callable[[], Any]]) -> None:
        self._errors: dict[int, Exception] = {}
        self._threads: list[threading.Thread] = []
        for index, task in enumerate(tasks):
            thread = threading.Thread(target=self._run, args=(index, task), daemon=True)
            self._threads.append(thread)
            thread.start()

    def _run(self, index: int, task: Callable[[], Any]) -> None:
        try:
            task()
        except Exception as exc:
            self._errors[index] = exc

    def join(self) -> None:
        """Wait for every thread; re-raise the first task failure in start order."""
        for thread in self._threads:
            thread.join()
        for index in range(len(self._threads)):
            if index in self._errors:
                raise self._errors[index]