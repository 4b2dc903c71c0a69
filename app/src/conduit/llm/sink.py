"""
Event sinks: where canonical events go.

The orchestrator checks is_destroyed() before every send. A destroyed
sink (closed window, disconnected HTTP client) silently receives nothing.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable

logger = logging.getLogger(__name__)


class EventSink(ABC):
    @abstractmethod
    def is_destroyed(self) -> bool:
        ...

    @abstractmethod
    def send(self, channel: str, payload: dict[str, Any]) -> None:
        ...


class QueueSink(EventSink):
    """Buffers (channel, payload) pairs for an async consumer.

        sink = QueueSink()
        task = asyncio.create_task(service.generate(...))
        async for channel, payload in sink.events():
            ...
    """

    def __init__(self) -> None:
        self.queue: asyncio.Queue[tuple[str, dict[str, Any]] | None] = asyncio.Queue()
        self._destroyed = False
        self._closed = False

    def is_destroyed(self) -> bool:
        return self._destroyed

    def send(self, channel: str, payload: dict[str, Any]) -> None:
        self.queue.put_nowait((channel, payload))

    def destroy(self) -> None:
        """The consumer is gone; drop everything from now on."""
        self._destroyed = True
        self.close()

    def close(self) -> None:
        """No more events will be sent; ends events()."""
        if not self._closed:
            self._closed = True
            self.queue.put_nowait(None)

    async def events(self) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        while True:
            item = await self.queue.get()
            if item is None:
                return
            yield item


class CallbackSink(EventSink):
    def __init__(
        self,
        callback: Callable[[str, dict[str, Any]], None],
        is_destroyed: Callable[[], bool] | None = None,
    ):
        self._callback = callback
        self._is_destroyed = is_destroyed

    def is_destroyed(self) -> bool:
        return bool(self._is_destroyed and self._is_destroyed())

    def send(self, channel: str, payload: dict[str, Any]) -> None:
        self._callback(channel, payload)
