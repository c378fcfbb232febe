import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_END = object()


class Subscription(Generic[T]):
    """One consumer's view of a Broadcast.

    A bounded subscription (maxsize > 0) never blocks the publisher: when it
    is full the oldest pending item is discarded and counted in ``dropped``.
    """

    def __init__(self, owner: "Broadcast[T]", maxsize: int = 0, name: str = "") -> None:
        self._owner = owner
        self._queue: asyncio.Queue = asyncio.Queue()
        self._maxsize = maxsize
        self._name = name
        self.dropped = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        try:
            while True:
                item = await self._queue.get()
                if item is _END:
                    return
                yield item
        finally:
            self._owner._discard(self)

    def _offer(self, item: object) -> None:
        if self._maxsize and self._queue.qsize() >= self._maxsize:
            self._queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(
                    "Subscriber %s is falling behind, %d items dropped",
                    self._name or "?", self.dropped,
                )
        self._queue.put_nowait(item)

    def _end(self) -> None:
        self._queue.put_nowait(_END)


class Broadcast(Generic[T]):
    """Single producer, many subscribers; items are delivered in publish order."""

    def __init__(self) -> None:
        self._subscribers: list[Subscription[T]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, maxsize: int = 0, name: str = "") -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self, maxsize=maxsize, name=name)
        if self._closed:
            subscription._end()
        else:
            self._subscribers.append(subscription)
        return subscription

    def publish(self, item: T) -> None:
        if self._closed:
            return
        for subscription in list(self._subscribers):
            subscription._offer(item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscribers:
            subscription._end()

    def _discard(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
