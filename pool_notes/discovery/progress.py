from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, List, Optional

from pool_notes.api.logging_config import get_logger
from pool_notes.discovery.models import DiscoveryProgress

logger = get_logger("discovery.progress")

_CLOSED = object()


class ProgressSubscription:
    """Async iterator over the snapshots emitted after subscribing."""

    def __init__(self, queue: "asyncio.Queue[object]"):
        self._queue = queue

    def __aiter__(self) -> AsyncIterator[DiscoveryProgress]:
        return self

    async def __anext__(self) -> DiscoveryProgress:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item  # type: ignore[return-value]


class ProgressStream:
    """
    Single-producer progress channel for one discovery run.

    The run emits immutable ``DiscoveryProgress`` snapshots at checkpoints;
    consumers either ``subscribe()`` (async iteration until the run closes the
    stream) or register a synchronous listener. ``latest`` always holds the
    last snapshot for status queries.
    """

    def __init__(self) -> None:
        self.latest: Optional[DiscoveryProgress] = None
        self.closed = False
        self._queues: List["asyncio.Queue[object]"] = []
        self._listeners: List[Callable[[DiscoveryProgress], None]] = []

    def subscribe(self) -> ProgressSubscription:
        queue: "asyncio.Queue[object]" = asyncio.Queue()
        if self.latest is not None:
            queue.put_nowait(self.latest)
        if self.closed:
            queue.put_nowait(_CLOSED)
        else:
            self._queues.append(queue)
        return ProgressSubscription(queue)

    def add_listener(self, listener: Callable[[DiscoveryProgress], None]) -> None:
        self._listeners.append(listener)

    def emit(self, progress: DiscoveryProgress) -> None:
        if self.closed:
            return
        self.latest = progress
        for q in self._queues:
            q.put_nowait(progress)
        for listener in self._listeners:
            try:
                listener(progress)
            except Exception as e:
                # A broken consumer must not abort the run that feeds it
                logger.error(f"Progress listener failed: {e}", exc_info=True)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for q in self._queues:
            q.put_nowait(_CLOSED)
        self._queues.clear()
