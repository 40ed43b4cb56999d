"""Live query subscriptions over the document store.

A live query pairs one filtered, ordered fetch with one realtime bus channel.
Writers publish on the channel after every change; the live query re-runs
its fetch and hands the full result set (a snapshot) to ``on_snapshot``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional


logger = logging.getLogger(__name__)

Snapshot = List[dict]
FetchFn = Callable[[], Awaitable[Snapshot]]
SnapshotFn = Callable[[Snapshot], Awaitable[None]]
ErrorFn = Callable[[Exception], Awaitable[None]]


class LiveQuery:

    def __init__(
        self,
        bus,
        channel: str,
        fetch: FetchFn,
        on_snapshot: SnapshotFn,
        on_error: Optional[ErrorFn] = None,
    ) -> None:
        self._bus = bus
        self._channel = channel
        self._fetch = fetch
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._subscription: Any = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def active(self) -> bool:
        return self._subscription is not None

    async def start(self) -> None:
        if self._subscription is not None:
            return
        # subscribe before the first fetch so no write falls between the two
        self._subscription = await self._bus.subscribe(self._channel, self._on_change)
        await self.refresh()
        self._task = asyncio.create_task(self._subscription.run())

    async def refresh(self) -> None:
        async with self._lock:
            try:
                docs = await self._fetch()
            except Exception as exc:
                logger.error("Live query on %s failed: %s", self._channel, exc)
                if self._on_error is not None:
                    await self._on_error(exc)
                return
            await self._on_snapshot(docs)

    async def stop(self) -> None:
        subscription, self._subscription = self._subscription, None
        task, self._task = self._task, None
        if subscription is not None:
            await subscription.cancel()
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _on_change(self, message: str) -> None:
        await self.refresh()
