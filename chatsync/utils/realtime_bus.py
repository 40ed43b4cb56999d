import asyncio
import logging
from typing import Awaitable, Callable, Dict, List

import redis.asyncio as redis

from chatsync.config import get_settings


logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]


def conversations_channel(user_id: str) -> str:
    return f"conversations:{user_id}"


def messages_channel(conversation_id: str) -> str:
    return f"messages:{conversation_id}"


class LocalBus:
    """In-process fan-out used when no Redis is configured."""

    enabled = True

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List["_LocalSubscription"]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for sub in list(self._subscriptions.get(channel, [])):
            sub.deliver(message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> "_LocalSubscription":
        sub = _LocalSubscription(self, channel, on_message)
        self._subscriptions.setdefault(channel, []).append(sub)
        return sub

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscriptions.get(channel, []))

    def _remove(self, sub: "_LocalSubscription") -> None:
        subs = self._subscriptions.get(sub.channel)
        if not subs:
            return
        try:
            subs.remove(sub)
        except ValueError:
            pass
        if not subs:
            del self._subscriptions[sub.channel]


class _LocalSubscription:

    def __init__(self, bus: LocalBus, channel: str, on_message: OnMessage) -> None:
        self._bus = bus
        self.channel = channel
        self._on_message = on_message
        self._queue: asyncio.Queue = asyncio.Queue()
        self._running = True

    def deliver(self, message: str) -> None:
        if self._running:
            self._queue.put_nowait(message)

    async def run(self) -> None:
        # one message at a time, so callbacks of a subscription never overlap
        while self._running:
            message = await self._queue.get()
            if message is None:
                break
            try:
                await self._on_message(message)
            except Exception:
                logger.exception("Subscriber on %s failed to handle message", self.channel)

    async def cancel(self) -> None:
        self._running = False
        self._bus._remove(self)
        self._queue.put_nowait(None)


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> "_RedisSubscription":
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return _RedisSubscription(pubsub, channel, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


class _RedisSubscription:

    def __init__(self, pubsub, channel: str, on_message: OnMessage) -> None:
        self._pubsub = pubsub
        self.channel = channel
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if msg and msg.get("type") == "message":
                    data = msg.get("data")
                    if isinstance(data, bytes):
                        data = data.decode("utf-8")
                    await self._on_message(data)
            except Exception:
                logger.exception("Redis subscription on %s failed, retrying", self.channel)
                await asyncio.sleep(0.5)

    async def cancel(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
        except Exception:
            logger.warning("Failed to unsubscribe from %s", self.channel, exc_info=True)


_bus = None


def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().redis_url
    if url:
        logger.info("Using Redis realtime bus")
        _bus = RedisBus(url)
    else:
        logger.info("REDIS_URL not set, using in-process realtime bus")
        _bus = LocalBus()
    return _bus


async def close_bus() -> None:
    global _bus
    if isinstance(_bus, RedisBus):
        await _bus.close()
    _bus = None
