import asyncio
import os
from typing import Awaitable, Callable

import redis.asyncio as redis

from chatsync.utils.logger import get_logger


logger = get_logger(__name__)

MessageHandler = Callable[[str], Awaitable[None]]


class NoopBus:

    enabled = False

    async def publish(self, channel: str, message: str) -> None:
        return

    async def close(self) -> None:
        return


class RedisSubscriber:
    """Forwards every message on one channel to ``on_message`` until cancelled."""

    def __init__(self, pubsub, channel: str, on_message: MessageHandler) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except Exception as exc:
                logger.warning("Reading %s failed: %s", self._channel, exc)
                await asyncio.sleep(0.5)
                continue
            if msg and msg.get("type") == "message":
                data = msg.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                await self._on_message(data)

    async def cancel(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except Exception as exc:
            logger.warning("Unsubscribing from %s failed: %s", self._channel, exc)


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: MessageHandler) -> RedisSubscriber:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return RedisSubscriber(pubsub, channel, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = os.getenv("REDIS_URL")
    _bus = RedisBus(url) if url else NoopBus()
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
        _bus = None
