from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

import orjson
from fastapi import WebSocket
from redis.asyncio.client import PubSub

from hobbyhub.core.config import settings
from hobbyhub.db.redis import redis_client

logger = logging.getLogger(__name__)

Scope = Literal["user", "event", "conversation"]
SCOPES: tuple[str, ...] = ("user", "event", "conversation")


def room_name(scope: str, target_id: int) -> str:
    if scope not in SCOPES:
        raise ValueError(f"Unknown fan-out scope: {scope}")
    return f"{scope}:{int(target_id)}"


@dataclass(slots=True)
class FanoutMessage:
    scope: Scope
    target_id: int
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def channel(self) -> str:
        return room_name(self.scope, self.target_id)

    def encode(self) -> str:
        body = {
            "type": self.event_type,
            "payload": self.payload,
            "emitted_at": datetime.now(timezone.utc).isoformat(),
        }
        return orjson.dumps(body).decode("utf-8")


class FanoutPublisher:
    """Best-effort, at-most-once publisher for committed transitions.

    ``dispatch`` never blocks the caller: each message is sent from its own
    task, bounded by ``timeout_seconds``. A failed or slow send is logged and
    dropped; clients reconcile by refetching.
    """

    def __init__(self, client: Any | None = None, timeout_seconds: float | None = None) -> None:
        self.client = client if client is not None else redis_client
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.fanout_timeout_seconds
        self._pending: set[asyncio.Task] = set()

    async def publish(self, scope: Scope, target_id: int, event_type: str, payload: dict[str, Any]) -> bool:
        return await self._send(FanoutMessage(scope=scope, target_id=target_id, event_type=event_type, payload=payload))

    async def _send(self, message: FanoutMessage) -> bool:
        try:
            await asyncio.wait_for(self.client.publish(message.channel, message.encode()), self.timeout_seconds)
        except Exception:
            logger.warning("Fan-out publish failed (channel=%s, type=%s)", message.channel, message.event_type, exc_info=True)
            return False
        return True

    def dispatch(self, messages: Iterable[FanoutMessage]) -> None:
        for message in messages:
            try:
                task = asyncio.get_running_loop().create_task(self._send(message))
            except RuntimeError:
                logger.warning("No running loop, dropping fan-out message (channel=%s)", message.channel)
                continue
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class RedisChannelRelay:
    """Forwards one pub/sub channel to one connected WebSocket until cancelled."""

    def __init__(self, client: Any | None = None, poll_seconds: float = 1.0) -> None:
        self.client = client if client is not None else redis_client
        self.poll_seconds = poll_seconds

    async def subscribe_loop(self, channel: str, ws: WebSocket) -> None:
        pubsub: PubSub = self.client.pubsub()
        await pubsub.subscribe(channel)
        try:
            while True:
                msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=self.poll_seconds)
                if msg and msg.get("data"):
                    await ws.send_text(str(msg["data"]))
                await asyncio.sleep(0.02)
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.close()


relay = RedisChannelRelay()
fanout = FanoutPublisher()


def get_publisher() -> FanoutPublisher:
    return fanout
