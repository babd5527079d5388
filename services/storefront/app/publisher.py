"""
Storefront Service — イベント発行

コミット済みの状態変更を Redis Pub/Sub (order_events) に流す。
fire-and-forget なので、発行に失敗しても状態変更は取り消さない。
REDIS_URL 未設定なら何もしない。
"""

import json
import logging

import redis.asyncio as aioredis
from pydantic import BaseModel

logger = logging.getLogger(__name__)

CHANNEL = "order_events"


class EventPublisher:
    def __init__(self, redis: aioredis.Redis | None) -> None:
        self.redis = redis

    @classmethod
    def from_url(cls, url: str | None) -> "EventPublisher":
        if not url:
            return cls(None)
        return cls(aioredis.from_url(url, decode_responses=True))

    async def publish(self, event: BaseModel) -> None:
        if self.redis is None:
            return
        message = {
            "event_type": type(event).__name__,
            "data": event.model_dump(mode="json"),
        }
        try:
            await self.redis.publish(
                CHANNEL, json.dumps(message, ensure_ascii=False, default=str)
            )
        except Exception:
            logger.exception("Failed to publish %s", message["event_type"])

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
