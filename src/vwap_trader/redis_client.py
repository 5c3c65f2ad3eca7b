"""Redis Streams publish/read client."""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog

from vwap_trader.models.messages import StreamMessage

logger = structlog.get_logger()


class RedisClient:
    def __init__(
        self,
        redis_url: str = "redis://redis:6379",
        socket_timeout: float = 30.0,
        socket_connect_timeout: float = 10.0,
        retry_on_timeout: bool = True,
    ) -> None:
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.socket_connect_timeout = socket_connect_timeout
        self.retry_on_timeout = retry_on_timeout
        self.client: aioredis.Redis | None = None

    async def connect(self) -> None:
        self.client = aioredis.from_url(
            self.redis_url,
            decode_responses=False,
            max_connections=20,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_connect_timeout,
            retry_on_timeout=self.retry_on_timeout,
        )
        await self.client.ping()
        logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        if self.client:
            await self.client.aclose()
            logger.info("redis_disconnected")

    async def publish(self, stream: str, message: StreamMessage) -> str:
        """XADD message to stream. Returns message ID."""
        assert self.client is not None
        msg_id = await self.client.xadd(stream, message.to_redis())
        logger.debug("redis_published", stream=stream, msg_id=msg_id, type=message.type)
        return msg_id.decode() if isinstance(msg_id, bytes) else msg_id

    async def read_latest(self, stream: str) -> StreamMessage | None:
        """XREVRANGE to get latest message from stream."""
        assert self.client is not None
        results = await self.client.xrevrange(stream, count=1)
        if not results:
            return None
        _msg_id, data = results[0]
        return StreamMessage.from_redis(data)

    async def read_recent(self, stream: str, count: int) -> list[StreamMessage]:
        """Last `count` messages of a stream, newest first."""
        assert self.client is not None
        results = await self.client.xrevrange(stream, count=count)
        return [StreamMessage.from_redis(data) for _msg_id, data in results]
