# dashboard_iam/infrastructure/cache/redis_client.py

import redis.asyncio as redis

from dashboard_iam.config.settings import settings


class RedisClient:
    def __init__(self, url: str | None = None):
        self.client = redis.from_url(
            url or settings.redis_url,
            decode_responses=True,
        )

    async def incr_window(self, key: str, window: int) -> int:
        """Increment key; the first increment starts the window TTL.

        SET NX EX and INCR run in one MULTI/EXEC, so a counter never exists without a TTL.
        """
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=window, nx=True)
            pipe.incr(key)
            _, current = await pipe.execute()
        return int(current)

    async def get(self, key: str) -> str | None:
        """Get value for key. Returns None if key does not exist."""
        return await self.client.get(key)

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()
