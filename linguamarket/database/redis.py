from redis.asyncio import Redis

from linguamarket.common.log import log
from linguamarket.core.conf import settings


class RedisCli(Redis):
    """Redis client"""

    def __init__(self) -> None:
        super().__init__(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            username=settings.REDIS_USERNAME,
            password=settings.REDIS_PASSWORD or None,
            db=settings.REDIS_DATABASE,
            socket_timeout=settings.REDIS_TIMEOUT,
            socket_connect_timeout=settings.REDIS_TIMEOUT,
            decode_responses=True,
        )

    async def open(self) -> None:
        """Ping redis once at startup"""
        try:
            await self.ping()
        except Exception as e:
            log.warning('Redis unavailable, shared caches disabled: {}', e)


# Global redis client
redis_client: RedisCli = RedisCli()
