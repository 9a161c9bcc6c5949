# app/services/redis_client.py
from urllib.parse import urlparse

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_CONNECTIONS = 10


def build_redis_url(rest_url: str, token: str) -> str:
    """Native-protocol URL for an Upstash database given its REST endpoint."""
    rest_url = rest_url.strip()
    host = urlparse(rest_url).hostname or urlparse(f"https://{rest_url}").hostname
    if not host:
        raise ValueError("UPSTASH_REDIS_REST_URL does not include a valid hostname")
    return f"rediss://default:{token}@{host}:6379"


class FastRedisClient:
    """
    Pooled Redis client for the voicemail redirect markers.

    Marker reads and writes never raise. A failed EXISTS reads as "not
    redirected yet", so a Redis outage degrades to a repeated redirect rather
    than a dropped voicemail.
    """

    def __init__(self):
        self.pool = None
        self.client = None
        self._initialized = False

    @property
    def configured(self) -> bool:
        return bool(settings.UPSTASH_REDIS_REST_URL and settings.UPSTASH_REDIS_REST_TOKEN)

    async def initialize(self):
        if self._initialized:
            return
        if not self.configured:
            raise RuntimeError("Redis is not configured")

        try:
            self.pool = ConnectionPool.from_url(
                build_redis_url(settings.UPSTASH_REDIS_REST_URL, settings.UPSTASH_REDIS_REST_TOKEN),
                max_connections=MAX_CONNECTIONS,
                retry_on_timeout=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)
            await self.client.ping()
        except Exception as e:
            logger.error("Redis marker store unavailable", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

        self._initialized = True
        logger.info("Redis marker store ready", max_connections=MAX_CONNECTIONS)

    async def close(self):
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self._initialized = False

    async def _ensure_initialized(self):
        if not self._initialized:
            await self.initialize()

    async def ping(self) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        try:
            await self._ensure_initialized()
            if ttl_s:
                return bool(await self.client.set(key, value, ex=ttl_s))
            return bool(await self.client.set(key, value))
        except Exception as e:
            logger.error("Marker write failed", key=key, error=str(e))
            return False

    async def exists(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            return await self.client.exists(key) > 0
        except Exception as e:
            logger.error("Marker lookup failed", key=key, error=str(e))
            return False


fast_redis = FastRedisClient()
