"""
Redis client for report caching.

Dashboard aggregates are expensive and read far more often than orders
change, so they are cached as JSON for a short TTL. Redis is optional: when
it cannot be reached the report services compute results directly.
"""

import json
from typing import Any, Optional, Union

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from yardops.core.config import get_settings
from yardops.core.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """Async Redis client with connection pooling and retry logic."""

    def __init__(
        self,
        url: Optional[str] = None,
        max_connections: Optional[int] = None,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
    ):
        """
        Initialize Redis client with connection pool.

        Args:
            url: Redis connection URL (defaults to settings.redis_url)
            max_connections: Maximum pool connections (defaults to settings)
            socket_timeout: Socket operation timeout in seconds
            socket_connect_timeout: Socket connection timeout in seconds
        """
        settings = get_settings()
        self._url = url or settings.redis_url
        self._max_connections = max_connections or settings.redis_max_connections
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_connected = False

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """
        Strip the password from a Redis URL for logging.

        Example:
            >>> RedisClient._sanitize_url("redis://:secret@cache:6379/0")
            'redis://***@cache:6379/0'
        """
        if "@" in url:
            protocol, rest = url.split("://", 1)
            _, host_part = rest.split("@", 1)
            return f"{protocol}://***@{host_part}"
        return url

    async def connect(self) -> None:
        """
        Create the connection pool and verify connectivity with a ping.

        Raises:
            ConnectionError: If connection cannot be established
        """
        if self._is_connected:
            return

        self._pool = ConnectionPool.from_url(
            self._url,
            max_connections=self._max_connections,
            socket_timeout=self._socket_timeout,
            socket_connect_timeout=self._socket_connect_timeout,
            retry=Retry(ExponentialBackoff(base=0.1, cap=2.0), retries=2),
            decode_responses=True,
        )
        self._client = Redis(connection_pool=self._pool)

        try:
            await self._client.ping()
        except (ConnectionError, TimeoutError) as e:
            logger.error(
                "Failed to connect to Redis",
                error=str(e),
                url=self._sanitize_url(self._url),
            )
            await self.disconnect()
            raise ConnectionError(f"Redis connection failed: {e}") from e

        self._is_connected = True
        logger.info(
            "Redis connection established",
            url=self._sanitize_url(self._url),
            pool_size=self._max_connections,
        )

    async def disconnect(self) -> None:
        """Close the client and its pool."""
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._pool:
            await self._pool.aclose()
            self._pool = None
        if self._is_connected:
            self._is_connected = False
            logger.info("Redis connection closed")

    async def health_check(self) -> bool:
        if not self._is_connected or not self._client:
            return False
        try:
            await self._client.ping()
        except (ConnectionError, TimeoutError) as e:
            logger.error("Redis health check failed", error=str(e))
            return False
        return True

    def _ensure_connected(self) -> Redis:
        if not self._is_connected or not self._client:
            raise ConnectionError("Redis client is not connected")
        return self._client

    async def get_json(self, key: str) -> Optional[Any]:
        """
        Get a JSON value by key.

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If the Redis operation fails
        """
        client = self._ensure_connected()
        try:
            value = await client.get(key)
        except RedisError as e:
            logger.error("Redis GET operation failed", key=key, error=str(e))
            raise

        logger.debug("Redis GET operation", key=key, found=value is not None)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.warning("Discarding undecodable cache entry", key=key, error=str(e))
            return None

    async def set_json(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        """
        Store ``value`` as JSON with an optional expiry in seconds.

        Decimals and datetimes are stored as strings.
        """
        client = self._ensure_connected()
        try:
            result = await client.set(key, json.dumps(value, default=str), ex=ex)
        except RedisError as e:
            logger.error("Redis SET operation failed", key=key, error=str(e))
            raise
        logger.debug("Redis SET operation", key=key, ex=ex, success=bool(result))
        return bool(result)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching ``pattern`` (e.g. ``"yardops:report:*"``)."""
        client = self._ensure_connected()
        try:
            keys = [key async for key in client.scan_iter(match=pattern)]
            if not keys:
                return 0
            count = await client.delete(*keys)
        except RedisError as e:
            logger.error("Redis DELETE pattern failed", pattern=pattern, error=str(e))
            raise
        logger.debug("Redis DELETE pattern", pattern=pattern, count=count)
        return count


class CacheKeyManager:
    """Consistent, namespaced cache keys."""

    def __init__(self, namespace: str = "yardops"):
        self.namespace = namespace

    def make_key(self, *parts: Union[str, int]) -> str:
        """
        Generate cache key from parts.

        Example:
            >>> CacheKeyManager().make_key("report", "dashboard", 2025, 10)
            'yardops:report:dashboard:2025:10'
        """
        return ":".join([self.namespace] + [str(part) for part in parts if part != ""])

    def report_key(self, report: str, *parts: Union[str, int]) -> str:
        return self.make_key("report", report, *parts)

    def report_pattern(self) -> str:
        return self.make_key("report", "*")


_redis_client: Optional[RedisClient] = None
_cache_key_manager: Optional[CacheKeyManager] = None


async def get_redis_client() -> RedisClient:
    """
    Get or create the shared Redis client.

    Raises:
        ConnectionError: If Redis connection fails
    """
    global _redis_client

    if _redis_client is None:
        client = RedisClient()
        await client.connect()
        _redis_client = client

    return _redis_client


def get_cache_key_manager() -> CacheKeyManager:
    global _cache_key_manager

    if _cache_key_manager is None:
        _cache_key_manager = CacheKeyManager()

    return _cache_key_manager


async def close_redis_client() -> None:
    """Close the shared Redis client connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.disconnect()
        _redis_client = None
