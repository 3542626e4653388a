"""
Tests for the Redis report cache client and key naming.
"""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError, RedisError

from yardops.cache.redis_client import CacheKeyManager, RedisClient


@pytest.fixture
def redis_client() -> RedisClient:
    client = RedisClient(url="redis://:secret@cache:6379/0", max_connections=5)
    client._client = AsyncMock()
    client._is_connected = True
    return client


class TestCacheKeyManager:
    def test_report_key(self) -> None:
        assert CacheKeyManager().report_key("dashboard", 2025, 10) == (
            "yardops:report:dashboard:2025:10"
        )

    def test_empty_parts_are_skipped(self) -> None:
        assert CacheKeyManager("test").make_key("report", "", "yearly") == "test:report:yearly"

    def test_report_pattern(self) -> None:
        assert CacheKeyManager().report_pattern() == "yardops:report:*"


class TestRedisClient:
    def test_sanitize_url(self) -> None:
        assert RedisClient._sanitize_url("redis://:secret@cache:6379/0") == (
            "redis://***@cache:6379/0"
        )
        assert RedisClient._sanitize_url("redis://cache:6379/0") == "redis://cache:6379/0"

    async def test_get_json(self, redis_client: RedisClient) -> None:
        redis_client._client.get.return_value = json.dumps({"totalOrders": 3})

        assert await redis_client.get_json("key") == {"totalOrders": 3}

    async def test_get_json_miss(self, redis_client: RedisClient) -> None:
        redis_client._client.get.return_value = None

        assert await redis_client.get_json("key") is None

    async def test_get_json_discards_garbage(self, redis_client: RedisClient) -> None:
        redis_client._client.get.return_value = "{not json"

        assert await redis_client.get_json("key") is None

    async def test_set_json_stringifies_decimals(self, redis_client: RedisClient) -> None:
        redis_client._client.set.return_value = True

        assert await redis_client.set_json("key", {"gp": Decimal("12.50")}, ex=120)

        redis_client._client.set.assert_awaited_once_with("key", '{"gp": "12.50"}', ex=120)

    async def test_operation_error_propagates(self, redis_client: RedisClient) -> None:
        redis_client._client.get.side_effect = RedisError("boom")

        with pytest.raises(RedisError):
            await redis_client.get_json("key")

    async def test_not_connected(self) -> None:
        with pytest.raises(ConnectionError):
            await RedisClient(url="redis://cache:6379/0").get_json("key")

    async def test_delete_pattern(self, redis_client: RedisClient) -> None:
        async def scan_iter(match):
            for key in ("yardops:report:a", "yardops:report:b"):
                yield key

        redis_client._client.scan_iter = scan_iter
        redis_client._client.delete.return_value = 2

        assert await redis_client.delete_pattern("yardops:report:*") == 2
        redis_client._client.delete.assert_awaited_once_with(
            "yardops:report:a", "yardops:report:b"
        )

    async def test_connect_failure_cleans_up(self) -> None:
        client = RedisClient(url="redis://cache:6379/0")
        with patch("yardops.cache.redis_client.ConnectionPool") as pool_cls, patch(
            "yardops.cache.redis_client.Redis"
        ) as redis_cls:
            pool_cls.from_url.return_value = AsyncMock()
            redis_cls.return_value.ping = AsyncMock(side_effect=ConnectionError("refused"))
            redis_cls.return_value.aclose = AsyncMock()

            with pytest.raises(ConnectionError):
                await client.connect()

        assert client._client is None
        assert not await client.health_check()
