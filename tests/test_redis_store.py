"""Unit tests for the Redis store adapter (client mocked, no Redis needed)."""

from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from freereads.adapters.store import RedisKeyValueStore, StoreError, StoreUnavailableError


@pytest.fixture
def redis_client() -> AsyncMock:
    client = AsyncMock()
    client.ping.return_value = True
    return client


@pytest.fixture
def monotonic() -> Mock:
    return Mock(return_value=100.0)


@pytest.fixture
def redis_store(redis_client: AsyncMock, monotonic: Mock) -> RedisKeyValueStore:
    return RedisKeyValueStore(
        "redis://localhost:6379/0",
        client=redis_client,
        backoff_base_seconds=1.0,
        backoff_cap_seconds=8.0,
        monotonic=monotonic,
    )


@pytest.mark.asyncio
async def test_connect_success_marks_ready(redis_store: RedisKeyValueStore) -> None:
    assert await redis_store.connect() is True
    assert redis_store.is_ready() is True


@pytest.mark.asyncio
async def test_connect_failure_never_raises(
    redis_store: RedisKeyValueStore, redis_client: AsyncMock
) -> None:
    redis_client.ping.side_effect = RedisConnectionError("refused")

    assert await redis_store.connect() is False
    assert redis_store.is_ready() is False


@pytest.mark.asyncio
async def test_commands_map_to_redis_calls(
    redis_store: RedisKeyValueStore, redis_client: AsyncMock
) -> None:
    redis_client.get.return_value = "v"
    redis_client.incrby.return_value = 3
    redis_client.expire.return_value = 1
    redis_client.ttl.return_value = 42
    redis_client.delete.return_value = 1

    assert await redis_store.get("k") == "v"
    await redis_store.set("k", "v", ttl_seconds=10)
    assert await redis_store.incr("n", 2) == 3
    assert await redis_store.expire("n", 60) is True
    assert await redis_store.ttl("n") == 42
    assert await redis_store.delete("k") is True

    redis_client.set.assert_awaited_once_with("k", "v", ex=10)
    redis_client.incrby.assert_awaited_once_with("n", 2)


@pytest.mark.asyncio
async def test_delete_of_missing_key_returns_false(
    redis_store: RedisKeyValueStore, redis_client: AsyncMock
) -> None:
    redis_client.delete.return_value = 0

    assert await redis_store.delete("k") is False


@pytest.mark.asyncio
async def test_transport_failure_raises_unavailable_and_backs_off(
    redis_store: RedisKeyValueStore, redis_client: AsyncMock, monotonic: Mock
) -> None:
    await redis_store.connect()
    redis_client.get.side_effect = RedisConnectionError("gone")

    with pytest.raises(StoreUnavailableError):
        await redis_store.get("k")

    # Unready until the probe interval passes
    assert redis_store.is_ready() is False
    monotonic.return_value += 10
    assert redis_store.is_ready() is True


@pytest.mark.asyncio
async def test_successful_command_recovers_readiness(
    redis_store: RedisKeyValueStore, redis_client: AsyncMock, monotonic: Mock
) -> None:
    redis_client.get.side_effect = [RedisConnectionError("gone"), "v"]

    with pytest.raises(StoreUnavailableError):
        await redis_store.get("k")

    monotonic.return_value += 10
    assert await redis_store.get("k") == "v"
    assert redis_store.is_ready() is True


@pytest.mark.asyncio
async def test_command_error_raises_store_error_without_unready(
    redis_store: RedisKeyValueStore, redis_client: AsyncMock
) -> None:
    await redis_store.connect()
    redis_client.incrby.side_effect = ResponseError("value is not an integer")

    with pytest.raises(StoreError) as exc_info:
        await redis_store.incr("k")

    assert not isinstance(exc_info.value, StoreUnavailableError)
    assert redis_store.is_ready() is True


@pytest.mark.asyncio
async def test_close_closes_client(redis_store: RedisKeyValueStore, redis_client: AsyncMock) -> None:
    await redis_store.connect()
    await redis_store.close()

    redis_client.aclose.assert_awaited_once()
    assert redis_store.name == "redis"
