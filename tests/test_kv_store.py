import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.errors import KeyValueStoreError
from app.core.kv_store import InMemoryKeyValueStore, RedisKeyValueStore


@pytest.mark.asyncio
async def test_in_memory_store_expires_entries(store, clock) -> None:
    await store.set("greeting", "hello", ttl=10)
    assert await store.get("greeting") == "hello"
    assert await store.ttl("greeting") == 10

    clock.advance(10)

    assert await store.get("greeting") is None
    assert await store.ttl("greeting") == -2


@pytest.mark.asyncio
async def test_in_memory_store_ttl_without_expiry(store) -> None:
    await store.set("forever", "1")
    assert await store.ttl("forever") == -1

    await store.expire("forever", 30)
    assert await store.ttl("forever") == 30


@pytest.mark.asyncio
async def test_in_memory_incr_keeps_expiry(store, clock) -> None:
    assert await store.incr("counter") == 1
    await store.expire("counter", 60)
    assert await store.incr("counter") == 2

    clock.advance(30)
    assert await store.ttl("counter") == 30

    clock.advance(30)
    assert await store.incr("counter") == 1
    assert await store.ttl("counter") == -1


@pytest.mark.asyncio
async def test_in_memory_delete_and_clear() -> None:
    store = InMemoryKeyValueStore()
    await store.set("a", "1")
    await store.set("b", "2")

    await store.delete("a")
    assert await store.get("a") is None

    store.clear()
    assert await store.get("b") is None


class _BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def incr(self, key, amount):
        raise RedisConnectionError("connection refused")

    async def aclose(self):
        return None


@pytest.mark.asyncio
async def test_redis_errors_surface_as_store_errors() -> None:
    store = RedisKeyValueStore("redis://localhost:6379/0", client=_BrokenRedis())

    with pytest.raises(KeyValueStoreError):
        await store.get("anything")
    with pytest.raises(KeyValueStoreError):
        await store.incr("anything")

    await store.close()
