from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cacheflow.config.settings import RemoteSettings
from cacheflow.core.store import RedisEntryStore
from cacheflow.utils.exceptions import BackendError


@pytest.fixture
def client():
    return AsyncMock()


@pytest.fixture
def store(client, clock):
    return RedisEntryStore(client, key_prefix="cf:", clock=clock)


@pytest.mark.asyncio
async def test_get_decodes_json_and_native_ttl(store, client, clock):
    client.get.return_value = '{"id":1}'
    client.pttl.return_value = 5_000
    entry = await store.get("getUser")
    client.get.assert_awaited_once_with("cf:getUser")
    assert entry.value == {"id": 1}
    assert entry.expires_at == clock() + 5_000


@pytest.mark.asyncio
async def test_get_without_ttl_and_missing(store, client):
    client.get.return_value = "[1,2]"
    client.pttl.return_value = -1
    entry = await store.get("k")
    assert entry.value == [1, 2] and entry.expires_at is None

    client.get.return_value = None
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_set_uses_millisecond_ttl(store, client, clock):
    entry = await store.set("k", {"a": 1}, 1.5)
    client.set.assert_awaited_once_with("cf:k", '{"a":1}', px=1_500)
    assert entry.expires_at == clock() + 1_500


@pytest.mark.asyncio
async def test_set_tiny_ttl_is_at_least_one_ms(store, client):
    await store.set("k", 1, 0.0001)
    client.set.assert_awaited_once_with("cf:k", "1", px=1)


@pytest.mark.asyncio
async def test_set_without_max_age(store, client):
    entry = await store.set("k", "v", None)
    client.set.assert_awaited_once_with("cf:k", '"v"')
    assert entry.expires_at is None


@pytest.mark.asyncio
async def test_refresh_ttl(store, client):
    client.pexpire.return_value = True
    assert await store.refresh_ttl("k", 2) is True
    client.pexpire.assert_awaited_once_with("cf:k", 2_000)

    client.exists.return_value = 0
    assert await store.refresh_ttl("k", None) is False


@pytest.mark.asyncio
async def test_size_memory_and_delete(store, client):
    client.memory_usage.return_value = 72
    client.info.return_value = {"used_memory": 2_048}
    client.delete.return_value = 1
    assert await store.size_bytes("k") == 72
    assert await store.memory_used() == 2_048
    client.info.assert_awaited_once_with("memory")
    assert await store.delete("k") is True


@pytest.mark.asyncio
async def test_scan_strips_prefix(store, client):
    async def names(match):
        assert match == "cf:*"
        for name in ("cf:a", "cf:b"):
            yield name

    client.scan_iter = MagicMock(side_effect=lambda match: names(match))
    client.get.side_effect = ["1", None]
    client.pttl.return_value = -1
    assert [key async for key, _ in store.scan()] == ["a"]


@pytest.mark.asyncio
async def test_failures_become_backend_errors(store, client):
    client.get.side_effect = RedisConnectionError("refused")
    with pytest.raises(BackendError) as info:
        await store.get("k")
    assert isinstance(info.value.__cause__, RedisConnectionError)
    assert info.value.context["operation"].endswith("get")

    client.ping.side_effect = RedisConnectionError("refused")
    with pytest.raises(BackendError):
        await store.ping()


def test_from_settings_keeps_prefix():
    store = RedisEntryStore.from_settings(RemoteSettings(host="cache.internal", keyPrefix="app:"))
    assert store._prefix == "app:"
    assert store._name("k") == "app:k"
