import pytest
import pytest_asyncio

from cacheflow.core.store import InMemoryEntryStore, SQLiteEntryStore
from cacheflow.utils.exceptions import BackendError


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def store(request, clock, sqlite_db):
    if request.param == "memory":
        s = InMemoryEntryStore(clock=clock)
    else:
        s = SQLiteEntryStore(sqlite_db, clock=clock)
        await s.open()
    yield s
    await s.close()


async def _keys(store):
    return [key async for key, _ in store.scan()]


@pytest.mark.asyncio
async def test_read_your_writes(store):
    entry = await store.set("getUser", {"id": 1, "name": "Ada"}, 60)
    assert entry.expires_at == store._clock() + 60_000
    got = await store.get("getUser")
    assert got is not None
    assert got.value == {"id": 1, "name": "Ada"}
    assert got.expires_at == entry.expires_at


@pytest.mark.asyncio
async def test_missing_key(store):
    assert await store.get("nope") is None
    assert await store.refresh_ttl("nope", 10) is False
    assert await store.delete("nope") is False
    assert await store.size_bytes("nope") == 0


@pytest.mark.asyncio
async def test_expired_entry_reads_as_absent_but_stays_scannable(store, clock):
    await store.set("k", "v", 1)
    clock.advance(1_001)
    assert await store.get("k") is None
    assert await store.refresh_ttl("k", 10) is False
    assert await _keys(store) == ["k"]


@pytest.mark.asyncio
async def test_refresh_slides_expiry(store, clock):
    await store.set("k", "v", 1)
    clock.advance(900)
    assert await store.refresh_ttl("k", 1) is True
    clock.advance(900)
    got = await store.get("k")
    assert got is not None
    assert got.expires_at == clock() + 100


@pytest.mark.asyncio
async def test_no_max_age_never_expires(store, clock):
    await store.set("k", [1, 2], None)
    clock.advance(10**9)
    got = await store.get("k")
    assert got is not None and got.expires_at is None
    assert await store.refresh_ttl("k", None) is True


@pytest.mark.asyncio
async def test_delete_and_size(store):
    await store.set("k", {"a": 1}, None)
    assert await store.size_bytes("k") == 10
    assert await store.delete("k") is True
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_unserialisable_value_is_backend_error(store):
    with pytest.raises(BackendError):
        await store.set("k", object(), 10)
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_sqlite_dump_and_reset(sqlite_db, clock):
    store = SQLiteEntryStore(sqlite_db, clock=clock)
    await store.open()
    await store.set("a", 1, 2)
    await store.set("b", "x", None)
    assert await store.dump() == {
        "a": {"data": 1, "expire": clock() + 2_000},
        "b": {"data": "x", "expire": None},
    }
    await store.close()

    reopened = SQLiteEntryStore(sqlite_db, clock=clock)
    await reopened.open()
    assert await reopened.get("b") is not None
    await reopened.close()

    wiped = SQLiteEntryStore(sqlite_db, clock=clock)
    await wiped.open(reset=True)
    assert await wiped.dump() == {}
    await wiped.close()


@pytest.mark.asyncio
async def test_sqlite_requires_open(sqlite_db):
    store = SQLiteEntryStore(sqlite_db)
    with pytest.raises(BackendError):
        await store.get("k")
