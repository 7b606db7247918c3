"""Tests for the persistent reading cache and its stores."""

import pytest

from glucolink.datasource.libreview import parse_graph_data
from glucolink.exceptions import CacheError
from glucolink.services.cache import CACHE_KEY, PersistentCache
from glucolink.services.storage import FileStore, MemoryStore
from tests.conftest import make_items


class BrokenStore(MemoryStore):
    async def get(self, key):
        raise OSError("disk unreadable")

    async def set(self, key, value):
        raise OSError("disk full")


@pytest.fixture
def readings():
    return parse_graph_data(make_items(5))


@pytest.fixture
def cache(store, clock) -> PersistentCache:
    return PersistentCache(store, clock=clock)


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self, cache):
        assert await cache.read() is None
        assert cache.get_stats().misses == 1

    @pytest.mark.asyncio
    async def test_write_then_read(self, cache, readings, clock):
        assert await cache.write(readings) is True

        entry = await cache.read()

        assert list(entry.readings) == readings
        assert entry.fetched_at == clock.now()
        assert entry.age(clock.now()) == 0

    @pytest.mark.asyncio
    async def test_document_layout(self, cache, store, readings, clock):
        await cache.write(readings)

        document = await store.get(CACHE_KEY)

        assert set(document) == {"readings", "timestamp"}
        assert document["timestamp"] == int(clock.now() * 1000)
        assert len(document["readings"]) == 5

    @pytest.mark.asyncio
    async def test_empty_write_rejected(self, cache):
        with pytest.raises(CacheError):
            await cache.write([])
        assert await cache.read() is None

    @pytest.mark.asyncio
    async def test_older_entry_never_overwrites_newer(self, cache, readings, clock):
        await cache.write(readings, fetched_at=clock.now())

        kept = await cache.write(readings[:2], fetched_at=clock.now() - 60)

        assert kept is False
        entry = await cache.read()
        assert len(entry.readings) == 5
        assert cache.get_stats().rejected == 1

    @pytest.mark.asyncio
    async def test_newer_entry_replaces_whole_value(self, cache, readings, clock):
        await cache.write(readings)
        clock.advance(60)

        await cache.write(readings[:2])

        entry = await cache.read()
        assert len(entry.readings) == 2
        assert entry.fetched_at == clock.now()

    @pytest.mark.asyncio
    async def test_future_entry_is_replaced_after_clock_step(
        self, cache, readings, clock
    ):
        await cache.write(readings)
        clock.step_wall_clock(-3600)

        entry = await cache.read()
        assert not entry.is_fresh(clock.now(), 240)
        assert not entry.is_within(clock.now(), 3 * 240)

        assert await cache.write(readings[:2]) is True
        assert len((await cache.read()).readings) == 2


class TestClear:
    @pytest.mark.asyncio
    async def test_clear_removes_entry(self, cache, readings):
        await cache.write(readings)

        await cache.clear()

        assert await cache.read() is None

    @pytest.mark.asyncio
    async def test_clear_when_empty(self, cache):
        await cache.clear()
        assert await cache.read() is None


class TestFailures:
    @pytest.mark.asyncio
    async def test_corrupt_document(self, cache, store):
        await store.set(CACHE_KEY, {"readings": [{"bogus": 1}], "timestamp": 0})

        with pytest.raises(CacheError):
            await cache.read()

    @pytest.mark.asyncio
    async def test_store_failures_become_cache_errors(self, readings, clock):
        cache = PersistentCache(BrokenStore(), clock=clock)

        with pytest.raises(CacheError):
            await cache.read()
        with pytest.raises(CacheError):
            await cache.write(readings)


class TestFileStore:
    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path, readings, clock):
        first = FileStore(tmp_path)
        await PersistentCache(first, clock=clock).write(readings)
        await first.close()

        second = FileStore(tmp_path)
        entry = await PersistentCache(second, clock=clock).read()
        await second.close()

        assert list(entry.readings) == readings
        assert entry.fetched_at == clock.now()

    @pytest.mark.asyncio
    async def test_missing_and_delete(self, tmp_path):
        store = FileStore(tmp_path / "nested")

        assert await store.get("absent") is None
        assert await store.delete("absent") is False

        await store.set("present", {"a": 1})
        assert await store.get("present") == {"a": 1}
        assert await store.delete("present") is True
        assert await store.get("present") is None
        await store.close()

    @pytest.mark.asyncio
    async def test_values_come_back_as_plain_json_types(self, tmp_path):
        store = FileStore(tmp_path)

        await store.set("doc", {"values": (1, 2), "when": 1.5})

        assert await store.get("doc") == {"values": [1, 2], "when": 1.5}
        await store.close()

    @pytest.mark.asyncio
    async def test_fetcher_close_releases_store(self, tmp_path, make_fetcher):
        store = FileStore(tmp_path)
        fetcher = make_fetcher(store_override=store)
        await fetcher.get_readings()

        await fetcher.close()

        assert store._cache is None
        reopened = FileStore(tmp_path)
        assert await reopened.get(CACHE_KEY) is not None
        await reopened.close()
