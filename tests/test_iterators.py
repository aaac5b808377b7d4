import asyncio

import pytest

from afrodite.cache import CacheEntryStore
from afrodite.config import config
from afrodite.errors import InvalidSession
from afrodite.iterators import IteratorKind, IteratorService


class FakeSource:
    def __init__(self, keys=()):
        self.keys = sorted(keys)

    def append(self, key):
        self.keys.append(key)

    async def head(self, account_id):
        return self.keys[-1] if self.keys else None

    async def page(self, account_id, id_at_reset, before, limit):
        await asyncio.sleep(0)
        keys = [
            k for k in reversed(self.keys)
            if k <= id_at_reset and (before is None or k < before)
        ]
        return [(k, f"item-{k}") for k in keys[:limit]]


@pytest.fixture()
def source():
    return FakeSource(range(1, 11))


@pytest.fixture()
def cache():
    return CacheEntryStore()


@pytest.fixture()
def service(cache, source):
    return IteratorService(cache, {IteratorKind.NEWS: source}, config)


async def test_pages_newest_first_without_repeats(service):
    session = await service.reset(1, IteratorKind.NEWS)
    pages = []
    while True:
        page = await service.next_page(1, IteratorKind.NEWS, session, page_size=4)
        if not page:
            break
        pages.append(page)
    assert pages == [
        ["item-10", "item-9", "item-8", "item-7"],
        ["item-6", "item-5", "item-4", "item-3"],
        ["item-2", "item-1"],
    ]
    # Exhausted sessions keep returning empty pages
    assert await service.next_page(1, IteratorKind.NEWS, session) == []


async def test_items_added_after_reset_are_hidden(service, source):
    session = await service.reset(1, IteratorKind.NEWS)
    source.append(11)
    page = await service.next_page(1, IteratorKind.NEWS, session, page_size=2)
    assert page == ["item-10", "item-9"]

    session = await service.reset(1, IteratorKind.NEWS)
    page = await service.next_page(1, IteratorKind.NEWS, session, page_size=2)
    assert page == ["item-11", "item-10"]


async def test_empty_log(cache):
    service = IteratorService(cache, {IteratorKind.NEWS: FakeSource()}, config)
    session = await service.reset(1, IteratorKind.NEWS)
    assert await service.next_page(1, IteratorKind.NEWS, session) == []


async def test_reset_invalidates_previous_session(service):
    old = await service.reset(1, IteratorKind.NEWS)
    new = await service.reset(1, IteratorKind.NEWS)
    assert old != new
    with pytest.raises(InvalidSession):
        await service.next_page(1, IteratorKind.NEWS, old)
    assert await service.next_page(1, IteratorKind.NEWS, new, page_size=1) == ["item-10"]


async def test_session_lost_with_cache(service, cache):
    session = await service.reset(1, IteratorKind.NEWS)
    cache.clear()
    with pytest.raises(InvalidSession):
        await service.next_page(1, IteratorKind.NEWS, session)


async def test_session_without_reset(service):
    with pytest.raises(InvalidSession):
        await service.next_page(1, IteratorKind.NEWS, 12345)


async def test_sessions_are_per_account(service):
    session = await service.reset(1, IteratorKind.NEWS)
    with pytest.raises(InvalidSession):
        await service.next_page(2, IteratorKind.NEWS, session)


async def test_page_size_is_clamped(service, monkeypatch):
    monkeypatch.setattr(config.limits, "page_limit_iterator", 3)
    session = await service.reset(1, IteratorKind.NEWS)
    page = await service.next_page(1, IteratorKind.NEWS, session, page_size=100)
    assert page == ["item-10", "item-9", "item-8"]


async def test_default_page_size(service, monkeypatch):
    monkeypatch.setattr(config.limits, "default_page_size", 2)
    session = await service.reset(1, IteratorKind.NEWS)
    assert len(await service.next_page(1, IteratorKind.NEWS, session)) == 2


async def test_concurrent_pages_do_not_overlap(service):
    session = await service.reset(1, IteratorKind.NEWS)
    pages = await asyncio.gather(*[
        service.next_page(1, IteratorKind.NEWS, session, page_size=3) for _ in range(4)
    ])
    seen = [item for page in pages for item in page]
    assert sorted(seen) == sorted(f"item-{k}" for k in range(1, 11))
    assert len(seen) == len(set(seen))
