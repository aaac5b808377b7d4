import asyncio
import secrets
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from afrodite.access import insert_default_resources
from afrodite.config import config
from afrodite.db.engine import get_session_factory
from afrodite.db.models import Account, News
from afrodite.models.resources import ResourceKind
from afrodite.news import publish_news
from afrodite.state import build_state, get_state


async def _register(client):
    r = await client.post("/api/v1/accounts")
    data = r.json()
    return {"Authorization": f"Bearer {data['token']}"}, data["account_id"]


async def _publish(client, h, title):
    r = await client.post("/api/v1/admin/news", headers=h, json={"title": title, "body": "..."})
    assert r.status_code == 201
    return r.json()


async def test_publish_increments_unread_count(client):
    admin, _ = await _register(client)
    user, _ = await _register(client)

    first = await _publish(client, admin, "One")
    second = await _publish(client, admin, "Two")
    assert second["publication_id"] == first["publication_id"] + 1

    r = await client.get("/api/v1/resources/unread_news", headers=user)
    assert r.json() == {"payload": {"count": 2}, "sync_version": 2}

    r = await client.post("/api/v1/news/count/reset", headers=user)
    assert r.json() == {"count": 0, "sync_version": 3}
    r = await client.post("/api/v1/news/count/reset", headers=user)
    assert r.json() == {"count": 0, "sync_version": 3}


async def test_news_iterator(client):
    admin, _ = await _register(client)
    for title in ("a", "b", "c"):
        await _publish(client, admin, title)

    r = await client.post("/api/v1/news/reset", headers=admin)
    session = r.json()["session_id"]
    await _publish(client, admin, "after reset")

    r = await client.get("/api/v1/news/next", headers=admin, params={"session": session, "page_size": 2})
    assert [item["title"] for item in r.json()["items"]] == ["c", "b"]
    r = await client.get("/api/v1/news/next", headers=admin, params={"session": session, "page_size": 2})
    assert [item["title"] for item in r.json()["items"]] == ["a"]
    r = await client.get("/api/v1/news/next", headers=admin, params={"session": session})
    assert r.json() == {"items": [], "error_invalid_iterator_session_id": False}


async def test_news_iterator_empty(client):
    h, _ = await _register(client)
    r = await client.post("/api/v1/news/reset", headers=h)
    session = r.json()["session_id"]
    r = await client.get("/api/v1/news/next", headers=h, params={"session": session})
    assert r.json()["items"] == []


async def test_stale_session_is_flagged(client):
    h, _ = await _register(client)
    old = (await client.post("/api/v1/news/reset", headers=h)).json()["session_id"]
    await client.post("/api/v1/news/reset", headers=h)

    r = await client.get("/api/v1/news/next", headers=h, params={"session": old})
    assert r.json()["error_invalid_iterator_session_id"] is True


async def test_next_page_api_limit(client, monkeypatch):
    monkeypatch.setattr(config.limits, "news_iterator_next_page_daily_max_count", 3)
    h, _ = await _register(client)
    session = (await client.post("/api/v1/news/reset", headers=h)).json()["session_id"]

    for _ in range(2):
        r = await client.get("/api/v1/news/next", headers=h, params={"session": session})
        assert r.status_code == 200
    r = await client.get("/api/v1/news/next", headers=h, params={"session": session})
    assert r.status_code == 429


async def test_publish_requires_admin(client):
    await _register(client)
    user, _ = await _register(client)
    r = await client.post("/api/v1/admin/news", headers=user, json={"title": "x", "body": "y"})
    assert r.status_code == 403
    assert r.json()["detail"]["error"]["code"] == "MISSING_PERMISSIONS"


async def test_publish_title_limit(client):
    admin, _ = await _register(client)
    title = "x" * (config.limits.news_title_max + 1)
    r = await client.post("/api/v1/admin/news", headers=admin, json={"title": title, "body": "y"})
    assert r.status_code == 422


async def _news_rows():
    async with get_session_factory()() as session:
        return (await session.execute(select(func.count()).select_from(News))).scalar_one()


async def test_publish_rejected_during_data_reset(client):
    admin, _ = await _register(client)
    state = get_state()

    state.reset_state.try_begin()
    try:
        r = await client.post("/api/v1/admin/news", headers=admin, json={"title": "x", "body": "y"})
    finally:
        state.reset_state.finish()
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "DATA_RESET_IN_PROGRESS"
    assert await _news_rows() == 0

    r = await client.get("/api/v1/resources/unread_news", headers=admin)
    assert r.json() == {"payload": {"count": 0}, "sync_version": 0}


async def test_news_not_stored_when_unread_update_fails(client, monkeypatch):
    admin, _ = await _register(client)
    accessor = get_state().sync.accessors[ResourceKind.UNREAD_NEWS]

    def broken(row):
        raise OperationalError("SELECT account_resources", {}, Exception("disk I/O error"))

    monkeypatch.setattr(accessor, "_decode", broken)
    r = await client.post("/api/v1/admin/news", headers=admin, json={"title": "x", "body": "y"})
    assert r.status_code == 503
    monkeypatch.undo()

    assert await _news_rows() == 0
    first = await _publish(client, admin, "x")
    assert first["publication_id"] == 1


async def test_concurrent_publishes_get_distinct_ids(file_db):
    accounts = []
    async with file_db() as session:
        for _ in range(2):
            account = Account(token=secrets.token_urlsafe(16), admin=False, created_at=datetime.now(timezone.utc))
            session.add(account)
            await session.flush()
            insert_default_resources(session, account.id)
            accounts.append(account.id)
        await session.commit()
    sync = build_state(file_db, config).sync

    published = await asyncio.gather(*[publish_news(sync, accounts[0], f"n{i}", "...") for i in range(4)])
    assert sorted(news.publication_id for news in published) == [1, 2, 3, 4]

    for account_id in accounts:
        value = await sync.read(account_id, ResourceKind.UNREAD_NEWS)
        assert (value.payload.count, value.version.value) == (4, 4)
