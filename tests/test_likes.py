from sqlalchemy.exc import OperationalError

from afrodite.config import config
from afrodite.models.resources import ResourceKind
from afrodite.state import get_state


async def _register(client):
    r = await client.post("/api/v1/accounts")
    data = r.json()
    return {"Authorization": f"Bearer {data['token']}"}, data["account_id"]


async def _likes_count(client, h):
    r = await client.get("/api/v1/resources/received_likes", headers=h)
    return r.json()


async def test_like_increments_receiver_count(client):
    h1, uid1 = await _register(client)
    h2, _ = await _register(client)
    h3, _ = await _register(client)

    assert (await client.post(f"/api/v1/likes/{uid1}", headers=h2)).status_code == 204
    assert (await client.post(f"/api/v1/likes/{uid1}", headers=h3)).status_code == 204

    assert await _likes_count(client, h1) == {"payload": {"count": 2}, "sync_version": 2}


async def test_like_count_seen_after_cache_loss(client):
    h1, uid1 = await _register(client)
    h2, _ = await _register(client)
    await _likes_count(client, h1)  # warm the cache

    await client.post(f"/api/v1/likes/{uid1}", headers=h2)
    get_state().cache.invalidate(uid1)
    assert await _likes_count(client, h1) == {"payload": {"count": 1}, "sync_version": 1}


async def test_like_errors(client):
    h1, uid1 = await _register(client)
    h2, _ = await _register(client)

    r = await client.post(f"/api/v1/likes/{uid1}", headers=h1)
    assert r.status_code == 400
    assert r.json()["detail"]["error"]["code"] == "INVALID_TARGET"

    r = await client.post("/api/v1/likes/9999", headers=h1)
    assert r.status_code == 404
    assert r.json()["detail"]["error"]["code"] == "ACCOUNT_NOT_FOUND"

    await client.post(f"/api/v1/likes/{uid1}", headers=h2)
    r = await client.post(f"/api/v1/likes/{uid1}", headers=h2)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "ALREADY_LIKED"
    assert (await _likes_count(client, h1))["payload"]["count"] == 1


async def test_like_not_stored_when_counter_update_fails(client, monkeypatch):
    h1, uid1 = await _register(client)
    h2, _ = await _register(client)
    accessor = get_state().sync.accessors[ResourceKind.RECEIVED_LIKES]

    def broken(row):
        raise OperationalError("SELECT account_resources", {}, Exception("disk I/O error"))

    monkeypatch.setattr(accessor, "_decode", broken)
    r = await client.post(f"/api/v1/likes/{uid1}", headers=h2)
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "DATABASE_ERROR"

    # The like was rolled back with the counter, so sending it again works
    monkeypatch.undo()
    assert (await client.post(f"/api/v1/likes/{uid1}", headers=h2)).status_code == 204
    assert await _likes_count(client, h1) == {"payload": {"count": 1}, "sync_version": 1}


async def test_like_rejected_during_data_reset(client):
    h1, uid1 = await _register(client)
    h2, _ = await _register(client)
    state = get_state()

    state.reset_state.try_begin()
    try:
        r = await client.post(f"/api/v1/likes/{uid1}", headers=h2)
    finally:
        state.reset_state.finish()
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "DATA_RESET_IN_PROGRESS"

    assert (await client.post(f"/api/v1/likes/{uid1}", headers=h2)).status_code == 204
    assert (await _likes_count(client, h1))["payload"]["count"] == 1


async def test_reset_count(client):
    h1, uid1 = await _register(client)
    h2, _ = await _register(client)

    # Nothing to clear: version stays put
    r = await client.post("/api/v1/likes/count/reset", headers=h1)
    assert r.json() == {"count": 0, "sync_version": 0}

    await client.post(f"/api/v1/likes/{uid1}", headers=h2)
    r = await client.post("/api/v1/likes/count/reset", headers=h1)
    assert r.json() == {"count": 0, "sync_version": 2}


async def test_received_likes_iterator(client):
    h1, uid1 = await _register(client)
    senders = []
    for _ in range(3):
        h, uid = await _register(client)
        await client.post(f"/api/v1/likes/{uid1}", headers=h)
        senders.append(uid)

    r = await client.post("/api/v1/likes/received/reset", headers=h1)
    assert r.status_code == 200
    session = r.json()["session_id"]

    r = await client.get("/api/v1/likes/received/next", headers=h1, params={"session": session, "page_size": 2})
    page = r.json()
    assert page["error_invalid_iterator_session_id"] is False
    assert [item["account_id"] for item in page["items"]] == [senders[2], senders[1]]
    assert all(isinstance(item["time"], int) for item in page["items"])

    r = await client.get("/api/v1/likes/received/next", headers=h1, params={"session": session, "page_size": 2})
    assert [item["account_id"] for item in r.json()["items"]] == [senders[0]]

    r = await client.get("/api/v1/likes/received/next", headers=h1, params={"session": session})
    assert r.json()["items"] == []


async def test_received_likes_iterator_invalid_session(client):
    h1, _ = await _register(client)
    r = await client.post("/api/v1/likes/received/reset", headers=h1)
    session = r.json()["session_id"]

    get_state().cache.clear()
    r = await client.get("/api/v1/likes/received/next", headers=h1, params={"session": session})
    assert r.status_code == 200
    assert r.json() == {"items": [], "error_invalid_iterator_session_id": True}


async def test_iterator_reset_api_limit(client, monkeypatch):
    monkeypatch.setattr(config.limits, "received_likes_iterator_reset_daily_max_count", 2)
    h1, _ = await _register(client)

    r = await client.post("/api/v1/likes/received/reset", headers=h1)
    assert r.status_code == 200
    r = await client.post("/api/v1/likes/received/reset", headers=h1)
    assert r.status_code == 429
    assert r.json()["error"]["code"] == "API_LIMIT_REACHED"
