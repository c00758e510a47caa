"""
Regression tests for issues found during code review.

1. Unique constraint violations must return 409 (not 500)
2. Back-to-back edits must still get distinct, increasing history versions
3. Cached space trees and list pages must not outlive an article or like write
4. X-Query-Count header must report actual query count (not always 0)
5. CORS must not set allow_credentials=true with allow_origins=*
"""
import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Space, User
from app.schemas import ArticleCreate, ArticleUpdate
from app.services import article_service


async def _user_and_space(client: AsyncClient, username: str, code: str) -> tuple[int, int]:
    user_id = (await client.post("/api/v1/users", json={
        "username": username, "email": f"{username}@example.com",
    })).json()["id"]
    space_id = (await client.post("/api/v1/spaces", json={
        "code": code, "name": code, "user_id": user_id,
    })).json()["id"]
    return user_id, space_id


# ---------------------------------------------------------------------------
# 1. Unique constraint violations -> 409
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_duplicate_user_returns_409(async_client: AsyncClient):
    """Creating a user with an existing username returns 409, not 500."""
    payload = {"username": "dup_user", "email": "dup1@example.com"}
    resp1 = await async_client.post("/api/v1/users", json=payload)
    assert resp1.status_code == 201

    payload2 = {"username": "dup_user", "email": "dup2@example.com"}
    resp2 = await async_client.post("/api/v1/users", json=payload2)
    assert resp2.status_code == 409


@pytest.mark.asyncio
async def test_duplicate_email_returns_409(async_client: AsyncClient):
    """Creating a user with an existing email returns 409, not 500."""
    await async_client.post("/api/v1/users", json={
        "username": "emailuser1", "email": "same@example.com",
    })
    resp = await async_client.post("/api/v1/users", json={
        "username": "emailuser2", "email": "same@example.com",
    })
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_app_usable_after_conflict(async_client: AsyncClient):
    """A 409 rolls back its own session only; later requests still work."""
    user_id, _ = await _user_and_space(async_client, "afterdup", "dupspace")
    conflict = await async_client.post("/api/v1/spaces", json={
        "code": "dupspace", "name": "again", "user_id": user_id,
    })
    assert conflict.status_code == 409

    resp = await async_client.get("/api/v1/spaces/dupspace")
    assert resp.status_code == 200
    assert resp.json()["name"] == "dupspace"


# ---------------------------------------------------------------------------
# 2. History versions on rapid edits
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_rapid_updates_get_increasing_versions(db_session: AsyncSession, owner: User, space: Space):
    """Edits landing in the same millisecond must not reuse a version."""
    created = await article_service.create_article(
        db_session,
        ArticleCreate(title="Busy", content="v0", space_id=space.id, user_id=owner.id),
    )
    article_id = created.data["id"]

    for i in range(1, 6):
        result = await article_service.update_article(
            db_session, article_id, ArticleUpdate(user_id=owner.id, content=f"v{i}")
        )
        assert result.ok

    history = await article_service.get_article_history(db_session, article_id)
    versions = [int(h["version"]) for h in reversed(history)]
    assert len(versions) == 5
    assert versions == sorted(set(versions))


# ---------------------------------------------------------------------------
# 3. Tree cache invalidation
# ---------------------------------------------------------------------------

class _DictRedis:
    """Just enough of a Redis client for CacheManager's get/set/delete paths."""

    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value

    async def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)

    async def scan_iter(self, match):
        prefix = match.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key


@pytest.mark.asyncio
async def test_tree_cache_dropped_on_article_write(async_client: AsyncClient):
    from app.cache import cache

    cache._redis = _DictRedis()
    try:
        user_id, space_id = await _user_and_space(async_client, "cacher", "cached")
        first = (await async_client.get("/api/v1/spaces/cached/tree")).json()
        assert first["data"] is None
        assert "spaces:tree:cached" in cache._redis.data

        await async_client.post("/api/v1/articles", json={
            "title": "Fresh", "content": "x", "space_id": space_id, "user_id": user_id,
        })
        second = (await async_client.get("/api/v1/spaces/cached/tree")).json()
        assert [n["name"] for n in second["data"]] == ["Fresh"]
    finally:
        cache._redis = None


@pytest.mark.asyncio
async def test_like_ranking_not_served_stale(async_client: AsyncClient):
    from app.cache import cache

    cache._redis = _DictRedis()
    try:
        user_id, space_id = await _user_and_space(async_client, "ranker", "ranked")
        ids = {}
        for title in ("First", "Second"):
            ids[title] = (await async_client.post("/api/v1/articles", json={
                "title": title, "content": "x", "space_id": space_id, "user_id": user_id,
            })).json()["data"]["id"]

        params = {"order": "like"}
        before = (await async_client.get("/api/v1/articles", params=params)).json()
        assert [a["title"] for a in before["items"]] == ["Second", "First"]
        assert any(k.startswith("articles:list:like") for k in cache._redis.data)

        await async_client.post(f"/api/v1/articles/{ids['First']}/likes", json={"user_id": user_id})
        after = (await async_client.get("/api/v1/articles", params=params)).json()
        assert [(a["title"], a["like_count"]) for a in after["items"]] == [("First", 1), ("Second", 0)]

        await async_client.delete(f"/api/v1/articles/{ids['First']}/likes/{user_id}")
        unliked = (await async_client.get("/api/v1/articles", params=params)).json()
        assert [a["title"] for a in unliked["items"]] == ["Second", "First"]
    finally:
        cache._redis = None


# ---------------------------------------------------------------------------
# 4. X-Query-Count reports actual query count
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_query_count_header_for_article_list(async_client: AsyncClient):
    """
    X-Query-Count must reflect every SQL statement, including selectinload
    internals: COUNT + SELECT(joinedload author) + selectinload(tags).
    """
    user_id, space_id = await _user_and_space(async_client, "qctest", "qc")
    await async_client.post("/api/v1/articles", json={
        "title": "QC Article", "content": "Content", "space_id": space_id, "user_id": user_id,
    })

    resp = await async_client.get("/api/v1/articles")
    assert resp.status_code == 200
    assert int(resp.headers["x-query-count"]) >= 3


@pytest.mark.asyncio
async def test_query_count_header_for_space_tree(async_client: AsyncClient):
    """The tree is built from one article query, not one query per node."""
    user_id, space_id = await _user_and_space(async_client, "qctree", "qctree")
    parent_id = None
    for i in range(10):
        body = {"title": f"Level {i}", "content": "x", "space_id": space_id, "user_id": user_id}
        if parent_id is not None:
            body["parent_id"] = parent_id
        parent_id = (await async_client.post("/api/v1/articles", json=body)).json()["data"]["id"]

    resp = await async_client.get("/api/v1/spaces/qctree/tree")
    assert resp.status_code == 200
    count = int(resp.headers["x-query-count"])
    assert 0 < count <= 4, f"Tree read should not scale with depth, got {count} queries"


# ---------------------------------------------------------------------------
# 5. CORS headers
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cors_no_credentials_with_wildcard_origin(async_client: AsyncClient):
    """
    When allow_origins=["*"], the response must NOT include
    Access-Control-Allow-Credentials: true, per the CORS rules.
    """
    resp = await async_client.options(
        "/api/v1/articles",
        headers={
            "Origin": "https://example.com",
            "Access-Control-Request-Method": "GET",
        },
    )
    cred_header = resp.headers.get("access-control-allow-credentials", "").lower()
    assert cred_header != "true", (
        "CORS must not combine allow_origins=* with allow_credentials=true"
    )
