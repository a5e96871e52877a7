"""
Article endpoint tests — covers the CRUD lifecycle, multipart creation with
image variants, upload size limits, and the error payload shapes.

Users are inserted directly through the session (bcrypt hashing is slow
and not under test here); everything else goes through the API.
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Comment, User
from app.storage import LocalStorage

TWO_MB = 2 * 1024 * 1024
VARIANT_KEYS = {
    "thumbnail", "thumbnail_webp", "medium", "medium_webp", "large", "large_webp", "original",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(db: AsyncSession, name: str = "Alice", email: str = "alice@example.com") -> int:
    user = User(name=name, email=email, password_hash="not-a-real-hash")
    db.add(user)
    await db.commit()
    return user.id


async def _create_article(client: AsyncClient, author_id: int, title: str = "Hello", content: str = "Body",
                          image: bytes | None = None, filename: str = "photo.png"):
    files = {"image": (filename, image, "image/png")} if image is not None else None
    return await client.post(
        "/api/articles",
        data={"title": title, "content": content, "author_id": str(author_id)},
        files=files,
    )


# ---------------------------------------------------------------------------
# Infrastructure / health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_response_timing_headers(async_client: AsyncClient):
    """Every response carries X-Response-Time (in ms) and X-Query-Count."""
    resp = await async_client.get("/health")
    assert resp.headers["x-response-time"].endswith("ms")
    assert int(resp.headers["x-query-count"]) >= 0


# ---------------------------------------------------------------------------
# Create article
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_article_without_image(async_client: AsyncClient, db_session: AsyncSession):
    author_id = await _create_user(db_session)

    resp = await _create_article(async_client, author_id, title="First post", content="Hello world")
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["image_url"] is None
    assert body["images"] is None
    article = body["data"]
    assert article["title"] == "First post"
    assert article["content"] == "Hello world"
    assert article["author"] == "Alice"
    assert article["author_id"] == author_id
    assert article["published_at"] is not None
    assert article["comments"] == []


@pytest.mark.asyncio
async def test_create_article_with_image(
    async_client: AsyncClient, db_session: AsyncSession, make_image, media_storage: LocalStorage
):
    author_id = await _create_user(db_session)

    resp = await _create_article(async_client, author_id, image=make_image(1600, 900))
    assert resp.status_code == 201
    body = resp.json()
    assert set(body["images"]) == VARIANT_KEYS
    assert body["image_url"] == body["images"]["original"]
    assert body["image_url"].startswith("/storage/articles/")
    assert body["image_url"].endswith("_orig.png")
    assert body["data"]["image_path"].startswith("articles/")

    for url in body["images"].values():
        assert media_storage.exists(url.removeprefix("/storage/"))


@pytest.mark.asyncio
async def test_create_article_missing_fields_returns_field_errors(async_client: AsyncClient):
    resp = await async_client.post("/api/articles", data={"content": "No title"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["success"] is False
    assert "title" in body["errors"]
    assert "author_id" in body["errors"]


@pytest.mark.asyncio
async def test_create_article_title_too_long(async_client: AsyncClient, db_session: AsyncSession):
    author_id = await _create_user(db_session)
    resp = await _create_article(async_client, author_id, title="x" * 256)
    assert resp.status_code == 422
    assert "title" in resp.json()["errors"]


@pytest.mark.asyncio
async def test_create_article_unknown_author(async_client: AsyncClient):
    resp = await _create_article(async_client, author_id=9999)
    assert resp.status_code == 422
    assert "author_id" in resp.json()["errors"]


@pytest.mark.asyncio
async def test_create_article_rejects_non_image(async_client: AsyncClient, db_session: AsyncSession):
    author_id = await _create_user(db_session)
    resp = await _create_article(async_client, author_id, image=b"plain text, not pixels", filename="fake.png")
    assert resp.status_code == 422
    assert "image" in resp.json()["errors"]


@pytest.mark.asyncio
async def test_create_article_rejects_disallowed_extension(
    async_client: AsyncClient, db_session: AsyncSession, make_image
):
    author_id = await _create_user(db_session)
    resp = await _create_article(async_client, author_id, image=make_image(), filename="photo.bmp")
    assert resp.status_code == 422
    assert "image" in resp.json()["errors"]


@pytest.mark.asyncio
async def test_create_article_rejects_huge_pixel_dimensions(
    async_client: AsyncClient, db_session: AsyncSession, png_header_only
):
    author_id = await _create_user(db_session)
    resp = await _create_article(async_client, author_id, image=png_header_only(20000, 20000))

    assert resp.status_code == 422
    body = resp.json()
    assert body["success"] is False
    assert "image" in body["errors"]
    assert (await async_client.get("/api/articles")).json() == []


# ---------------------------------------------------------------------------
# Upload size limit
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_upload_one_byte_over_limit_returns_413(
    async_client: AsyncClient, db_session: AsyncSession, make_image
):
    author_id = await _create_user(db_session)

    resp = await _create_article(async_client, author_id, image=make_image(pad_to=TWO_MB + 1))
    assert resp.status_code == 413
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Request Entity Too Large"
    assert body["max_size"] == "2 MB"
    assert body["file_size"] == "2.00 MB"


@pytest.mark.asyncio
async def test_upload_exactly_at_limit_is_accepted(
    async_client: AsyncClient, db_session: AsyncSession, make_image
):
    author_id = await _create_user(db_session)

    resp = await _create_article(async_client, author_id, image=make_image(pad_to=TWO_MB))
    assert resp.status_code == 201
    assert set(resp.json()["images"]) == VARIANT_KEYS


@pytest.mark.asyncio
async def test_oversized_upload_is_413_even_when_fields_are_invalid(async_client: AsyncClient):
    """The size check runs before any other validation."""
    resp = await async_client.post(
        "/api/articles",
        data={"content": "missing title and author"},
        files={"image": ("big.png", b"\x00" * (TWO_MB + 1), "image/png")},
    )
    assert resp.status_code == 413


# ---------------------------------------------------------------------------
# Upload image for an existing article
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_upload_image_replaces_previous_files(
    async_client: AsyncClient, db_session: AsyncSession, make_image, media_storage: LocalStorage
):
    author_id = await _create_user(db_session)
    created = (await _create_article(async_client, author_id, image=make_image(400, 300))).json()
    article_id = created["data"]["id"]
    old_paths = [url.removeprefix("/storage/") for url in created["images"].values()]

    resp = await async_client.post(
        f"/api/articles/{article_id}/image",
        files={"image": ("new.jpg", make_image(900, 600, fmt="JPEG"), "image/jpeg")},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert set(body["images"]) == VARIANT_KEYS
    assert body["images"]["original"].endswith("_orig.jpg")

    assert not any(media_storage.exists(path) for path in old_paths)

    detail = (await async_client.get(f"/api/articles/{article_id}")).json()
    assert detail["image_url"] == body["images"]["original"]
    assert detail["images"] == body["images"]


@pytest.mark.asyncio
async def test_upload_image_unknown_article(async_client: AsyncClient, make_image):
    resp = await async_client.post(
        "/api/articles/99999/image",
        files={"image": ("a.png", make_image(), "image/png")},
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_upload_image_requires_file(async_client: AsyncClient, db_session: AsyncSession):
    author_id = await _create_user(db_session)
    article_id = (await _create_article(async_client, author_id)).json()["data"]["id"]

    resp = await async_client.post(f"/api/articles/{article_id}/image")
    assert resp.status_code == 422
    assert "image" in resp.json()["errors"]


@pytest.mark.asyncio
async def test_upload_image_over_limit(async_client: AsyncClient, db_session: AsyncSession, make_image):
    author_id = await _create_user(db_session)
    article_id = (await _create_article(async_client, author_id)).json()["data"]["id"]

    resp = await async_client.post(
        f"/api/articles/{article_id}/image",
        files={"image": ("a.png", make_image(pad_to=TWO_MB + 1), "image/png")},
    )
    assert resp.status_code == 413


# ---------------------------------------------------------------------------
# Show article
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_article_includes_comments_and_names(async_client: AsyncClient, db_session: AsyncSession):
    author_id = await _create_user(db_session)
    reader_id = await _create_user(db_session, name="Bob", email="bob@example.com")
    article_id = (await _create_article(async_client, author_id, content="Full body")).json()["data"]["id"]

    await async_client.post(f"/api/articles/{article_id}/comments", json={"user_id": reader_id, "content": "Nice"})

    resp = await async_client.get(f"/api/articles/{article_id}")
    assert resp.status_code == 200
    detail = resp.json()
    assert detail["content"] == "Full body"
    assert detail["author"] == "Alice"
    assert [c["user"] for c in detail["comments"]] == ["Bob"]
    assert detail["comments"][0]["content"] == "Nice"


@pytest.mark.asyncio
async def test_article_not_found(async_client: AsyncClient):
    resp = await async_client.get("/api/articles/99999")
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Update article
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_article_put(async_client: AsyncClient, db_session: AsyncSession):
    author_id = await _create_user(db_session)
    article_id = (await _create_article(async_client, author_id, title="Original")).json()["data"]["id"]

    resp = await async_client.put(
        f"/api/articles/{article_id}", json={"title": "Updated", "content": "New body"}
    )
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["title"] == "Updated"
    assert updated["content"] == "New body"


@pytest.mark.asyncio
async def test_update_article_patch_is_partial(async_client: AsyncClient, db_session: AsyncSession):
    author_id = await _create_user(db_session)
    article_id = (
        await _create_article(async_client, author_id, title="Keep me", content="Old body")
    ).json()["data"]["id"]

    resp = await async_client.patch(f"/api/articles/{article_id}", json={"content": "Only body"})
    assert resp.status_code == 200
    assert resp.json()["title"] == "Keep me"
    assert resp.json()["content"] == "Only body"


@pytest.mark.asyncio
async def test_update_article_ignores_other_fields(async_client: AsyncClient, db_session: AsyncSession):
    author_id = await _create_user(db_session)
    other_id = await _create_user(db_session, name="Mallory", email="mallory@example.com")
    article_id = (await _create_article(async_client, author_id)).json()["data"]["id"]

    resp = await async_client.patch(f"/api/articles/{article_id}", json={"author_id": other_id})
    assert resp.status_code == 200
    assert resp.json()["author_id"] == author_id


@pytest.mark.asyncio
async def test_update_article_empty_title_rejected(async_client: AsyncClient, db_session: AsyncSession):
    author_id = await _create_user(db_session)
    article_id = (await _create_article(async_client, author_id)).json()["data"]["id"]

    resp = await async_client.put(f"/api/articles/{article_id}", json={"title": ""})
    assert resp.status_code == 422
    assert "title" in resp.json()["errors"]


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["title", "content"])
async def test_update_article_null_field_rejected(
    async_client: AsyncClient, db_session: AsyncSession, field: str
):
    author_id = await _create_user(db_session)
    article_id = (
        await _create_article(async_client, author_id, title="Kept", content="Kept body")
    ).json()["data"]["id"]

    resp = await async_client.patch(f"/api/articles/{article_id}", json={field: None})
    assert resp.status_code == 422
    assert field in resp.json()["errors"]

    article = (await async_client.get(f"/api/articles/{article_id}")).json()
    assert article["title"] == "Kept"
    assert article["content"] == "Kept body"


@pytest.mark.asyncio
async def test_update_nonexistent_article(async_client: AsyncClient):
    resp = await async_client.put("/api/articles/99999", json={"title": "Ghost"})
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Delete article
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_article_removes_comments_and_files(
    async_client: AsyncClient, db_session: AsyncSession, make_image, media_storage: LocalStorage
):
    author_id = await _create_user(db_session)
    created = (await _create_article(async_client, author_id, image=make_image())).json()
    article_id = created["data"]["id"]
    paths = [url.removeprefix("/storage/") for url in created["images"].values()]
    await async_client.post(f"/api/articles/{article_id}/comments", json={"user_id": author_id, "content": "c"})

    resp = await async_client.delete(f"/api/articles/{article_id}")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Article deleted successfully"}

    assert (await async_client.get(f"/api/articles/{article_id}")).status_code == 404
    assert not any(media_storage.exists(path) for path in paths)
    remaining = await db_session.execute(
        select(func.count()).select_from(Comment).where(Comment.article_id == article_id)
    )
    assert remaining.scalar_one() == 0


@pytest.mark.asyncio
async def test_delete_nonexistent_article(async_client: AsyncClient):
    resp = await async_client.delete("/api/articles/99999")
    assert resp.status_code == 404
