"""
Article service — business logic for the Article aggregate.

Design notes
------------
- The paginated listing goes through the cache-aside pattern (cache →
  fallback to DB).  Keys encode page and page size; every list entry is
  written under the ``articles_list`` tag so writes can drop them as a
  group.
- Cache and storage are passed in explicitly by the router layer (see
  ``app.cache.get_cache`` / ``app.storage.get_storage``).
- Write functions commit their own transaction and only then call
  ``cache.invalidate_articles()``, so a concurrent reader can never
  repopulate the cache with uncommitted state.  Image files that belong
  to a removed or replaced article are deleted after the commit.
- Eager loading via ``joinedload`` (author, comment user) and
  ``selectinload`` (comments) keeps the detail view to a fixed number of
  queries.  ``unique()`` is required after any query that uses
  ``joinedload``.
"""
import logging
import time
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload
from starlette.concurrency import run_in_threadpool

from app.cache import ARTICLE_LIST_TAG, CacheManager
from app.config import settings
from app.dependencies import clamp_pagination
from app.exceptions import ValidationFailed
from app.middleware import elapsed_ms
from app.models import Article, Comment, User
from app.schemas import ArticleCreate, ArticleUpdate
from app.services.comment_service import comment_to_dict
from app.services.image_service import ImageOptimizer
from app.storage import LocalStorage

logger = logging.getLogger(__name__)

LIST_CACHE_PREFIX = "articles.index.v2"
CONTENT_PREVIEW_LENGTH = 200


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def list_cache_key(page: int, per_page: int) -> str:
    return f"{LIST_CACHE_PREFIX}:p={page}:pp={per_page}"


def truncate_content(content: str | None, limit: int = CONTENT_PREVIEW_LENGTH) -> str:
    """Cut *content* to *limit* characters, appending ``...`` when shortened."""
    content = content or ""
    if len(content) > limit:
        return content[:limit] + "..."
    return content


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _summary_query():
    """
    SELECT article, author name and comment count, newest published first.

    ``created_at`` breaks ties between identical publication times and the
    primary key keeps the order total.
    """
    comments_count = (
        select(func.count(Comment.id))
        .where(Comment.article_id == Article.id)
        .correlate(Article)
        .scalar_subquery()
        .label("comments_count")
    )
    return (
        select(Article, User.name.label("author_name"), comments_count)
        .outerjoin(User, User.id == Article.author_id)
        .order_by(
            Article.published_at.desc().nulls_last(),
            Article.created_at.desc(),
            Article.id.desc(),
        )
    )


def _exact_contains(column, term: str, dialect: str):
    """
    Substring predicate that compares bytes exactly.

    Case and accents are significant: ``Café`` matches neither ``cafe``
    nor ``CAFÉ``.  Each dialect needs its own binary comparison.
    """
    if dialect == "sqlite":
        return func.instr(column, term) > 0
    if dialect in ("mysql", "mariadb"):
        return column.collate("utf8mb4_bin").contains(term, autoescape=True)
    if dialect == "postgresql":
        return column.collate("C").contains(term, autoescape=True)
    return column.contains(term, autoescape=True)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _summary_to_dict(article: Article, author_name: str | None, comments_count: int, storage: LocalStorage) -> dict:
    return {
        "id": article.id,
        "title": article.title,
        "content": truncate_content(article.content),
        "author": author_name,
        "comments_count": comments_count or 0,
        "published_at": _iso(article.published_at),
        "created_at": _iso(article.created_at),
        "image_url": storage.url(article.image_path),
    }


def _image_urls(versions: dict | None, storage: LocalStorage) -> dict[str, str] | None:
    if not versions:
        return None
    return {label: storage.url(path) for label, path in versions.items()}


def _article_detail_to_dict(article: Article, storage: LocalStorage) -> dict:
    author = article.author
    return {
        "id": article.id,
        "title": article.title,
        "content": article.content,
        "author": author.name if author else None,
        "author_id": article.author_id,
        "image_path": article.image_path,
        "image_url": storage.url(article.image_path),
        "images": _image_urls(article.image_versions, storage),
        "published_at": _iso(article.published_at),
        "created_at": _iso(article.created_at),
        "comments": [comment_to_dict(c) for c in article.comments],
    }


async def _load_article(db: AsyncSession, article_id: int) -> Article | None:
    q = (
        select(Article)
        .where(Article.id == article_id)
        .options(
            joinedload(Article.author),
            selectinload(Article.comments).joinedload(Comment.user),
        )
    )
    result = await db.execute(q)
    return result.unique().scalar_one_or_none()


async def _generate_variants(storage: LocalStorage, upload: tuple[bytes, str | None]) -> dict[str, str]:
    data, filename = upload
    return await run_in_threadpool(ImageOptimizer(storage).optimize, data, filename)


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_article_list(
    db: AsyncSession,
    cache: CacheManager,
    storage: LocalStorage,
    page: int = 1,
    per_page: int = 20,
) -> list[dict]:
    """
    Return one page of article summaries, served from the cache when
    possible.

    A miss issues a single SELECT (author join + correlated comment
    count) and stores the serialised page for ``CACHE_TTL_LIST`` seconds
    under the ``articles_list`` tag.  A hit returns the cached payload
    unchanged.
    """
    page, per_page = clamp_pagination(page, per_page)
    cache_key = list_cache_key(page, per_page)
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    started = time.perf_counter()
    q = _summary_query().offset((page - 1) * per_page).limit(per_page)
    rows = (await db.execute(q)).all()
    payload = [
        _summary_to_dict(article, author_name, comments_count, storage)
        for article, author_name, comments_count in rows
    ]
    logger.info(
        "Article list built: page=%d per_page=%d rows=%d db_ms=%s",
        page, per_page, len(payload), elapsed_ms(started),
    )

    await cache.set(cache_key, payload, ttl=settings.CACHE_TTL_LIST, tags=[ARTICLE_LIST_TAG])
    return payload


async def search_articles(db: AsyncSession, storage: LocalStorage, query: str | None) -> list[dict]:
    """
    Return every article whose title or content contains *query* as an
    exact, case- and accent-sensitive substring.  Not paginated, not cached.
    """
    if not query:
        return []

    dialect = db.get_bind().dialect.name
    q = _summary_query().where(
        _exact_contains(Article.title, query, dialect)
        | _exact_contains(Article.content, query, dialect)
    )
    rows = (await db.execute(q)).all()
    return [
        _summary_to_dict(article, author_name, comments_count, storage)
        for article, author_name, comments_count in rows
    ]


async def get_article(db: AsyncSession, storage: LocalStorage, article_id: int) -> dict | None:
    """Return the full article with author and comments, or None."""
    article = await _load_article(db, article_id)
    if article is None:
        return None
    return _article_detail_to_dict(article, storage)


async def create_article(
    db: AsyncSession,
    cache: CacheManager,
    storage: LocalStorage,
    data: ArticleCreate,
    upload: tuple[bytes, str | None] | None = None,
) -> dict:
    """
    Create and publish an article, generating image variants first when
    *upload* is given.

    Raises ``ValidationFailed`` when the author does not exist.  Variants
    written for an article that then fails to commit are removed again.
    """
    author = await db.get(User, data.author_id)
    if author is None:
        raise ValidationFailed({"author_id": ["The selected author id is invalid."]})

    versions = await _generate_variants(storage, upload) if upload else None

    article = Article(
        title=data.title,
        content=data.content,
        author=author,
        image_path=versions["original"] if versions else None,
        image_versions=versions,
        published_at=datetime.now(timezone.utc),
    )
    db.add(article)
    try:
        await db.commit()
    except Exception:
        if versions:
            storage.delete(*versions.values())
        raise

    await cache.invalidate_articles()
    logger.info("Article %d created by user %d", article.id, author.id)
    return {
        "success": True,
        "data": _article_detail_to_dict(article, storage),
        "image_url": storage.url(article.image_path),
        "images": _image_urls(versions, storage),
    }


async def attach_image(
    db: AsyncSession,
    cache: CacheManager,
    storage: LocalStorage,
    article_id: int,
    upload: tuple[bytes, str | None],
) -> dict[str, str] | None:
    """
    Generate variants for *upload* and make them the article's image,
    replacing (and deleting) any previous one.

    Returns the label → URL mapping, or None when the article does not exist.
    """
    article = await db.get(Article, article_id)
    if article is None:
        return None

    versions = await _generate_variants(storage, upload)
    previous = article.stored_files()

    article.image_path = versions["original"]
    article.image_versions = versions
    try:
        await db.commit()
    except Exception:
        storage.delete(*versions.values())
        raise

    storage.delete(*previous)
    await cache.invalidate_articles()
    return _image_urls(versions, storage)


async def update_article(
    db: AsyncSession,
    cache: CacheManager,
    storage: LocalStorage,
    article_id: int,
    data: ArticleUpdate,
) -> dict | None:
    """
    Partially update title and/or content.

    Only fields explicitly present in the payload are modified
    (``model_dump(exclude_unset=True)``).  Returns None when the article
    does not exist.
    """
    article = await _load_article(db, article_id)
    if article is None:
        return None

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(article, field, value)

    await db.commit()
    await cache.invalidate_articles()
    return _article_detail_to_dict(article, storage)


async def delete_article(
    db: AsyncSession,
    cache: CacheManager,
    storage: LocalStorage,
    article_id: int,
) -> bool:
    """
    Delete the article, its comments and its stored image files.

    Returns True on success, False when the article does not exist.
    """
    article = await db.get(Article, article_id)
    if article is None:
        return False

    files = article.stored_files()
    await db.execute(delete(Comment).where(Comment.article_id == article_id))
    await db.delete(article)
    await db.commit()

    storage.delete(*files)
    await cache.invalidate_articles()
    logger.info("Article %d deleted (%d stored file(s))", article_id, len(files))
    return True
