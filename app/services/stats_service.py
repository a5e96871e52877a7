"""
Stats service — aggregate counters cached under ``api.stats``.

The cached part holds only database counts; cache hit/miss figures are
read live on every request so they never go stale.
"""
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import STATS_CACHE_KEY, CacheManager
from app.config import settings
from app.models import Article, Comment, User


async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def get_stats(db: AsyncSession, cache: CacheManager) -> dict:
    counts = await cache.get(STATS_CACHE_KEY)
    if counts is None:
        total_articles = await _count(db, Article)
        total_comments = await _count(db, Comment)
        counts = {
            "total_articles": total_articles,
            "total_comments": total_comments,
            "total_users": await _count(db, User),
            "avg_comments_per_article": (
                round(total_comments / total_articles, 2) if total_articles > 0 else 0.0
            ),
        }
        await cache.set(STATS_CACHE_KEY, counts, ttl=settings.CACHE_TTL_STATS)
    return {**counts, "cache_info": cache.stats}
