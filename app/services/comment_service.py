"""
Comment service — CRUD for comments attached to an Article.

Every write commits and then invalidates the article caches: the listing
carries a per-article comment count and the stats entry a global one.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app.cache import CacheManager
from app.exceptions import ValidationFailed
from app.models import Article, Comment, User
from app.schemas import CommentCreate, CommentUpdate


def comment_to_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "article_id": comment.article_id,
        "user_id": comment.user_id,
        "user": comment.user.name if comment.user else None,
        "content": comment.content,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
    }


async def _load_comment(db: AsyncSession, comment_id: int) -> Comment | None:
    q = select(Comment).where(Comment.id == comment_id).options(joinedload(Comment.user))
    return (await db.execute(q)).unique().scalar_one_or_none()


async def list_comments(db: AsyncSession, article_id: int) -> list[dict] | None:
    """
    Return the comments of *article_id*, oldest first, or None when the
    article does not exist.
    """
    if await db.get(Article, article_id) is None:
        return None
    q = (
        select(Comment)
        .where(Comment.article_id == article_id)
        .options(joinedload(Comment.user))
        .order_by(Comment.created_at, Comment.id)
    )
    result = await db.execute(q)
    return [comment_to_dict(c) for c in result.unique().scalars().all()]


async def add_comment(
    db: AsyncSession,
    cache: CacheManager,
    article_id: int,
    data: CommentCreate,
) -> dict | None:
    """
    Append a new comment to the article identified by *article_id*.

    Returns the serialised comment, or None when the article does not
    exist.  An unknown ``user_id`` is a validation failure.
    """
    if await db.get(Article, article_id) is None:
        return None
    user = await db.get(User, data.user_id)
    if user is None:
        raise ValidationFailed({"user_id": ["The selected user id is invalid."]})

    comment = Comment(content=data.content, article_id=article_id, user=user)
    db.add(comment)
    await db.commit()

    await cache.invalidate_articles()
    return comment_to_dict(comment)


async def update_comment(
    db: AsyncSession,
    cache: CacheManager,
    comment_id: int,
    data: CommentUpdate,
) -> dict | None:
    comment = await _load_comment(db, comment_id)
    if comment is None:
        return None

    comment.content = data.content
    await db.commit()

    await cache.invalidate_articles()
    return comment_to_dict(comment)


async def delete_comment(db: AsyncSession, cache: CacheManager, comment_id: int) -> bool:
    comment = await db.get(Comment, comment_id)
    if comment is None:
        return False

    await db.delete(comment)
    await db.commit()

    await cache.invalidate_articles()
    return True
