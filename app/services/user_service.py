"""
User service — registration and lookup for the User aggregate.

Users are only referenced by articles and comments; they are fetched
without caching.  Passwords are stored as bcrypt hashes and never leave
this module.
"""
import bcrypt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import STATS_CACHE_KEY, CacheManager
from app.models import User
from app.schemas import UserCreate


def hash_password(raw_password: str) -> str:
    """Hash a raw password using bcrypt and return the utf-8 string."""
    return bcrypt.hashpw(raw_password.encode(), bcrypt.gensalt()).decode()


def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


async def get_users(db: AsyncSession) -> list[dict]:
    """Return all users ordered by creation date (newest first)."""
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    return [_user_to_dict(u) for u in result.scalars().all()]


async def get_user(db: AsyncSession, user_id: int) -> dict | None:
    user = await db.get(User, user_id)
    if user is None:
        return None
    return _user_to_dict(user)


async def create_user(db: AsyncSession, cache: CacheManager, data: UserCreate) -> dict:
    """
    Create a new user and return its serialised dict.

    Email uniqueness is enforced at the database level; the router is
    responsible for translating the ``IntegrityError`` into a 409.
    """
    user = User(
        name=data.name,
        email=data.email,
        password_hash=hash_password(data.password),
    )
    db.add(user)
    await db.commit()

    # Only the stats entry counts users.
    await cache.delete(STATS_CACHE_KEY)
    return _user_to_dict(user)
