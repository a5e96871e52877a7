from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from app.config import settings
from app.middleware import install_query_counter


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Single-file development database shared across request tasks.
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


# Module-level engine variable allows tests to override with a test engine.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG and settings.APP_ENV == "development",
    **_engine_options(settings.DATABASE_URL),
)

# Register the per-request SQL query counter on the production engine.
install_query_counter(engine)

# expire_on_commit=False: write services commit and then serialise the
# same instances.
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
