"""
Test infrastructure for the Blog API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI, keeping the suite fast and self-contained.
- StaticPool forces all async tasks to share the same in-memory database
  connection, which is required because SQLite in-memory databases are
  connection-scoped; a new connection would see an empty database.
- ``get_db``, ``get_cache`` and ``get_storage`` are overridden so every
  request uses the test session factory, a fresh ``MemoryCache`` driven by
  a fake clock, and a ``LocalStorage`` rooted in the test's ``tmp_path``.
- All tables are created fresh before each test and dropped after.
"""
import io
import os
import struct
import tempfile
import zlib

# Must be set before the application modules read their settings.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="blog-media-"))

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from PIL import Image
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from app.cache import MemoryCache, get_cache
from app.database import Base, get_db
from app.main import app
from app.middleware import install_query_counter
from app.storage import LocalStorage, get_storage

# ---------------------------------------------------------------------------
# Test database engine — SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Cache / storage doubles
# ---------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock that only moves when a test says so."""

    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def memory_cache(clock: FakeClock) -> MemoryCache:
    test_cache = MemoryCache(clock=clock)
    app.dependency_overrides[get_cache] = lambda: test_cache
    yield test_cache
    app.dependency_overrides.pop(get_cache, None)


@pytest.fixture(autouse=True)
def media_storage(tmp_path) -> LocalStorage:
    test_storage = LocalStorage(tmp_path / "media", "/storage")
    app.dependency_overrides[get_storage] = lambda: test_storage
    yield test_storage
    app.dependency_overrides.pop(get_storage, None)


@pytest.fixture
def make_image():
    """
    Return a factory producing encoded image bytes.

    ``pad_to`` appends zero bytes after the end of the image stream so a
    test can hit an exact upload size; decoders ignore trailing data.
    """
    def _make(width: int = 640, height: int = 480, fmt: str = "PNG", mode: str = "RGB",
              pad_to: int | None = None) -> bytes:
        buffer = io.BytesIO()
        Image.new(mode, (width, height), color=(200, 80, 40) if mode == "RGB" else 0).save(buffer, format=fmt)
        data = buffer.getvalue()
        if pad_to is not None:
            assert len(data) <= pad_to
            data += b"\x00" * (pad_to - len(data))
        return data

    return _make


@pytest.fixture
def png_header_only():
    """
    Return a factory for a tiny PNG whose IHDR declares the given size but
    which carries no real pixel data.
    """
    def chunk(kind: bytes, body: bytes) -> bytes:
        return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body))

    def _make(width: int, height: int) -> bytes:
        ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
        return (
            b"\x89PNG\r\n\x1a\n"
            + chunk(b"IHDR", ihdr)
            + chunk(b"IDAT", zlib.compress(b""))
            + chunk(b"IEND", b"")
        )

    return _make


# ---------------------------------------------------------------------------
# Database / HTTP fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """
    Yield a live AsyncSession for tests that need to interact with the
    database directly (e.g. seeding data, asserting ORM state).
    """
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
