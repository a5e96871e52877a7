import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from app.cache import cache
from app.config import settings
from app.exceptions import AppError, app_error_handler, request_validation_handler
from app.middleware import TimingMiddleware
from app.routers import articles, comments, stats, users

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await cache.connect()
    yield
    # Shutdown
    await cache.disconnect()

app = FastAPI(
    title="Blog API",
    description="Articles, comments and image variants with a cached listing",
    version="1.0.0",
    lifespan=lifespan,
)

# Error rendering
app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag", "X-Response-Time"],
)

# Routers
app.include_router(articles.router)
app.include_router(comments.router)
app.include_router(users.router)
app.include_router(stats.router)

# Stored image variants
Path(settings.MEDIA_ROOT).mkdir(parents=True, exist_ok=True)
app.mount(settings.MEDIA_URL, StaticFiles(directory=settings.MEDIA_ROOT), name="media")

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
