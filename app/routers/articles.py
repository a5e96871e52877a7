from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, Request, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from app.cache import CacheManager, get_cache
from app.config import settings
from app.database import get_db
from app.dependencies import PaginationParams
from app.etag import etag_matches, make_etag, render_json
from app.exceptions import ValidationFailed, validate_or_fail
from app.schemas import (
    ArticleCreate, ArticleCreated, ArticleDetail, ArticleSummary, ArticleUpdate,
    CommentCreate, CommentResponse, ImageUploaded, MessageResponse,
)
from app.services import article_service, comment_service
from app.services.image_service import read_upload
from app.storage import LocalStorage, get_storage

router = APIRouter(prefix="/api/articles", tags=["articles"])


def _has_file(upload: UploadFile | None) -> bool:
    return upload is not None and bool(upload.filename)


@router.get(
    "",
    response_model=list[ArticleSummary],
    responses={304: {"description": "Not Modified (If-None-Match matched the ETag)"}},
)
async def list_articles(
    request: Request,
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    storage: LocalStorage = Depends(get_storage),
):
    payload = await article_service.get_article_list(
        db, cache, storage, pagination.page, pagination.per_page
    )
    body = render_json(payload)
    etag = make_etag(body)
    headers = {"ETag": etag, "Cache-Control": settings.LIST_CACHE_CONTROL}
    if etag_matches(request.headers.get("if-none-match"), etag):
        return Response(status_code=304, headers=headers)
    return Response(body, media_type="application/json", headers=headers)

@router.get("/search", response_model=list[ArticleSummary])
async def search_articles(
    q: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
):
    return await article_service.search_articles(db, storage, q)

@router.get("/{article_id}", response_model=ArticleDetail)
async def get_article(
    article_id: int,
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
):
    article = await article_service.get_article(db, storage, article_id)
    if not article:
        raise HTTPException(status_code=404, detail="Article not found")
    return article

@router.post("", status_code=201, response_model=ArticleCreated)
async def create_article(
    title: str | None = Form(None),
    content: str | None = Form(None),
    author_id: str | None = Form(None),
    image: UploadFile | None = File(None),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    storage: LocalStorage = Depends(get_storage),
):
    # Size is checked before field validation: an oversized upload is a 413
    # whatever else is wrong with the request.
    upload = await read_upload(image) if _has_file(image) else None
    data = validate_or_fail(ArticleCreate, title=title, content=content, author_id=author_id)
    return await article_service.create_article(db, cache, storage, data, upload)

@router.post("/{article_id}/image", response_model=ImageUploaded)
async def upload_image(
    article_id: int,
    image: UploadFile | None = File(None),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    storage: LocalStorage = Depends(get_storage),
):
    if not _has_file(image):
        raise ValidationFailed({"image": ["The image field is required."]})
    upload = await read_upload(image)
    images = await article_service.attach_image(db, cache, storage, article_id, upload)
    if images is None:
        raise HTTPException(status_code=404, detail="Article not found")
    return {"success": True, "message": "Image optimized and variants generated", "images": images}

@router.api_route("/{article_id}", methods=["PUT", "PATCH"], response_model=ArticleDetail)
async def update_article(
    article_id: int,
    data: ArticleUpdate = Body(...),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    storage: LocalStorage = Depends(get_storage),
):
    article = await article_service.update_article(db, cache, storage, article_id, data)
    if not article:
        raise HTTPException(status_code=404, detail="Article not found")
    return article

@router.delete("/{article_id}", response_model=MessageResponse)
async def delete_article(
    article_id: int,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    storage: LocalStorage = Depends(get_storage),
):
    deleted = await article_service.delete_article(db, cache, storage, article_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Article not found")
    return {"message": "Article deleted successfully"}

@router.get("/{article_id}/comments", response_model=list[CommentResponse])
async def list_comments(article_id: int, db: AsyncSession = Depends(get_db)):
    comments = await comment_service.list_comments(db, article_id)
    if comments is None:
        raise HTTPException(status_code=404, detail="Article not found")
    return comments

@router.post("/{article_id}/comments", status_code=201, response_model=CommentResponse)
async def add_comment(
    article_id: int,
    data: CommentCreate,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    comment = await comment_service.add_comment(db, cache, article_id, data)
    if not comment:
        raise HTTPException(status_code=404, detail="Article not found")
    return comment
