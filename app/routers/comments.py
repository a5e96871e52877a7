from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from app.cache import CacheManager, get_cache
from app.database import get_db
from app.schemas import CommentResponse, CommentUpdate, MessageResponse
from app.services import comment_service

router = APIRouter(prefix="/api/comments", tags=["comments"])

@router.api_route("/{comment_id}", methods=["PUT", "PATCH"], response_model=CommentResponse)
async def update_comment(
    comment_id: int,
    data: CommentUpdate,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    comment = await comment_service.update_comment(db, cache, comment_id, data)
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment

@router.delete("/{comment_id}", response_model=MessageResponse)
async def delete_comment(
    comment_id: int,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    deleted = await comment_service.delete_comment(db, cache, comment_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Comment not found")
    return {"message": "Comment deleted successfully"}
