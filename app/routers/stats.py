from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.cache import CacheManager, get_cache
from app.database import get_db
from app.schemas import StatsResponse
from app.services import stats_service

router = APIRouter(prefix="/api/stats", tags=["stats"])

@router.get("", response_model=StatsResponse)
async def get_stats(
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    return await stats_service.get_stats(db, cache)
