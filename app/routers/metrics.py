from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.models import Article, ArticleHistory, ArticleLike, ArticleView, Space, User
from app.schemas import MetricsResponse
from app.cache import cache

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])

async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()

@router.get("", response_model=MetricsResponse)
async def get_metrics(db: AsyncSession = Depends(get_db)):
    total_device_views = (
        await db.execute(select(func.coalesce(func.sum(ArticleView.view_count), 0)))
    ).scalar_one()

    return MetricsResponse(
        total_articles=await _count(db, Article),
        total_spaces=await _count(db, Space),
        total_users=await _count(db, User),
        total_history=await _count(db, ArticleHistory),
        total_likes=await _count(db, ArticleLike),
        total_device_views=total_device_views,
        cache_info=cache.stats,
    )
