from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.dependencies import OrderedPaginationParams, PaginationParams
from app.results import result_response
from app.schemas import (
    ArticleCreate,
    ArticleDetail,
    ArticleHistoryResponse,
    ArticleUpdate,
    CounterResponse,
    LikeCreate,
    LikeStatusResponse,
    PaginatedResponse,
    ViewCreate,
    ViewTrendPoint,
)
from app.services import article_service, counter_service
from app.services.counter_service import UnknownUserError

router = APIRouter(prefix="/api/v1/articles", tags=["articles"])

@router.get("", response_model=PaginatedResponse)
async def list_articles(
    pagination: OrderedPaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.get_articles(
        db, pagination.page, pagination.page_size, pagination.order, pagination.sort_order
    )

@router.get("/search", response_model=PaginatedResponse)
async def search_articles(
    tag_id: int | None = Query(None),
    title: str | None = Query(None, max_length=200),
    space_id: int | None = Query(None),
    user_id: int | None = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.search_articles(
        db, tag_id, title, space_id, user_id, pagination.page, pagination.page_size
    )

@router.get("/{article_id}", response_model=ArticleDetail)
async def get_article(article_id: int, db: AsyncSession = Depends(get_db)):
    article = await article_service.get_article(db, article_id)
    if not article:
        raise HTTPException(status_code=404, detail="Article not found")
    return article

@router.get("/{article_id}/info", response_model=ArticleDetail)
async def get_article_info(article_id: int, db: AsyncSession = Depends(get_db)):
    article = await article_service.get_article_info(db, article_id)
    if not article:
        raise HTTPException(status_code=404, detail="Article not found")
    return article

@router.post("", status_code=201)
async def create_article(data: ArticleCreate, db: AsyncSession = Depends(get_db)):
    result = await article_service.create_article(db, data)
    return result_response(result, success_status=201)

@router.put("/{article_id}")
async def update_article(article_id: int, data: ArticleUpdate, db: AsyncSession = Depends(get_db)):
    result = await article_service.update_article(db, article_id, data)
    if result is None:
        raise HTTPException(status_code=404, detail="Article not found")
    return result_response(result)

@router.delete("/{article_id}", status_code=204)
async def delete_article(article_id: int, db: AsyncSession = Depends(get_db)):
    deleted = await article_service.delete_article(db, article_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Article not found")

@router.get("/{article_id}/history", response_model=list[ArticleHistoryResponse])
async def get_article_history(article_id: int, db: AsyncSession = Depends(get_db)):
    history = await article_service.get_article_history(db, article_id)
    if history is None:
        raise HTTPException(status_code=404, detail="Article not found")
    return history

# --- Views ---

@router.post("/{article_id}/views", response_model=CounterResponse)
async def record_view(article_id: int, data: ViewCreate, db: AsyncSession = Depends(get_db)):
    try:
        count = await counter_service.record_view(db, data.user_id, article_id, data.device, data.count)
    except UnknownUserError:
        raise HTTPException(status_code=404, detail="User not found")
    if count is None:
        raise HTTPException(status_code=404, detail="Article not found")
    return CounterResponse(article_id=article_id, count=count)

@router.get("/{article_id}/views", response_model=CounterResponse)
async def get_view_count(article_id: int, user_id: int = Query(...), db: AsyncSession = Depends(get_db)):
    count = await counter_service.get_view_count(db, user_id, article_id)
    return CounterResponse(article_id=article_id, count=count)

@router.get("/{article_id}/views/trend", response_model=list[ViewTrendPoint])
async def get_view_trend(
    article_id: int,
    days: int = Query(7, ge=1, le=90),
    db: AsyncSession = Depends(get_db),
):
    return await counter_service.get_view_trend(db, article_id, days)

# --- Likes ---

@router.post("/{article_id}/likes", response_model=CounterResponse)
async def like_article(article_id: int, data: LikeCreate, db: AsyncSession = Depends(get_db)):
    try:
        count = await counter_service.like_article(db, data.user_id, article_id)
    except UnknownUserError:
        raise HTTPException(status_code=404, detail="User not found")
    if count is None:
        raise HTTPException(status_code=404, detail="Article not found")
    return CounterResponse(article_id=article_id, count=count)

@router.delete("/{article_id}/likes/{user_id}", response_model=CounterResponse)
async def unlike_article(article_id: int, user_id: int, db: AsyncSession = Depends(get_db)):
    count = await counter_service.unlike_article(db, user_id, article_id)
    if count is None:
        raise HTTPException(status_code=404, detail="Article not found")
    return CounterResponse(article_id=article_id, count=count)

@router.get("/{article_id}/likes", response_model=CounterResponse)
async def get_like_count(article_id: int, db: AsyncSession = Depends(get_db)):
    count = await counter_service.get_like_count(db, article_id)
    if count is None:
        raise HTTPException(status_code=404, detail="Article not found")
    return CounterResponse(article_id=article_id, count=count)

@router.get("/{article_id}/likes/{user_id}", response_model=LikeStatusResponse)
async def get_like_status(article_id: int, user_id: int, db: AsyncSession = Depends(get_db)):
    liked = await counter_service.has_liked(db, user_id, article_id)
    return LikeStatusResponse(article_id=article_id, user_id=user_id, liked=liked)
