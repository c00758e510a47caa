"""
Counter service: per-device view counters and likes for articles.

View counters are keyed on ``(user_id, article_id, device)`` and backed by
a unique constraint.  ``record_view`` tries an atomic UPDATE first and only
inserts when no row exists; the insert runs inside a SAVEPOINT so that a
concurrent writer winning the race turns into a retry of the UPDATE rather
than a failed transaction.

Likes are one row per ``(user_id, article_id)``; ``Article.like_count`` is
kept in step with those rows so listings can rank by it cheaply.
"""
import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import cache
from app.models import Article, ArticleLike, ArticleView, User

logger = logging.getLogger(__name__)


class UnknownUserError(LookupError):
    """Raised when a counter write names a user that does not exist."""

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


async def _require_user(db: AsyncSession, user_id: int) -> None:
    if await db.get(User, user_id) is None:
        raise UnknownUserError(user_id)


async def _article_exists(db: AsyncSession, article_id: int) -> bool:
    return await db.get(Article, article_id) is not None


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

async def _bump_device_views(
    db: AsyncSession, user_id: int, article_id: int, device: str, delta: int
) -> int | None:
    """Add *delta* to an existing device row; None when there is no row."""
    result = await db.execute(
        update(ArticleView)
        .where(
            ArticleView.user_id == user_id,
            ArticleView.article_id == article_id,
            ArticleView.device == device,
        )
        .values(view_count=ArticleView.view_count + delta)
        .returning(ArticleView.view_count)
    )
    return result.scalar_one_or_none()


async def record_view(
    db: AsyncSession, user_id: int, article_id: int, device: str, delta: int = 1
) -> int | None:
    """
    Add *delta* views of *article_id* by *user_id* on *device* and return
    the device's new total.  Returns None when the article does not exist.
    Raises ``UnknownUserError`` when the user does not exist.
    """
    if not await _article_exists(db, article_id):
        return None
    await _require_user(db, user_id)

    count = await _bump_device_views(db, user_id, article_id, device, delta)
    if count is not None:
        return count

    try:
        async with db.begin_nested():
            db.add(
                ArticleView(
                    user_id=user_id, article_id=article_id, device=device, view_count=delta
                )
            )
        return delta
    except IntegrityError:
        logger.debug(
            "Concurrent first view for user=%s article=%s device=%r; retrying as update",
            user_id,
            article_id,
            device,
        )
        return await _bump_device_views(db, user_id, article_id, device, delta)


async def get_view_count(db: AsyncSession, user_id: int, article_id: int) -> int:
    """Views of *article_id* by *user_id*, summed across all devices."""
    q = select(func.coalesce(func.sum(ArticleView.view_count), 0)).where(
        ArticleView.user_id == user_id, ArticleView.article_id == article_id
    )
    return (await db.execute(q)).scalar_one()


async def get_view_trend(db: AsyncSession, article_id: int, days: int = 7) -> list[dict]:
    """
    Device-view totals for *article_id* bucketed by first-seen day, newest
    day first, for devices first seen within the last *days* days.

    This is not a views-per-day series: each device row is counted in full
    on the day it was created, including views recorded on later days.
    """
    since = datetime.now(timezone.utc) - timedelta(days=days)
    day = func.date(ArticleView.created_at)
    q = (
        select(day.label("day"), func.sum(ArticleView.view_count).label("total"))
        .where(ArticleView.article_id == article_id, ArticleView.created_at >= since)
        .group_by(day)
        .order_by(day.desc())
        .limit(days)
    )
    trend = []
    for row in (await db.execute(q)).all():
        # SQLite returns DATE() as text.
        day_value = row.day if isinstance(row.day, date) else date.fromisoformat(row.day)
        trend.append({"day": day_value, "count": row.total})
    return trend


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------

async def get_like_count(db: AsyncSession, article_id: int) -> int | None:
    q = select(Article.like_count).where(Article.id == article_id)
    return (await db.execute(q)).scalar_one_or_none()


async def has_liked(db: AsyncSession, user_id: int, article_id: int) -> bool:
    q = select(ArticleLike.id).where(
        ArticleLike.user_id == user_id, ArticleLike.article_id == article_id
    )
    return (await db.execute(q)).first() is not None


async def like_article(db: AsyncSession, user_id: int, article_id: int) -> int | None:
    """
    Record that *user_id* likes *article_id* and return the like count.
    Liking twice is a no-op.  Returns None when the article does not exist.
    Raises ``UnknownUserError`` when the user does not exist.
    """
    if not await _article_exists(db, article_id):
        return None
    await _require_user(db, user_id)
    if await has_liked(db, user_id, article_id):
        return await get_like_count(db, article_id)

    try:
        async with db.begin_nested():
            db.add(ArticleLike(user_id=user_id, article_id=article_id))
    except IntegrityError:
        # Another request recorded the same like first.
        return await get_like_count(db, article_id)

    await db.execute(
        update(Article)
        .where(Article.id == article_id)
        .values(like_count=Article.like_count + 1)
    )
    await cache.invalidate_articles()
    return await get_like_count(db, article_id)


async def unlike_article(db: AsyncSession, user_id: int, article_id: int) -> int | None:
    """
    Withdraw a like and return the like count.  Unliking an article that
    was not liked is a no-op.  Returns None when the article does not exist.
    """
    if not await _article_exists(db, article_id):
        return None

    result = await db.execute(
        delete(ArticleLike).where(
            ArticleLike.user_id == user_id, ArticleLike.article_id == article_id
        )
    )
    if result.rowcount:
        await db.execute(
            update(Article)
            .where(Article.id == article_id)
            .values(like_count=case((Article.like_count > 0, Article.like_count - 1), else_=0))
        )
        await cache.invalidate_articles()
    return await get_like_count(db, article_id)
