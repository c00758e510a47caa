"""
Article service: business logic for the Article aggregate.

Design notes
------------
- List pages go through the cache-aside pattern (Redis, falling back to
  the DB).  Detail reads are never cached because they bump the article's
  view counter.
- Eager loading via ``joinedload`` (author) and ``selectinload`` (tags) is
  used throughout; relationships are ``noload`` by default.
- An update snapshots the previous title/content into ``ArticleHistory``
  in the same session as the article write.
- Validation failures (unknown space, owner or parent, cyclic move) are
  returned as ``CommonResult`` values rather than raised.
- Service functions flush but do not commit; the transaction boundary is
  owned by the ``get_db`` dependency in the router layer.
"""
import logging
import math
import time

from sqlalchemy import asc, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from app.cache import cache
from app.config import settings
from app.models import Article, ArticleHistory, Space, Tag, User
from app.results import CommonResult, ResultMessage
from app.schemas import ArticleCreate, ArticleOrder, ArticleUpdate, PaginatedResponse
from app.tree import CyclicHierarchyError, find_orphans

logger = logging.getLogger(__name__)

_ORDER_COLUMNS = {
    ArticleOrder.CREATE_TIME: Article.created_at,
    ArticleOrder.VIEW: Article.view_count,
    ArticleOrder.LIKE: Article.like_count,
}


def _order_by(order: ArticleOrder, sort_order: str = "desc") -> tuple:
    """ORDER BY clause for *order*, tie-broken by id in the same direction."""
    direction = desc if sort_order == "desc" else asc
    return direction(_ORDER_COLUMNS[order]), direction(Article.id)


def _next_version(previous: str | None) -> str:
    """
    Millisecond timestamp token, bumped past *previous* so versions of one
    article stay strictly increasing even within the same millisecond.
    """
    now_ms = int(time.time() * 1000)
    if previous is not None and now_ms <= int(previous):
        now_ms = int(previous) + 1
    return str(now_ms)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _serialize_user(author) -> dict | None:
    if author is None:
        return None
    return {
        "id": author.id,
        "username": author.username,
        "email": author.email,
        "display_name": author.display_name,
        "bio": author.bio,
        "created_at": author.created_at.isoformat() if author.created_at else None,
    }


def _article_to_dict(article: Article) -> dict:
    """Serialise an Article ORM instance to a plain dict (list view)."""
    return {
        "id": article.id,
        "title": article.title,
        "space_id": article.space_id,
        "parent_id": article.parent_id,
        "user_id": article.user_id,
        "view_count": article.view_count,
        "like_count": article.like_count,
        "created_at": article.created_at.isoformat() if article.created_at else None,
        "author": _serialize_user(article.author),
        "tags": [{"id": t.id, "name": t.name} for t in article.tags],
    }


def _article_detail_to_dict(article: Article) -> dict:
    data = _article_to_dict(article)
    data["content"] = article.content
    return data


def _history_to_dict(entry: ArticleHistory) -> dict:
    return {
        "id": entry.id,
        "article_id": entry.article_id,
        "user_id": entry.user_id,
        "title": entry.title,
        "content": entry.content,
        "version": entry.version,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _resolve_tags(db: AsyncSession, tag_names: list[str]) -> list[Tag]:
    """
    Return Tag rows for each distinct name in *tag_names*, creating the
    missing ones inside the caller's transaction.
    """
    tags: list[Tag] = []
    for name in dict.fromkeys(tag_names):
        result = await db.execute(select(Tag).where(Tag.name == name))
        tag = result.scalar_one_or_none()
        if not tag:
            tag = Tag(name=name)
            db.add(tag)
            await db.flush()
        tags.append(tag)
    return tags


async def _load_article(db: AsyncSession, article_id: int) -> Article | None:
    # populate_existing: counters may have been bumped by UPDATE statements.
    q = (
        select(Article)
        .where(Article.id == article_id)
        .options(joinedload(Article.author), selectinload(Article.tags))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(q)
    return result.unique().scalar_one_or_none()


async def _paginate(db: AsyncSession, stmt, page: int, page_size: int, order_by) -> PaginatedResponse:
    """Run COUNT and the LIMIT/OFFSET page for the filtered *stmt*."""
    count_q = select(func.count()).select_from(stmt.subquery())
    total: int = (await db.execute(count_q)).scalar_one()

    page_q = (
        stmt.options(joinedload(Article.author), selectinload(Article.tags))
        .order_by(*order_by)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(page_q)
    articles = result.unique().scalars().all()

    return PaginatedResponse(
        items=[_article_to_dict(a) for a in articles],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


async def _validate_parent(
    db: AsyncSession, space_id: int, parent_id: int, article_id: int | None = None
) -> CommonResult:
    """
    Check that *parent_id* is the root sentinel or an article of *space_id*,
    and, when moving an existing article, that the move creates no cycle.
    """
    if parent_id == settings.TREE_ROOT_PARENT_ID:
        return CommonResult.success()

    if article_id is None:
        parent = await db.get(Article, parent_id)
        if parent is None or parent.space_id != space_id:
            return CommonResult.error(ResultMessage.PARENT_NOT_FOUND)
        return CommonResult.success()

    records = list(await find_all_by_space(db, space_id))
    if not any(r.id == parent_id for r in records):
        return CommonResult.error(ResultMessage.PARENT_NOT_FOUND)

    # Check the hierarchy as it would look after the move.
    moved = [
        _ParentLink(r.id, parent_id if r.id == article_id else r.parent_id)
        for r in records
    ]
    try:
        find_orphans(moved)
    except CyclicHierarchyError as exc:
        logger.info("Rejected move of article %s under %s: %s", article_id, parent_id, exc)
        return CommonResult.error(ResultMessage.CYCLIC_HIERARCHY, str(exc))
    return CommonResult.success()


class _ParentLink:
    __slots__ = ("id", "parent_id")

    def __init__(self, id: int, parent_id: int) -> None:
        self.id = id
        self.parent_id = parent_id


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def find_all_by_space(db: AsyncSession, space_id: int) -> list[Article]:
    """Every article of a space, in creation order."""
    q = (
        select(Article)
        .where(Article.space_id == space_id)
        .order_by(Article.created_at, Article.id)
    )
    result = await db.execute(q)
    return list(result.scalars().all())


async def get_articles(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    order: ArticleOrder = ArticleOrder.CREATE_TIME,
    sort_order: str = "desc",
) -> PaginatedResponse:
    """
    Return one page of all articles ranked by creation time, view count or
    like count.  Pages are cached for ``CACHE_TTL_LIST`` seconds.
    """
    order = ArticleOrder(order)
    cache_key = f"articles:list:{order.value}:{sort_order}:{page}:{page_size}"
    cached = await cache.get(cache_key)
    if cached:
        return PaginatedResponse(**cached)

    response = await _paginate(db, select(Article), page, page_size, _order_by(order, sort_order))
    await cache.set(cache_key, response.model_dump(), ttl=settings.CACHE_TTL_LIST)
    return response


async def search_articles(
    db: AsyncSession,
    tag_id: int | None = None,
    title: str | None = None,
    space_id: int | None = None,
    user_id: int | None = None,
    page: int = 1,
    page_size: int = 20,
) -> PaginatedResponse:
    """
    Filter articles by any combination of tag, title substring
    (case-insensitive), space and owner; newest first.
    """
    stmt = select(Article)
    if tag_id is not None:
        stmt = stmt.where(Article.tags.any(Tag.id == tag_id))
    if title:
        stmt = stmt.where(Article.title.icontains(title.strip(), autoescape=True))
    if space_id is not None:
        stmt = stmt.where(Article.space_id == space_id)
    if user_id is not None:
        stmt = stmt.where(Article.user_id == user_id)

    return await _paginate(db, stmt, page, page_size, _order_by(ArticleOrder.CREATE_TIME))


async def get_user_articles(
    db: AsyncSession, user_id: int, page: int = 1, page_size: int = 20
) -> PaginatedResponse:
    stmt = select(Article).where(Article.user_id == user_id)
    return await _paginate(db, stmt, page, page_size, _order_by(ArticleOrder.CREATE_TIME))


async def get_latest_by_username(db: AsyncSession, username: str, limit: int = 5) -> list[dict]:
    """The *limit* most recent articles written by *username*."""
    q = (
        select(Article)
        .join(User, Article.user_id == User.id)
        .where(User.username == username)
        .options(joinedload(Article.author), selectinload(Article.tags))
        .order_by(*_order_by(ArticleOrder.CREATE_TIME))
        .limit(limit)
    )
    result = await db.execute(q)
    return [_article_to_dict(a) for a in result.unique().scalars().all()]


async def get_article(db: AsyncSession, article_id: int) -> dict | None:
    """
    Return the detail dict for *article_id*, counting the read as one view.

    Returns None when the article does not exist.
    """
    result = await db.execute(
        update(Article)
        .where(Article.id == article_id)
        .values(view_count=Article.view_count + 1)
    )
    if result.rowcount == 0:
        return None

    article = await _load_article(db, article_id)
    return _article_detail_to_dict(article)


async def get_article_info(db: AsyncSession, article_id: int) -> dict | None:
    """Detail dict for *article_id* without touching any counter."""
    article = await _load_article(db, article_id)
    if article is None:
        return None
    return _article_detail_to_dict(article)


async def get_article_history(db: AsyncSession, article_id: int) -> list[dict] | None:
    """
    Snapshots taken by previous updates, newest first.

    Returns None when the article does not exist.
    """
    if await db.get(Article, article_id) is None:
        return None
    q = (
        select(ArticleHistory)
        .where(ArticleHistory.article_id == article_id)
        .order_by(ArticleHistory.id.desc())
    )
    result = await db.execute(q)
    return [_history_to_dict(h) for h in result.scalars().all()]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def create_article(db: AsyncSession, data: ArticleCreate) -> CommonResult:
    """
    Create a new article inside a space.

    The owner and space must exist, and the parent must be the root
    sentinel or an article of the same space.
    """
    if await db.get(Space, data.space_id) is None:
        return CommonResult.error(ResultMessage.SPACE_NOT_FOUND)
    if await db.get(User, data.user_id) is None:
        return CommonResult.error(ResultMessage.USER_NOT_FOUND)

    validation = await _validate_parent(db, data.space_id, data.parent_id)
    if not validation.ok:
        return validation

    article = Article(
        title=data.title,
        content=data.content,
        space_id=data.space_id,
        parent_id=data.parent_id,
        user_id=data.user_id,
    )
    if data.tags:
        article.tags.extend(await _resolve_tags(db, data.tags))

    db.add(article)
    await db.flush()

    await cache.invalidate_articles()
    logger.info("Created article %s in space %s", article.id, article.space_id)
    return CommonResult.success(_article_detail_to_dict(await _load_article(db, article.id)))


async def update_article(
    db: AsyncSession, article_id: int, data: ArticleUpdate
) -> CommonResult | None:
    """
    Partially update an article, first recording its current title and
    content as a new ``ArticleHistory`` row stamped with ``data.user_id``.

    Returns None when the article does not exist.  Only fields explicitly
    set in the payload are modified.
    """
    article = await _load_article(db, article_id)
    if article is None:
        return None
    if await db.get(User, data.user_id) is None:
        return CommonResult.error(ResultMessage.USER_NOT_FOUND)

    update_data = data.model_dump(exclude_unset=True, exclude={"user_id"})
    tags_data: list[str] | None = update_data.pop("tags", None)

    new_parent = update_data.get("parent_id")
    if new_parent is not None and new_parent != article.parent_id:
        validation = await _validate_parent(db, article.space_id, new_parent, article.id)
        if not validation.ok:
            return validation

    latest_q = (
        select(ArticleHistory.version)
        .where(ArticleHistory.article_id == article_id)
        .order_by(ArticleHistory.id.desc())
        .limit(1)
    )
    previous_version = (await db.execute(latest_q)).scalar_one_or_none()
    db.add(
        ArticleHistory(
            article_id=article.id,
            user_id=data.user_id,
            title=article.title,
            content=article.content,
            version=_next_version(previous_version),
        )
    )

    for field, value in update_data.items():
        if value is not None:
            setattr(article, field, value)

    if tags_data is not None:
        article.tags.clear()
        article.tags.extend(await _resolve_tags(db, tags_data))

    await db.flush()
    await cache.invalidate_articles()
    return CommonResult.success(_article_detail_to_dict(article))


async def delete_article(db: AsyncSession, article_id: int) -> bool:
    """
    Delete the article identified by *article_id*.

    Its direct children are re-attached to its parent so they stay in the
    space tree.  Returns True on success, False when the article does not
    exist.
    """
    article = await db.get(Article, article_id)
    if article is None:
        return False

    await db.execute(
        update(Article)
        .where(Article.parent_id == article.id, Article.space_id == article.space_id)
        .values(parent_id=article.parent_id)
    )
    await db.delete(article)
    await db.flush()
    await cache.invalidate_articles()
    logger.info("Deleted article %s", article_id)
    return True
