"""
Space service: spaces and the article tree rendered for each of them.

``get_space_tree`` is the read path behind the space page's navigation
pane: the code is validated, the space resolved, every article of the
space loaded in creation order and handed to ``app.tree.build_tree``.
Trees are cached per space code and dropped on any article write.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import cache
from app.config import settings
from app.models import Article, Space, User
from app.results import CommonResult, ResultMessage, validate_empty
from app.schemas import SpaceCreate
from app.services.article_service import find_all_by_space
from app.tree import CyclicHierarchyError, build_tree, find_orphans

logger = logging.getLogger(__name__)


def _space_to_dict(space: Space) -> dict:
    return {
        "id": space.id,
        "code": space.code,
        "name": space.name,
        "description": space.description,
        "user_id": space.user_id,
        "created_at": space.created_at.isoformat() if space.created_at else None,
    }


async def get_space_by_code(db: AsyncSession, code: str) -> Space | None:
    result = await db.execute(select(Space).where(Space.code == code))
    return result.scalar_one_or_none()


async def get_space(db: AsyncSession, code: str) -> dict | None:
    space = await get_space_by_code(db, code)
    return _space_to_dict(space) if space else None


async def create_space(db: AsyncSession, data: SpaceCreate) -> dict | None:
    """
    Create a space owned by ``data.user_id``, or return None when that user
    does not exist.  Code uniqueness is enforced by the database; the router
    translates the integrity error into a 409.
    """
    if await db.get(User, data.user_id) is None:
        return None

    space = Space(
        code=data.code,
        name=data.name,
        description=data.description,
        user_id=data.user_id,
    )
    db.add(space)
    await db.flush()
    return _space_to_dict(space)


async def count_articles(db: AsyncSession, code: str) -> CommonResult:
    validate = validate_empty(code, ResultMessage.PARAMS_NOT_NULL)
    if not validate.ok:
        return validate
    space = await get_space_by_code(db, code)
    if space is None:
        return CommonResult.error(ResultMessage.SPACE_NOT_FOUND)

    q = select(func.count()).select_from(Article).where(Article.space_id == space.id)
    return CommonResult.success((await db.execute(q)).scalar_one())


async def get_space_tree(db: AsyncSession, code: str) -> CommonResult:
    """
    Return the article hierarchy of the space identified by *code*.

    ``data`` holds the serialised forest, or None when the space has no
    articles.  Orphaned articles are left out and logged; a cyclic
    hierarchy yields a ``CYCLIC_HIERARCHY`` result.
    """
    validate = validate_empty(code, ResultMessage.PARAMS_NOT_NULL)
    if not validate.ok:
        return validate

    cache_key = cache.tree_key(code)
    cached = await cache.get(cache_key)
    if cached:
        return CommonResult(**cached)

    space = await get_space_by_code(db, code)
    if space is None:
        return CommonResult.error(ResultMessage.SPACE_NOT_FOUND)

    articles = await find_all_by_space(db, space.id)
    root = settings.TREE_ROOT_PARENT_ID
    try:
        forest = build_tree(articles, root)
    except CyclicHierarchyError as exc:
        logger.error("Space %r has a cyclic article hierarchy: %s", code, exc)
        return CommonResult.error(ResultMessage.CYCLIC_HIERARCHY, str(exc))

    orphans = find_orphans(articles, root)
    if orphans:
        logger.warning(
            "Space %r: %d article(s) with unknown parents left out of the tree: %s",
            code,
            len(orphans),
            [a.id for a in orphans],
        )

    result = CommonResult.success(
        [node.model_dump() for node in forest] if forest is not None else None
    )
    await cache.set(cache_key, result.model_dump(), ttl=settings.CACHE_TTL_TREE)
    return result
