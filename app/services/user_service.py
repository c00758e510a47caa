"""
User service: CRUD operations for the User aggregate.

Users are read without caching; the list is small and rarely changes.
"""
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import User
from app.schemas import UserCreate


def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "display_name": user.display_name,
        "bio": user.bio,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _article_summary_to_dict(article) -> dict:
    """Article summary embedded in a user detail; author and tags omitted."""
    return {
        "id": article.id,
        "title": article.title,
        "space_id": article.space_id,
        "parent_id": article.parent_id,
        "user_id": article.user_id,
        "view_count": article.view_count,
        "like_count": article.like_count,
        "created_at": article.created_at.isoformat() if article.created_at else None,
        "author": None,
        "tags": [],
    }


async def get_users(db: AsyncSession) -> list[dict]:
    """Return all users, newest first."""
    q = select(User).order_by(User.created_at.desc(), User.id.desc())
    result = await db.execute(q)
    return [_user_to_dict(u) for u in result.scalars().all()]


async def get_user(db: AsyncSession, user_id: int) -> dict | None:
    """
    Return *user_id* with a summary of their articles, or None when the
    user does not exist.
    """
    q = (
        select(User)
        .where(User.id == user_id)
        .options(selectinload(User.articles))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(q)
    user = result.scalar_one_or_none()
    if user is None:
        return None

    data = _user_to_dict(user)
    data["articles"] = [_article_summary_to_dict(a) for a in user.articles]
    return data


async def create_user(db: AsyncSession, data: UserCreate) -> dict:
    """
    Create a new user.  Username and email uniqueness is enforced by the
    database; the router translates integrity errors into 409 responses.
    """
    user = User(
        username=data.username,
        email=data.email,
        display_name=data.display_name,
        bio=data.bio,
    )
    db.add(user)
    await db.flush()
    return _user_to_dict(user)
