from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings


# --- Tag ---

class TagResponse(BaseModel):
    id: int
    name: str
    model_config = ConfigDict(from_attributes=True)


# --- User ---

class UserBase(BaseModel):
    username: str = Field(max_length=50)
    email: str = Field(max_length=255)
    display_name: str | None = None
    bio: str | None = None


class UserCreate(UserBase):
    pass


class UserResponse(UserBase):
    id: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class UserDetail(UserResponse):
    articles: list[ArticleResponse] = []


# --- Space ---

class SpaceCreate(BaseModel):
    code: str = Field(min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_-]+$")
    name: str = Field(max_length=200)
    description: str | None = None
    user_id: int


class SpaceResponse(BaseModel):
    id: int
    code: str
    name: str
    description: str | None
    user_id: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# --- Article ---

class ArticleOrder(str, Enum):
    """Orderings available to the paginated article listing."""

    CREATE_TIME = "create_time"
    VIEW = "view"
    LIKE = "like"


class ArticleCreate(BaseModel):
    title: str = Field(max_length=200)
    content: str
    space_id: int
    parent_id: int = settings.TREE_ROOT_PARENT_ID
    user_id: int
    tags: list[str] = []  # tag names


class ArticleUpdate(BaseModel):
    # Acting user, stamped on the history snapshot.
    user_id: int
    title: str | None = Field(None, max_length=200)
    content: str | None = None
    parent_id: int | None = None
    tags: list[str] | None = None


class ArticleResponse(BaseModel):
    id: int
    title: str
    space_id: int
    parent_id: int
    user_id: int
    view_count: int
    like_count: int
    created_at: datetime
    author: UserResponse | None = None
    tags: list[TagResponse] = []
    model_config = ConfigDict(from_attributes=True)


class ArticleDetail(ArticleResponse):
    content: str


class ArticleHistoryResponse(BaseModel):
    id: int
    article_id: int
    user_id: int
    title: str
    content: str
    version: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# --- Counters ---

class ViewCreate(BaseModel):
    user_id: int
    device: str = Field(min_length=1, max_length=100)
    count: int = Field(1, ge=1)


class LikeCreate(BaseModel):
    user_id: int


class CounterResponse(BaseModel):
    article_id: int
    count: int


class LikeStatusResponse(BaseModel):
    article_id: int
    user_id: int
    liked: bool


class ViewTrendPoint(BaseModel):
    day: date
    count: int


# --- Tree ---

class TreeNode(BaseModel):
    """
    One element of a materialized hierarchy.

    ``children`` is ``None`` for a leaf, never an empty list; callers must
    treat the two as equivalent when walking the tree.  ``item`` is an opaque
    payload reference (the source record id).
    """

    id: int
    name: str
    url: str | None = None
    sorted: int | None = None
    newd: bool | None = None
    icon: str | None = None
    checked: bool = False
    children: list[TreeNode] | None = None
    item: int | None = None


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list  # Will be typed in router
    total: int
    page: int
    page_size: int
    pages: int


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_articles: int
    total_spaces: int
    total_users: int
    total_history: int
    total_likes: int
    total_device_views: int
    cache_info: dict = {}


# Forward-reference resolution (UserDetail.articles, TreeNode.children)
UserDetail.model_rebuild()
TreeNode.model_rebuild()
