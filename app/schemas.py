from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime


# --- User ---

class UserBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(max_length=255)


class UserCreate(UserBase):
    password: str = Field(min_length=8, max_length=72)


class UserResponse(UserBase):
    id: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# --- Comment ---

class CommentCreate(BaseModel):
    user_id: int
    content: str = Field(min_length=1)


class CommentUpdate(BaseModel):
    content: str = Field(min_length=1)


class CommentResponse(BaseModel):
    id: int
    article_id: int
    user_id: int
    user: str | None = None
    content: str
    created_at: datetime | None


# --- Article ---

class ArticleCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    author_id: int


class ArticleUpdate(BaseModel):
    """Partial update; only title and content are editable."""

    title: str | None = Field(None, min_length=1, max_length=255)
    content: str | None = Field(None, min_length=1)

    @field_validator("title", "content")
    @classmethod
    def _not_null(cls, value: str | None) -> str:
        # Omitted fields keep their default and skip this check; an explicit null does not.
        if value is None:
            raise ValueError("This field may not be null.")
        return value


class ArticleSummary(BaseModel):
    """One entry of the listing and search endpoints."""

    id: int
    title: str
    content: str
    author: str | None
    comments_count: int
    published_at: datetime | None
    created_at: datetime | None
    image_url: str | None


class ArticleDetail(BaseModel):
    id: int
    title: str
    content: str
    author: str | None
    author_id: int
    image_path: str | None
    image_url: str | None
    images: dict[str, str] | None
    published_at: datetime | None
    created_at: datetime | None
    comments: list[CommentResponse] = []


class ArticleCreated(BaseModel):
    success: bool = True
    data: ArticleDetail
    image_url: str | None
    images: dict[str, str] | None


class ImageUploaded(BaseModel):
    success: bool = True
    message: str
    images: dict[str, str]


class MessageResponse(BaseModel):
    message: str


# --- Stats ---

class StatsResponse(BaseModel):
    total_articles: int
    total_comments: int
    total_users: int
    avg_comments_per_article: float
    cache_info: dict = {}
