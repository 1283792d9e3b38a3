"""
API request and response models for Newsdesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
content/models.py, which own the internal domain representation. Route
handlers map between the two.

Field names are snake_case in Python. Where the published contract uses
camelCase (accessToken, scheduledFor, ...) the field carries an alias.
FastAPI serialises response_model output by alias; populate_by_name lets
handlers build models by field name and lets requests use either spelling.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Account
from content.models import DailySummary, Post

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PostStatusEnum(str, Enum):
    draft = "draft"
    scheduled = "scheduled"
    published = "published"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class _EmailBody(BaseModel):
    """Base for bodies keyed by an account email.

    The email is only trimmed and lower-cased, the same normalisation the
    account store applies, so any address that could be seeded can also log
    in. Passwords and tokens are never altered.
    """

    email: str = Field(min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginRequest(_EmailBody):
    """Request body for POST /auth/login."""

    password: str = Field(min_length=1, max_length=128)


class PasswordResetRequest(_EmailBody):
    """Request body for POST /auth/request-password-reset.

    No length rule on email: the route answers the same 200 for any string.
    """

    email: str = ""


class PasswordResetConfirm(_EmailBody):
    """Request body for POST /auth/reset-password.

    The new password is bounded at 128 characters to stay near bcrypt's
    72-byte input limit.
    """

    token: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=6, max_length=128)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class AccountSummary(BaseModel):
    """Public identity shown after login. Never includes any hash field."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    role: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountSummary":
        return cls(id=account.id, name=account.name, email=account.email, role=account.role)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    token_type: str = Field(default="bearer", alias="tokenType")
    expires_in: int = Field(alias="expiresIn")
    user: AccountSummary


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    token_type: str = Field(default="bearer", alias="tokenType")
    expires_in: int = Field(alias="expiresIn")


class MessageResponse(BaseModel):
    """Generic acknowledgement body ({"msg": ...})."""

    model_config = ConfigDict(frozen=True)

    msg: str


class MeResponse(BaseModel):
    """Response for GET /auth/me: the profile minus password and reset hashes."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    email: str
    role: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    last_login: Optional[datetime] = Field(default=None, alias="lastLogin")
    active_sessions: int = Field(alias="activeSessions")

    @classmethod
    def from_account(cls, account: Account) -> "MeResponse":
        return cls(
            id=account.id,
            name=account.name,
            email=account.email,
            role=account.role,
            created_at=account.created_at,
            last_login=account.last_login,
            active_sessions=len(account.active_sessions),
        )


# ---------------------------------------------------------------------------
# Content -- request/response models
# ---------------------------------------------------------------------------


class PostCreate(BaseModel):
    """Request body for POST /admin/posts."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    title: str = Field(min_length=1, max_length=300)
    content: str = Field(min_length=1)
    slug: Optional[str] = Field(default=None, max_length=300)
    excerpt: Optional[str] = Field(default=None, max_length=1000)
    category: str = Field(default="news", max_length=100)
    tags: list[str] = Field(default_factory=list, max_length=20)
    status: PostStatusEnum = PostStatusEnum.draft
    scheduled_for: Optional[datetime] = Field(default=None, alias="scheduledFor")


class PostUpdate(BaseModel):
    """Request body for PUT /admin/posts/{id}. Only the fields sent are changed."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    content: Optional[str] = Field(default=None, min_length=1)
    slug: Optional[str] = Field(default=None, max_length=300)
    excerpt: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, max_length=100)
    tags: Optional[list[str]] = Field(default=None, max_length=20)
    status: Optional[PostStatusEnum] = None
    scheduled_for: Optional[datetime] = Field(default=None, alias="scheduledFor")


class PostResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    title: str
    slug: str
    excerpt: str
    content: str
    category: str
    tags: list[str]
    status: str
    scheduled_for: Optional[datetime] = Field(default=None, alias="scheduledFor")
    views: int
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @classmethod
    def from_post(cls, post: Post) -> "PostResponse":
        return cls(
            id=post.id,
            title=post.title,
            slug=post.slug,
            excerpt=post.excerpt,
            content=post.content,
            category=post.category,
            tags=post.tags,
            status=post.status,
            scheduled_for=post.scheduled_for,
            views=post.views,
            created_at=post.created_at,
            updated_at=post.updated_at,
        )


class DayViews(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    date: str
    day: str  # short weekday name for chart labels
    views: int
    posts_created: int = Field(alias="postsCreated")
    top_post_slug: Optional[str] = Field(default=None, alias="topPostSlug")

    @classmethod
    def from_summary(cls, summary: DailySummary) -> "DayViews":
        return cls(
            date=summary.date,
            day=datetime.strptime(summary.date, "%Y-%m-%d").strftime("%a"),
            views=summary.views,
            posts_created=summary.posts_created,
            top_post_slug=summary.top_post_slug,
        )


class TopPost(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    slug: str
    views: int
    category: str


class CategoryCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    count: int


class SummaryResponse(BaseModel):
    """Response for GET /admin/summary (dashboard counters)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    total: int
    published: int
    drafts: int
    scheduled: int
    today: DayViews
    top_post: Optional[TopPost] = Field(default=None, alias="topPost")
    last7_days: list[DayViews] = Field(alias="last7Days")
    categories: list[CategoryCount]


class NotificationResponse(BaseModel):
    """One entry of the admin activity feed, derived from an audit event."""

    model_config = ConfigDict(frozen=True)

    id: int
    type: str  # success | info | alert
    message: str
    time: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
