"""
api/routes/v1/posts.py -- Public reading and admin authoring routes for posts.

Routes:
  GET  /posts              -- published posts, newest first (category, tag, page, limit)
  GET  /posts/{slug}       -- one published post; counts a view unless throttled
  POST /admin/posts        -- create a post (admin)
  GET  /admin/posts        -- every post in any status (admin)
  PUT  /admin/posts/{id}   -- change some fields of a post (admin)
  DELETE /admin/posts/{id} -- delete a post (admin)

Every admin write is recorded in the audit log (create_post, update_post,
delete_post) with the post id as target, which feeds /admin/notifications.

View counting:
  A read counts at most once per (client IP, slug) per VIEW_THROTTLE_SECONDS.
  A counted read also bumps today's DailySummary (views + 1, top_post_slug).
  A throttled read still returns the post, just without touching the counters.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ErrorDetail, MessageResponse, PostCreate, PostResponse, PostStatusEnum, PostUpdate
from auth.dependencies import client_ip, get_auth_service, require_admin
from auth.models import Account
from cache.throttle import ViewThrottle
from content.models import Post
from content.store import ContentStore
from core.db import utcnow
from core.errors import NotFound

# Public reads need no auth. Every /admin route requires an admin access
# token, applied once at router level.
router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(require_admin)])


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("/posts", response_model=list[PostResponse])
def list_published(
    request: Request,
    category: Optional[str] = None,
    tag: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> list[PostResponse]:
    """Return published posts. Page size is capped by the store."""
    content: ContentStore = request.app.state.content_store
    posts = content.list_posts(status="published", category=category, tag=tag, page=page, limit=limit)
    return [PostResponse.from_post(p) for p in posts]


@router.get("/posts/{slug}", response_model=PostResponse)
def read_post(request: Request, slug: str) -> PostResponse:
    """Return a published post by slug. Drafts and scheduled posts are 404 here."""
    content: ContentStore = request.app.state.content_store
    throttle: ViewThrottle = request.app.state.view_throttle

    post = content.get_by_slug(slug)
    if post is None or post.status != "published":
        raise NotFound("Post not found.")

    if throttle.should_count(client_ip(request) or "unknown", slug):
        post = content.increment_views(slug) or post
        content.increment_daily(utcnow().date(), views=1, top_post_slug=slug)
    return PostResponse.from_post(post)


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


def _scheduled_without_date() -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=ErrorDetail(
            code="invalid_param",
            message="scheduledFor is required when status is scheduled.",
        ).model_dump(),
    )


@admin_router.post("/admin/posts", response_model=PostResponse, status_code=201)
def create_post(
    request: Request,
    body: PostCreate,
    current_account: Account = Depends(require_admin),
) -> PostResponse:
    """Create a post. The slug is made unique by the store (-1, -2, ... suffixes)."""
    if body.status == PostStatusEnum.scheduled and body.scheduled_for is None:
        raise _scheduled_without_date()
    content: ContentStore = request.app.state.content_store
    created = content.create_post(
        Post(
            title=body.title,
            content=body.content,
            created_by=current_account.id,
            slug=body.slug or "",
            excerpt=body.excerpt or "",
            category=body.category,
            tags=body.tags,
            status=body.status.value,
            scheduled_for=body.scheduled_for,
        )
    )
    get_auth_service(request).record_activity("create_post", current_account, str(created.id), client_ip(request))
    return PostResponse.from_post(created)


@admin_router.get("/admin/posts", response_model=list[PostResponse])
def list_all_posts(
    request: Request,
    status: Optional[PostStatusEnum] = None,
    page: int = 1,
    limit: int = 50,
) -> list[PostResponse]:
    content: ContentStore = request.app.state.content_store
    posts = content.list_posts(status=status.value if status else None, page=page, limit=limit)
    return [PostResponse.from_post(p) for p in posts]


@admin_router.put("/admin/posts/{post_id}", response_model=PostResponse)
def update_post(
    request: Request,
    post_id: int,
    body: PostUpdate,
    current_account: Account = Depends(require_admin),
) -> PostResponse:
    """Change the fields present in the body; everything else is left as is."""
    content: ContentStore = request.app.state.content_store
    existing = content.get_by_id(post_id)
    if existing is None:
        raise NotFound("Post not found.")

    changes = body.model_dump(exclude_unset=True)
    if "status" in changes and changes["status"] is not None:
        changes["status"] = changes["status"].value
    # null clears the schedule; for every other field it means "leave as is"
    changes = {k: v for k, v in changes.items() if v is not None or k == "scheduled_for"}
    status = changes.get("status", existing.status)
    scheduled_for = changes.get("scheduled_for", existing.scheduled_for)
    if status == PostStatusEnum.scheduled.value and scheduled_for is None:
        raise _scheduled_without_date()

    updated = content.update_post(post_id, **changes)
    if updated is None:
        raise NotFound("Post not found.")
    get_auth_service(request).record_activity("update_post", current_account, str(post_id), client_ip(request))
    return PostResponse.from_post(updated)


@admin_router.delete("/admin/posts/{post_id}", response_model=MessageResponse)
def delete_post(
    request: Request,
    post_id: int,
    current_account: Account = Depends(require_admin),
) -> MessageResponse:
    content: ContentStore = request.app.state.content_store
    if not content.delete_post(post_id):
        raise NotFound("Post not found.")
    get_auth_service(request).record_activity("delete_post", current_account, str(post_id), client_ip(request))
    return MessageResponse(msg="Deleted successfully")
