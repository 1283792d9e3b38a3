"""
api/routes/v1/dashboard.py -- Aggregated counters and the activity feed for the admin dashboard.

Routes:
  GET /admin/summary        -- post counts, today's traffic, top post, 7-day chart, categories
  GET /admin/notifications  -- the latest audit events as human-readable notifications

These are read-only aggregate routes -- no mutations here.
"""

from fastapi import APIRouter, Depends, Request

from api.models import CategoryCount, DayViews, NotificationResponse, SummaryResponse, TopPost
from auth.dependencies import require_admin
from auth.models import AuditEvent
from auth.store import AccountStore
from content.store import ContentStore
from core.db import utcnow

# Auth policy:
# - GET /admin/summary:        requires an admin access token
# - GET /admin/notifications:  requires an admin access token
# Router-level dependency enforces auth; the handlers do not repeat it.
router = APIRouter(dependencies=[Depends(require_admin)])

_FEED_LENGTH = 15

# action -> (type, message); anything else is shown as the action in words
_NOTIFICATION_TEXT = {
    "create_post": ("success", "A new post was created."),
    "update_post": ("info", "A post was updated."),
    "delete_post": ("alert", "A post was deleted."),
    "account_locked": ("alert", "An account was locked after repeated failed logins."),
    "refresh_reuse": ("alert", "A used refresh token was presented again."),
}


def _to_notification(event: AuditEvent, content: ContentStore) -> NotificationResponse:
    if event.action == "login":
        kind, message = "info", f"{event.email or 'Admin'} logged in."
    else:
        kind, message = _NOTIFICATION_TEXT.get(event.action, ("info", event.action.replace("_", " ")))
    if event.target_id and event.target_id.isdigit():
        post = content.get_by_id(int(event.target_id))
        if post is not None:
            message += f" ({post.title})"
    return NotificationResponse(id=event.id, type=kind, message=message, time=event.created_at)


@router.get("/admin/summary", response_model=SummaryResponse)
def get_summary(request: Request) -> SummaryResponse:
    """Return the dashboard counters.

    Response:
      total / published / drafts / scheduled -- post counts by status
      today       -- today's DailySummary (views and posts created)
      topPost     -- most viewed post in any status, or null
      last7Days   -- DailySummary rows for the last 7 days, oldest first
      categories  -- post count per category, largest first
    """
    content: ContentStore = request.app.state.content_store
    counts = content.count_by_status()
    top = content.top_post()
    return SummaryResponse(
        total=sum(counts.values()),
        published=counts["published"],
        drafts=counts["draft"],
        scheduled=counts["scheduled"],
        today=DayViews.from_summary(content.get_daily(utcnow().date())),
        top_post=(
            TopPost(id=top.id, title=top.title, slug=top.slug, views=top.views, category=top.category)
            if top is not None
            else None
        ),
        last7_days=[DayViews.from_summary(d) for d in content.recent_days(7)],
        categories=[CategoryCount(name=name, count=n) for name, n in content.count_by_category()],
    )


@router.get("/admin/notifications", response_model=list[NotificationResponse])
def get_notifications(request: Request) -> list[NotificationResponse]:
    """Return the latest audit events, newest first, phrased for the dashboard bell."""
    accounts: AccountStore = request.app.state.account_store
    content: ContentStore = request.app.state.content_store
    return [_to_notification(e, content) for e in accounts.list_audit(limit=_FEED_LENGTH)]
