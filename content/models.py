"""
content/models.py -- Domain dataclasses for published content.

Pure data containers with zero logic. Slug generation, excerpts and the
scheduled-publish rule live in content/store.py.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

POST_STATUSES = ("draft", "scheduled", "published")


@dataclass
class Post:
    """An article.

    status moves draft -> scheduled -> published. A scheduled post becomes
    published once scheduled_for has passed (ContentStore.publish_due).

    id and slug are assigned by the store on insert when not supplied.
    """

    title: str
    content: str
    created_by: str  # account id
    id: Optional[int] = None
    slug: str = ""
    excerpt: str = ""
    category: str = "news"
    tags: list[str] = field(default_factory=list)
    status: str = "draft"
    scheduled_for: Optional[datetime] = None
    views: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class DailySummary:
    """Per-day traffic counters, keyed by ISO date (YYYY-MM-DD)."""

    date: str
    views: int = 0
    posts_created: int = 0
    top_post_slug: Optional[str] = None
