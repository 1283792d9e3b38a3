"""
content/store.py -- SQLAlchemy Core persistence for posts and daily summaries.

Pattern: Repository + Data Mapper, same as auth/store.py.

Daily summary counters:
  increment_daily() is an explicit increment-or-create keyed by ISO date. It
  is one INSERT ... ON CONFLICT (date) DO UPDATE statement, so the row is
  created on first use and concurrent increments are never lost. The
  statement is the atomicity boundary: nothing else writes summary rows.

Failures and timestamps follow core/db.py.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine

from content.models import POST_STATUSES, DailySummary, Post
from core.db import build_engine, from_db, storage_errors, to_db, utcnow

logger = logging.getLogger("newsdesk.content")

_DEFAULT_DB_URL = "sqlite:///newsdesk.db"
_EXCERPT_LENGTH = 180
_MAX_PAGE_SIZE = 50
_EDITABLE_FIELDS = frozenset({"title", "slug", "excerpt", "content", "category", "tags", "status", "scheduled_for"})

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_posts = Table(
    "posts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(300), nullable=False),
    Column("slug", String(320), nullable=False, unique=True),
    Column("excerpt", Text, nullable=False, server_default=""),
    Column("content", Text, nullable=False),
    Column("category", String(100), nullable=False, server_default="news"),
    Column("tags", Text, nullable=False, server_default="[]"),  # JSON array serialized as text
    Column("status", String(20), nullable=False, server_default="draft"),
    Column("scheduled_for", String(32)),
    Column("views", Integer, nullable=False, server_default="0"),
    Column("created_by", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_daily = Table(
    "daily_summaries",
    _metadata,
    Column("date", String(10), primary_key=True),  # YYYY-MM-DD
    Column("views", Integer, nullable=False, server_default="0"),
    Column("posts_created", Integer, nullable=False, server_default="0"),
    Column("top_post_slug", String(320)),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_TAG_RE = re.compile(r"<[^>]*>?")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9-]")


def slugify(text: str) -> str:
    """Lower-case, hyphenate whitespace, drop everything outside [a-z0-9-]."""
    slug = re.sub(r"\s+", "-", text.strip().lower())
    return _SLUG_STRIP_RE.sub("", slug) or "post"


def make_excerpt(content: str, length: int = _EXCERPT_LENGTH) -> str:
    plain = _TAG_RE.sub("", content)
    return plain[:length] + ("..." if len(plain) > length else "")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ContentStore:
    """Repository for Post and DailySummary entities.

    Usage:
        store = ContentStore("sqlite:///newsdesk.db")
        post_id = store.create_post(Post(title="Hello", content="<p>Hi</p>", created_by=account_id))
        store.increment_views("hello")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> None:
        self.engine: Engine = build_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def create_post(self, post: Post, now: Optional[datetime] = None) -> Post:
        """Insert a post, assigning a unique slug and a default excerpt.

        The slug is derived from post.slug (or the title if empty); a numeric
        suffix (-1, -2, ...) is added until it is unused. Also counts the post
        in today's summary. Returns the stored post.
        """
        if post.status not in POST_STATUSES:
            raise ValueError(f"Unknown post status: {post.status!r}")
        stamp = now or utcnow()
        base = slugify(post.slug or post.title)
        with storage_errors("create_post"), self.engine.begin() as conn:
            slug = base
            counter = 1
            while conn.execute(select(_posts.c.id).where(_posts.c.slug == slug)).first() is not None:
                slug = f"{base}-{counter}"
                counter += 1
            result = conn.execute(
                _posts.insert().values(
                    title=post.title,
                    slug=slug,
                    excerpt=post.excerpt or make_excerpt(post.content),
                    content=post.content,
                    category=post.category,
                    tags=json.dumps(post.tags),
                    status=post.status,
                    scheduled_for=to_db(post.scheduled_for),
                    views=0,
                    created_by=post.created_by,
                    created_at=to_db(stamp),
                    updated_at=to_db(stamp),
                )
            )
            post_id = result.inserted_primary_key[0]
        self.increment_daily(stamp.date(), posts_created=1)
        return self.get_by_id(post_id)

    def get_by_id(self, post_id: int) -> Optional[Post]:
        with storage_errors("get_post"), self.engine.connect() as conn:
            row = conn.execute(_posts.select().where(_posts.c.id == post_id)).fetchone()
        return _row_to_post(row) if row is not None else None

    def get_by_slug(self, slug: str) -> Optional[Post]:
        with storage_errors("get_post_by_slug"), self.engine.connect() as conn:
            row = conn.execute(_posts.select().where(_posts.c.slug == slug)).fetchone()
        return _row_to_post(row) if row is not None else None

    def list_posts(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        tag: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> list[Post]:
        """Return posts newest first, filtered and paginated.

        Tag filtering happens after the query since tags are a JSON column;
        pagination is applied after filtering so pages stay full.
        """
        limit = max(1, min(limit, _MAX_PAGE_SIZE))
        page = max(1, page)
        query = _posts.select().order_by(_posts.c.created_at.desc(), _posts.c.id.desc())
        if status is not None:
            query = query.where(_posts.c.status == status)
        if category is not None:
            query = query.where(_posts.c.category == category)
        if tag is None:
            query = query.offset((page - 1) * limit).limit(limit)
        with storage_errors("list_posts"), self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        posts = [_row_to_post(r) for r in rows]
        if tag is not None:
            posts = [p for p in posts if tag in p.tags][(page - 1) * limit : page * limit]
        return posts

    def update_post(self, post_id: int, now: Optional[datetime] = None, **fields) -> Optional[Post]:
        """Update any subset of the editable fields of a post.

        Accepts: title, slug, excerpt, content, category, tags, status,
        scheduled_for. A new slug is made unique the same way create_post
        does, ignoring the post itself. An empty excerpt is regenerated from
        the (possibly new) content. Returns the updated post, or None if
        post_id was not found.
        """
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Not editable: {', '.join(sorted(unknown))}")
        if "status" in fields and fields["status"] not in POST_STATUSES:
            raise ValueError(f"Unknown post status: {fields['status']!r}")
        if "tags" in fields:
            fields["tags"] = json.dumps(fields["tags"])
        if "scheduled_for" in fields:
            fields["scheduled_for"] = to_db(fields["scheduled_for"])
        fields["updated_at"] = to_db(now or utcnow())
        with storage_errors("update_post"), self.engine.begin() as conn:
            current = conn.execute(_posts.select().where(_posts.c.id == post_id)).fetchone()
            if current is None:
                return None
            if "slug" in fields:
                base = slugify(fields["slug"] or fields.get("title") or current.title)
                slug = base
                counter = 1
                while (
                    conn.execute(
                        select(_posts.c.id).where((_posts.c.slug == slug) & (_posts.c.id != post_id))
                    ).first()
                    is not None
                ):
                    slug = f"{base}-{counter}"
                    counter += 1
                fields["slug"] = slug
            if "excerpt" in fields and not fields["excerpt"]:
                fields["excerpt"] = make_excerpt(fields.get("content") or current.content)
            conn.execute(_posts.update().where(_posts.c.id == post_id).values(**fields))
            row = conn.execute(_posts.select().where(_posts.c.id == post_id)).fetchone()
        return _row_to_post(row)

    def delete_post(self, post_id: int) -> bool:
        """Delete a post. Returns True if a row was deleted, False if post_id was not found."""
        with storage_errors("delete_post"), self.engine.begin() as conn:
            result = conn.execute(_posts.delete().where(_posts.c.id == post_id))
        return result.rowcount > 0

    def increment_views(self, slug: str) -> Optional[Post]:
        """Add one view to a post and return it, or None if the slug is unknown."""
        with storage_errors("increment_views"), self.engine.begin() as conn:
            result = conn.execute(_posts.update().where(_posts.c.slug == slug).values(views=_posts.c.views + 1))
            if result.rowcount == 0:
                return None
            row = conn.execute(_posts.select().where(_posts.c.slug == slug)).fetchone()
        return _row_to_post(row)

    def publish_due(self, now: Optional[datetime] = None) -> int:
        """Promote every scheduled post whose scheduled_for has passed. Returns how many."""
        stamp = to_db(now or utcnow())
        with storage_errors("publish_due"), self.engine.begin() as conn:
            result = conn.execute(
                _posts.update()
                .where(
                    (_posts.c.status == "scheduled")
                    & (_posts.c.scheduled_for.is_not(None))
                    & (_posts.c.scheduled_for <= stamp)
                )
                .values(status="published", updated_at=stamp)
            )
        if result.rowcount:
            logger.info("Published %d scheduled post(s)", result.rowcount)
        return result.rowcount

    # ------------------------------------------------------------------
    # Daily summary
    # ------------------------------------------------------------------

    def increment_daily(
        self,
        day: date,
        views: int = 0,
        posts_created: int = 0,
        top_post_slug: Optional[str] = None,
    ) -> None:
        """Add to the counters for `day`, creating the row if it does not exist.

        top_post_slug, when given, replaces the stored value (last viewed
        post wins, matching the original dashboard behaviour).
        """
        key = day.isoformat()
        insert = pg_insert if self.engine.dialect.name == "postgresql" else sqlite_insert
        stmt = insert(_daily).values(date=key, views=views, posts_created=posts_created, top_post_slug=top_post_slug)
        updates = {
            "views": _daily.c.views + stmt.excluded.views,
            "posts_created": _daily.c.posts_created + stmt.excluded.posts_created,
        }
        if top_post_slug is not None:
            updates["top_post_slug"] = stmt.excluded.top_post_slug
        stmt = stmt.on_conflict_do_update(index_elements=[_daily.c.date], set_=updates)
        with storage_errors("increment_daily"), self.engine.begin() as conn:
            conn.execute(stmt)

    def get_daily(self, day: date) -> DailySummary:
        """Return the summary for `day`; a zeroed summary if nothing was recorded."""
        with storage_errors("get_daily"), self.engine.connect() as conn:
            row = conn.execute(_daily.select().where(_daily.c.date == day.isoformat())).fetchone()
        if row is None:
            return DailySummary(date=day.isoformat())
        return DailySummary(
            date=row.date, views=row.views, posts_created=row.posts_created, top_post_slug=row.top_post_slug
        )

    def recent_days(self, days: int = 7, today: Optional[date] = None) -> list[DailySummary]:
        """Summaries for the last `days` days, oldest first, with gaps zero-filled."""
        end = today or utcnow().date()
        return [self.get_daily(end - timedelta(days=offset)) for offset in range(days - 1, -1, -1)]

    def count_by_status(self) -> dict[str, int]:
        with storage_errors("count_by_status"), self.engine.connect() as conn:
            rows = conn.execute(select(_posts.c.status, func.count()).group_by(_posts.c.status)).fetchall()
        counts = {s: 0 for s in POST_STATUSES}
        counts.update({status: n for status, n in rows})
        return counts

    def top_post(self) -> Optional[Post]:
        """The most viewed post in any status, or None when there are no posts."""
        query = _posts.select().order_by(_posts.c.views.desc(), _posts.c.id.asc()).limit(1)
        with storage_errors("top_post"), self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_post(row) if row is not None else None

    def count_by_category(self) -> list[tuple[str, int]]:
        """(category, post count) pairs, largest first, ties by name."""
        n = func.count().label("n")
        query = select(_posts.c.category, n).group_by(_posts.c.category).order_by(n.desc(), _posts.c.category)
        with storage_errors("count_by_category"), self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [(category, count) for category, count in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_post(row) -> Post:
    return Post(
        id=row.id,
        title=row.title,
        slug=row.slug,
        excerpt=row.excerpt,
        content=row.content,
        category=row.category,
        tags=json.loads(row.tags) if row.tags else [],
        status=row.status,
        scheduled_for=from_db(row.scheduled_for),
        views=row.views,
        created_by=row.created_by,
        created_at=from_db(row.created_at),
        updated_at=from_db(row.updated_at),
    )
