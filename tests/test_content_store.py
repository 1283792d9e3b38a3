"""Unit tests for content/store.py -- posts, scheduled publishing, daily summaries."""

from datetime import date, datetime, timedelta, timezone

import pytest

from content.models import Post
from content.store import make_excerpt, slugify

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _post(title="Hello World", **kwargs) -> Post:
    kwargs.setdefault("content", "<p>Body text</p>")
    return Post(title=title, created_by="acc1", **kwargs)


class TestHelpers:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Hello World", "hello-world"),
            ("  Markets   rally, again! ", "markets-rally-again"),
            ("Ünïcode & Symbols", "ncode--symbols"),
            ("!!!", "post"),
        ],
    )
    def test_slugify(self, text, expected):
        assert slugify(text) == expected

    def test_excerpt_strips_tags_and_truncates(self):
        assert make_excerpt("<p>short</p>") == "short"
        long = "<b>" + "x" * 300 + "</b>"
        excerpt = make_excerpt(long)
        assert excerpt == "x" * 180 + "..."


class TestPosts:
    def test_create_assigns_slug_excerpt_and_timestamps(self, content_store):
        post = content_store.create_post(_post(), now=NOW)
        assert post.id is not None
        assert post.slug == "hello-world"
        assert post.excerpt == "Body text"
        assert post.status == "draft"
        assert post.views == 0
        assert post.created_at == NOW

    def test_duplicate_titles_get_numbered_slugs(self, content_store):
        slugs = [content_store.create_post(_post(), now=NOW).slug for _ in range(3)]
        assert slugs == ["hello-world", "hello-world-1", "hello-world-2"]

    def test_explicit_slug_and_excerpt_are_kept(self, content_store):
        post = content_store.create_post(_post(slug="Custom Slug", excerpt="Teaser"), now=NOW)
        assert post.slug == "custom-slug"
        assert post.excerpt == "Teaser"

    def test_unknown_status_rejected(self, content_store):
        with pytest.raises(ValueError):
            content_store.create_post(_post(status="archived"))

    def test_tags_round_trip(self, content_store):
        post = content_store.create_post(_post(tags=["markets", "stocks"]), now=NOW)
        assert content_store.get_by_slug(post.slug).tags == ["markets", "stocks"]

    def test_list_filters_and_orders_newest_first(self, content_store):
        content_store.create_post(_post("Old", status="published", category="markets"), now=NOW)
        content_store.create_post(_post("Draft", status="draft"), now=NOW + timedelta(minutes=1))
        content_store.create_post(
            _post("New", status="published", tags=["fx"]), now=NOW + timedelta(minutes=2)
        )

        assert [p.title for p in content_store.list_posts(status="published")] == ["New", "Old"]
        assert [p.title for p in content_store.list_posts(category="markets")] == ["Old"]
        assert [p.title for p in content_store.list_posts(tag="fx")] == ["New"]
        assert len(content_store.list_posts()) == 3

    def test_list_paginates(self, content_store):
        for i in range(5):
            content_store.create_post(_post(f"Post {i}"), now=NOW + timedelta(minutes=i))
        assert [p.title for p in content_store.list_posts(page=2, limit=2)] == ["Post 2", "Post 1"]
        assert content_store.list_posts(page=4, limit=2) == []

    def test_increment_views(self, content_store):
        post = content_store.create_post(_post(), now=NOW)
        content_store.increment_views(post.slug)
        assert content_store.increment_views(post.slug).views == 2
        assert content_store.increment_views("missing") is None

    def test_publish_due(self, content_store):
        due = content_store.create_post(
            _post("Due", status="scheduled", scheduled_for=NOW - timedelta(minutes=1)), now=NOW
        )
        later = content_store.create_post(
            _post("Later", status="scheduled", scheduled_for=NOW + timedelta(hours=1)), now=NOW
        )
        assert content_store.publish_due(NOW) == 1
        assert content_store.get_by_id(due.id).status == "published"
        assert content_store.get_by_id(later.id).status == "scheduled"
        assert content_store.publish_due(NOW) == 0

    def test_count_by_status(self, content_store):
        content_store.create_post(_post("A", status="published"), now=NOW)
        content_store.create_post(_post("B"), now=NOW)
        assert content_store.count_by_status() == {"draft": 1, "scheduled": 0, "published": 1}


class TestEditing:
    def test_update_changes_only_given_fields(self, content_store):
        post = content_store.create_post(_post(tags=["a"]), now=NOW)
        later = NOW + timedelta(hours=1)
        updated = content_store.update_post(post.id, now=later, title="New Title", tags=["b", "c"])
        assert updated.title == "New Title"
        assert updated.tags == ["b", "c"]
        assert updated.slug == post.slug
        assert updated.content == post.content
        assert updated.updated_at == later
        assert updated.created_at == NOW

    def test_update_slug_stays_unique(self, content_store):
        content_store.create_post(_post("Taken"), now=NOW)
        other = content_store.create_post(_post("Other"), now=NOW)
        assert content_store.update_post(other.id, slug="taken").slug == "taken-1"
        assert content_store.update_post(other.id, slug="taken-1").slug == "taken-1"

    def test_empty_excerpt_is_regenerated_from_content(self, content_store):
        post = content_store.create_post(_post(excerpt="hand written"), now=NOW)
        updated = content_store.update_post(post.id, content="<p>Fresh copy</p>", excerpt="")
        assert updated.excerpt == "Fresh copy"

    def test_update_can_clear_the_schedule(self, content_store):
        post = content_store.create_post(_post(status="scheduled", scheduled_for=NOW), now=NOW)
        updated = content_store.update_post(post.id, status="draft", scheduled_for=None)
        assert (updated.status, updated.scheduled_for) == ("draft", None)

    def test_update_unknown_post_is_none(self, content_store):
        assert content_store.update_post(999, title="x") is None

    def test_update_rejects_unknown_fields_and_statuses(self, content_store):
        post = content_store.create_post(_post(), now=NOW)
        with pytest.raises(ValueError):
            content_store.update_post(post.id, views=100)
        with pytest.raises(ValueError):
            content_store.update_post(post.id, status="archived")

    def test_delete(self, content_store):
        post = content_store.create_post(_post(), now=NOW)
        assert content_store.delete_post(post.id) is True
        assert content_store.get_by_id(post.id) is None
        assert content_store.delete_post(post.id) is False


class TestAggregates:
    def test_top_post_is_most_viewed(self, content_store):
        assert content_store.top_post() is None
        content_store.create_post(_post("Quiet", status="published"), now=NOW)
        loud = content_store.create_post(_post("Loud", status="published"), now=NOW)
        content_store.increment_views(loud.slug)
        assert content_store.top_post().id == loud.id

    def test_count_by_category_largest_first(self, content_store):
        content_store.create_post(_post("A", category="sports"), now=NOW)
        content_store.create_post(_post("B", category="markets"), now=NOW)
        content_store.create_post(_post("C", category="markets"), now=NOW)
        assert content_store.count_by_category() == [("markets", 2), ("sports", 1)]


class TestDailySummary:
    def test_increment_creates_then_accumulates(self, content_store):
        day = date(2026, 3, 1)
        content_store.increment_daily(day, views=1, top_post_slug="a")
        content_store.increment_daily(day, views=2)
        summary = content_store.get_daily(day)
        assert summary.views == 3
        assert summary.top_post_slug == "a"

    def test_latest_top_post_wins(self, content_store):
        day = date(2026, 3, 1)
        content_store.increment_daily(day, views=1, top_post_slug="a")
        content_store.increment_daily(day, views=1, top_post_slug="b")
        assert content_store.get_daily(day).top_post_slug == "b"

    def test_unrecorded_day_is_zero(self, content_store):
        summary = content_store.get_daily(date(2020, 1, 1))
        assert (summary.views, summary.posts_created, summary.top_post_slug) == (0, 0, None)

    def test_create_post_counts_towards_the_day(self, content_store):
        content_store.create_post(_post(), now=NOW)
        content_store.create_post(_post(), now=NOW)
        assert content_store.get_daily(NOW.date()).posts_created == 2

    def test_recent_days_oldest_first_zero_filled(self, content_store):
        today = date(2026, 3, 7)
        content_store.increment_daily(date(2026, 3, 5), views=4)
        days = content_store.recent_days(7, today=today)
        assert [d.date for d in days] == [f"2026-03-0{n}" for n in range(1, 8)]
        assert [d.views for d in days] == [0, 0, 0, 0, 4, 0, 0]
