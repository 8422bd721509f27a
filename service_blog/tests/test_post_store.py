"""
Unit tests for post persistence.
"""

from datetime import datetime, timezone

import asyncpg
import pytest
from unittest.mock import AsyncMock, MagicMock

from service_blog.app.adapters.post_store import (
    SLUG_ATTEMPTS,
    InMemoryPostStore,
    PostgresPostStore,
    generate_slug,
    generate_unique_slug,
)
from shared.errors import ConflictError, StoreUnavailableError

CREATED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)


def post_row(slug, post_id=7):
    return {
        "id": post_id,
        "title": "Hello World",
        "slug": slug,
        "content": "Body",
        "created_by_id": "user-1",
        "created_at": CREATED_AT,
        "updated_at": None,
    }


class TestSlugs:
    """Test cases for slug helpers."""

    @pytest.mark.parametrize("title,expected", [
        ("Hello World", "hello-world"),
        ("  Hello,   World!  ", "hello-world"),
        ("Already-hyphenated -- title", "already-hyphenated-title"),
    ])
    def test_generate_slug(self, title, expected):
        assert generate_slug(title) == expected

    def test_unique_slug_appends_counter(self):
        assert generate_unique_slug("hello", []) == "hello"
        assert generate_unique_slug("hello", ["hello", "hello-1"]) == "hello-2"


class TestInMemoryPostStore:
    """Test cases for InMemoryPostStore."""

    @pytest.mark.asyncio
    async def test_duplicate_titles_get_distinct_slugs(self):
        store = InMemoryPostStore()

        first = await store.create_post("Hello World", "a", "user-1")
        second = await store.create_post("Hello World", "b", "user-1")

        assert (first.slug, second.slug) == ("hello-world", "hello-world-1")


class TestPostgresPostStore:
    """Test cases for PostgresPostStore."""

    @pytest.fixture
    def conn(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, conn):
        pool = MagicMock()
        pool.acquire.return_value.__aenter__.return_value = conn
        return PostgresPostStore(lambda: pool)

    @pytest.mark.asyncio
    async def test_create_post(self, store, conn):
        conn.fetch.return_value = [{"slug": "hello-world"}]
        conn.fetchrow.return_value = post_row("hello-world-1")

        post = await store.create_post("Hello World", "Body", "user-1")

        assert post.slug == "hello-world-1"
        assert conn.fetchrow.await_args.args[2] == "hello-world-1"

    @pytest.mark.asyncio
    async def test_slug_taken_concurrently_is_retried(self, store, conn):
        """An insert that loses the slug to another writer retries with the next suffix."""
        # Both reads miss the competing row; the retry still moves past the taken slug.
        conn.fetch.return_value = []
        conn.fetchrow.side_effect = [
            asyncpg.UniqueViolationError("duplicate key value violates unique constraint"),
            post_row("hello-world-1"),
        ]

        post = await store.create_post("Hello World", "Body", "user-1")

        assert post.slug == "hello-world-1"
        inserted = [call.args[2] for call in conn.fetchrow.await_args_list]
        assert inserted == ["hello-world", "hello-world-1"]

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_conflicts(self, store, conn):
        conn.fetch.return_value = []
        conn.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key value")

        with pytest.raises(ConflictError) as exc_info:
            await store.create_post("Hello World", "Body", "user-1")

        assert exc_info.value.status_code == 409
        assert conn.fetchrow.await_count == SLUG_ATTEMPTS

    @pytest.mark.asyncio
    async def test_other_database_errors_are_unavailable(self, store, conn):
        conn.fetch.side_effect = OSError("Connection refused")

        with pytest.raises(StoreUnavailableError):
            await store.create_post("Hello World", "Body", "user-1")

    @pytest.mark.asyncio
    async def test_not_started(self):
        store = PostgresPostStore(lambda: None)

        with pytest.raises(StoreUnavailableError):
            await store.get_post(1)
