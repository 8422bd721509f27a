"""
Post persistence used by the public pages and the posts API.
"""

import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

import asyncpg
from pydantic import BaseModel

from shared.errors import AccessLayerException, ConflictError, StoreUnavailableError
from shared.logging import get_logger


SLUG_ATTEMPTS = 5


class Post(BaseModel):
    id: int
    title: str
    slug: str
    content: str
    created_by_id: str
    created_at: datetime
    updated_at: Optional[datetime] = None


def generate_slug(title: str) -> str:
    """Lowercase, strip punctuation, hyphenate whitespace."""
    slug = title.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def generate_unique_slug(base_slug: str, existing_slugs: List[str]) -> str:
    slug = base_slug
    counter = 1
    while slug in existing_slugs:
        slug = f"{base_slug}-{counter}"
        counter += 1
    return slug


class PostStore(ABC):

    @abstractmethod
    async def create_post(self, title: str, content: str, created_by_id: str) -> Post:
        """Insert a post, deriving a unique slug from the title."""

    @abstractmethod
    async def delete_post(self, post_id: int) -> Optional[Post]:
        """Delete and return the post, or None when it does not exist."""

    @abstractmethod
    async def get_post(self, post_id: int) -> Optional[Post]:
        ...

    @abstractmethod
    async def list_latest(self, limit: int = 10) -> List[Post]:
        ...

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None


class InMemoryPostStore(PostStore):

    def __init__(self):
        self._posts: Dict[int, Post] = {}
        self._next_id = 1

    async def create_post(self, title: str, content: str, created_by_id: str) -> Post:
        slug = generate_unique_slug(
            generate_slug(title),
            [post.slug for post in self._posts.values()],
        )
        post = Post(
            id=self._next_id,
            title=title,
            slug=slug,
            content=content,
            created_by_id=created_by_id,
            created_at=datetime.now(timezone.utc),
        )
        self._posts[post.id] = post
        self._next_id += 1
        return post

    async def delete_post(self, post_id: int) -> Optional[Post]:
        return self._posts.pop(post_id, None)

    async def get_post(self, post_id: int) -> Optional[Post]:
        return self._posts.get(post_id)

    async def list_latest(self, limit: int = 10) -> List[Post]:
        posts = sorted(self._posts.values(), key=lambda p: (p.created_at, p.id), reverse=True)
        return posts[:limit]


class PostgresPostStore(PostStore):
    """PostgreSQL post store sharing the asyncpg pool of the user store."""

    def __init__(self, pool_provider):
        # pool_provider returns the started asyncpg pool (owned by the user store)
        self._pool_provider = pool_provider
        self.logger = get_logger("blog.post_store")

    def _pool(self) -> asyncpg.Pool:
        pool = self._pool_provider()
        if pool is None:
            raise StoreUnavailableError("postgres", "post store not started")
        return pool

    async def start(self):
        try:
            async with self._pool().acquire() as conn:
                await conn.execute("""
                    CREATE TABLE IF NOT EXISTS blog_post (
                        id INTEGER GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
                        title VARCHAR(256) NOT NULL,
                        slug VARCHAR(256) NOT NULL UNIQUE,
                        content TEXT NOT NULL,
                        created_by_id VARCHAR(255) NOT NULL REFERENCES blog_user(id),
                        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                        updated_at TIMESTAMP WITH TIME ZONE
                    );
                """)
                await conn.execute("CREATE INDEX IF NOT EXISTS created_by_idx ON blog_post(created_by_id);")
                await conn.execute("CREATE INDEX IF NOT EXISTS title_idx ON blog_post(title);")
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL post store", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

    @staticmethod
    def _to_post(row) -> Post:
        return Post(
            id=row["id"],
            title=row["title"],
            slug=row["slug"],
            content=row["content"],
            created_by_id=row["created_by_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def create_post(self, title: str, content: str, created_by_id: str) -> Post:
        base_slug = generate_slug(title)
        # Slugs taken by concurrent inserts since our last read
        taken: List[str] = []
        for attempt in range(1, SLUG_ATTEMPTS + 1):
            slug = base_slug
            try:
                async with self._pool().acquire() as conn:
                    existing = await conn.fetch(
                        "SELECT slug FROM blog_post WHERE slug = $1 OR slug LIKE $2",
                        base_slug,
                        f"{base_slug}-%",
                    )
                    slug = generate_unique_slug(base_slug, [r["slug"] for r in existing] + taken)
                    row = await conn.fetchrow(
                        """
                        INSERT INTO blog_post (title, slug, content, created_by_id)
                        VALUES ($1, $2, $3, $4)
                        RETURNING id, title, slug, content, created_by_id, created_at, updated_at
                        """,
                        title, slug, content, created_by_id,
                    )
            except asyncpg.UniqueViolationError:
                self.logger.info("Slug already taken, retrying", slug=slug, attempt=attempt)
                taken.append(slug)
                continue
            except (asyncpg.PostgresError, OSError) as e:
                raise StoreUnavailableError("postgres", str(e)) from e
            return self._to_post(row)

        raise ConflictError("Could not allocate a unique slug", details={"slug": base_slug})

    async def delete_post(self, post_id: int) -> Optional[Post]:
        try:
            async with self._pool().acquire() as conn:
                row = await conn.fetchrow(
                    """
                    DELETE FROM blog_post WHERE id = $1
                    RETURNING id, title, slug, content, created_by_id, created_at, updated_at
                    """,
                    post_id,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreUnavailableError("postgres", str(e)) from e
        return self._to_post(row) if row else None

    async def get_post(self, post_id: int) -> Optional[Post]:
        try:
            async with self._pool().acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT id, title, slug, content, created_by_id, created_at, updated_at "
                    "FROM blog_post WHERE id = $1",
                    post_id,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreUnavailableError("postgres", str(e)) from e
        return self._to_post(row) if row else None

    async def list_latest(self, limit: int = 10) -> List[Post]:
        try:
            async with self._pool().acquire() as conn:
                rows = await conn.fetch(
                    "SELECT id, title, slug, content, created_by_id, created_at, updated_at "
                    "FROM blog_post ORDER BY created_at DESC, id DESC LIMIT $1",
                    limit,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreUnavailableError("postgres", str(e)) from e
        return [self._to_post(row) for row in rows]
