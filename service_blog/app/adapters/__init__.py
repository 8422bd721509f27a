"""
Storage adapters used by the Blog service.

- counter_store: Redis and in-process counters for rate limiting.
- user_store: user lookups by email (Postgres, in-process).
- post_store: posts for public pages and the admin API (Postgres, in-process).
"""

from .counter_store import CounterStore, RedisCounterStore, InMemoryCounterStore
from .user_store import UserRecord, UserStore, PostgresUserStore, InMemoryUserStore
from .post_store import Post, PostStore, PostgresPostStore, InMemoryPostStore, generate_slug

__all__ = [
    "CounterStore",
    "RedisCounterStore",
    "InMemoryCounterStore",
    "UserRecord",
    "UserStore",
    "PostgresUserStore",
    "InMemoryUserStore",
    "Post",
    "PostStore",
    "PostgresPostStore",
    "InMemoryPostStore",
    "generate_slug",
]
