"""
User lookups for credential verification.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional

import asyncpg
from pydantic import BaseModel

from shared.errors import AccessLayerException, ConflictError, StoreUnavailableError
from shared.logging import get_logger


class UserRecord(BaseModel):
    """A user row as stored; the password hash never leaves the service."""
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    password_hash: Optional[str] = None
    is_superuser: bool = False


class UserStore(ABC):
    """User store contract."""

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        """Exact, case-sensitive match on the stored email."""

    @abstractmethod
    async def create_user(self, email: str, password_hash: str, first_name: Optional[str] = None,
                          last_name: Optional[str] = None, is_superuser: bool = False) -> UserRecord:
        """Insert a user, raising ConflictError when the email is taken."""

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def ping(self) -> bool:
        return True


class InMemoryUserStore(UserStore):
    """Dictionary-backed store for local runs and tests."""

    def __init__(self):
        self._users: Dict[str, UserRecord] = {}

    def add_user(self, email: str, password_hash: Optional[str], first_name: Optional[str] = None,
                 last_name: Optional[str] = None, is_superuser: bool = False,
                 user_id: Optional[str] = None) -> UserRecord:
        user = UserRecord(
            id=user_id or str(uuid.uuid4()),
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash=password_hash,
            is_superuser=is_superuser,
        )
        self._users[email] = user
        return user

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        return self._users.get(email)

    async def create_user(self, email: str, password_hash: str, first_name: Optional[str] = None,
                          last_name: Optional[str] = None, is_superuser: bool = False) -> UserRecord:
        if email in self._users:
            raise ConflictError(f"User with email {email} already exists")
        return self.add_user(email, password_hash, first_name, last_name, is_superuser)


class PostgresUserStore(UserStore):
    """PostgreSQL user store on an asyncpg pool."""

    def __init__(self, dsn: str, pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.logger = get_logger("blog.user_store")
        self.pool: Optional[asyncpg.Pool] = pool

    async def start(self):
        """Open the pool and make sure the table exists."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=10,
                    command_timeout=10
                )
            await self._create_tables()
            self.logger.info("PostgreSQL user store started")
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL user store", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL user store stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS blog_user (
                    id VARCHAR(255) PRIMARY KEY,
                    first_name VARCHAR(255),
                    last_name VARCHAR(255),
                    email VARCHAR(255) NOT NULL UNIQUE,
                    password VARCHAR(255),
                    is_superuser BOOLEAN NOT NULL DEFAULT FALSE,
                    email_verified TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                    image VARCHAR(255)
                );
            """)

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        if self.pool is None:
            raise StoreUnavailableError("postgres", "user store not started")
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT id, email, first_name, last_name, password, is_superuser
                    FROM blog_user WHERE email = $1 LIMIT 1
                    """,
                    email,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreUnavailableError("postgres", str(e)) from e

        if row is None:
            return None
        return self._to_record(row)

    async def create_user(self, email: str, password_hash: str, first_name: Optional[str] = None,
                          last_name: Optional[str] = None, is_superuser: bool = False) -> UserRecord:
        if self.pool is None:
            raise StoreUnavailableError("postgres", "user store not started")
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO blog_user (id, email, first_name, last_name, password, is_superuser)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    RETURNING id, email, first_name, last_name, password, is_superuser
                    """,
                    str(uuid.uuid4()),
                    email,
                    first_name,
                    last_name,
                    password_hash,
                    is_superuser,
                )
        except asyncpg.UniqueViolationError as e:
            raise ConflictError(f"User with email {email} already exists") from e
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreUnavailableError("postgres", str(e)) from e

        self.logger.info("User created", user_id=row["id"], is_superuser=row["is_superuser"])
        return self._to_record(row)

    @staticmethod
    def _to_record(row) -> UserRecord:
        return UserRecord(
            id=row["id"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            password_hash=row["password"],
            is_superuser=row["is_superuser"],
        )

    async def ping(self) -> bool:
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreUnavailableError("postgres", str(e)) from e
