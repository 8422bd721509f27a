"""
Password hashing strategies.

The verifier receives one of these at construction time; which one is
decided by configuration in ``build_password_hasher`` and nowhere else.
"""

import asyncio
import hashlib
import hmac
from abc import ABC, abstractmethod

import bcrypt

from shared.config import BaseConfig

# bcrypt only looks at the first 72 bytes; newer releases raise instead of truncating.
BCRYPT_MAX_BYTES = 72


class PasswordHasher(ABC):
    """Hashing strategy contract."""

    name: str = "abstract"

    @abstractmethod
    async def hash(self, password: str) -> str:
        """Return a storable hash of ``password``."""

    @abstractmethod
    async def verify(self, password: str, stored_hash: str) -> bool:
        """Check ``password`` against ``stored_hash``."""


class BcryptPasswordHasher(PasswordHasher):
    """Salted bcrypt. Work runs in a thread so the event loop keeps serving."""

    name = "bcrypt"

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    @staticmethod
    def _encode(password: str) -> bytes:
        return password.encode("utf-8")[:BCRYPT_MAX_BYTES]

    def _hash_sync(self, password: str) -> str:
        return bcrypt.hashpw(self._encode(password), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def _verify_sync(self, password: str, stored_hash: str) -> bool:
        try:
            return bcrypt.checkpw(self._encode(password), stored_hash.encode("utf-8"))
        except ValueError:
            # Not a bcrypt hash
            return False

    async def hash(self, password: str) -> str:
        return await asyncio.to_thread(self._hash_sync, password)

    async def verify(self, password: str, stored_hash: str) -> bool:
        return await asyncio.to_thread(self._verify_sync, password, stored_hash)


class Md5PasswordHasher(PasswordHasher):
    """Unsalted MD5 hex digest. Test configuration only."""

    name = "md5"

    @staticmethod
    def _digest(password: str) -> str:
        return hashlib.md5(password.encode("utf-8")).hexdigest()

    async def hash(self, password: str) -> str:
        return self._digest(password)

    async def verify(self, password: str, stored_hash: str) -> bool:
        return hmac.compare_digest(self._digest(password), stored_hash)


def build_password_hasher(config: BaseConfig) -> PasswordHasher:
    """Select the hashing strategy from explicit configuration."""
    if config.password_hasher == "md5":
        # Mirrors the BaseConfig validator
        if not config.is_test:
            raise ValueError("md5 password hashing is restricted to the test environment")
        return Md5PasswordHasher()
    return BcryptPasswordHasher(rounds=config.bcrypt_rounds)
