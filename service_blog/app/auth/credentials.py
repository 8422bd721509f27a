"""
Credential verification against the user store.
"""

from typing import Optional

from shared.errors import StoreUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..adapters.user_store import UserStore
from .passwords import PasswordHasher
from .sessions import SessionUser


class CredentialVerifier:
    """Checks an email/password pair.

    Every failure mode (missing input, unknown email, user without a password,
    wrong password, store outage) collapses into ``None`` so callers cannot
    tell them apart. Neither the password nor the stored hash is logged.
    """

    def __init__(self, user_store: UserStore, hasher: PasswordHasher,
                 metrics: Optional[MetricsCollector] = None):
        self.user_store = user_store
        self.hasher = hasher
        self.metrics = metrics
        self.logger = get_logger("blog.credentials")

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_login_attempt(outcome)

    async def hash(self, password: str) -> str:
        return await self.hasher.hash(password)

    async def verify(self, password: str, stored_hash: str) -> bool:
        if self.metrics is not None:
            with self.metrics.time_operation("password_verify_duration_seconds"):
                return await self.hasher.verify(password, stored_hash)
        return await self.hasher.verify(password, stored_hash)

    async def authenticate(self, email: Optional[str], password: Optional[str]) -> Optional[SessionUser]:
        if not email or not password:
            self._record("missing_fields")
            return None

        try:
            user = await self.user_store.get_user_by_email(email)
        except StoreUnavailableError as e:
            self.logger.warning("User lookup failed during sign-in", error=e.message)
            self._record("store_unavailable")
            return None

        if user is None or not user.password_hash:
            self._record("rejected")
            return None

        if not await self.verify(password, user.password_hash):
            self.logger.info("Sign-in rejected", user_id=user.id)
            self._record("rejected")
            return None

        self.logger.info("Sign-in accepted", user_id=user.id, is_superuser=user.is_superuser)
        self._record("accepted")
        return SessionUser(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            is_superuser=user.is_superuser,
        )
