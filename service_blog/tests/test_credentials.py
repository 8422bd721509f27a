"""
Unit tests for CredentialVerifier.
"""

import pytest
from unittest.mock import AsyncMock

from service_blog.app.adapters.user_store import InMemoryUserStore, UserStore
from service_blog.app.auth.credentials import CredentialVerifier
from service_blog.app.auth.passwords import Md5PasswordHasher
from shared.errors import StoreUnavailableError
from shared.metrics import MetricsCollector

PASSWORD_MD5 = "5f4dcc3b5aa765d61d8327deb882cf99"


class TestCredentialVerifier:
    """Test cases for CredentialVerifier."""

    @pytest.fixture
    def user_store(self):
        store = InMemoryUserStore()
        store.add_user("admin@example.com", PASSWORD_MD5, first_name="Ada", last_name="Lovelace",
                       is_superuser=True, user_id="user-1")
        store.add_user("oauth@example.com", None, user_id="user-2")
        return store

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("blog")

    @pytest.fixture
    def verifier(self, user_store, metrics):
        return CredentialVerifier(user_store, Md5PasswordHasher(), metrics=metrics)

    @pytest.mark.asyncio
    async def test_authenticate_success(self, verifier, metrics):
        user = await verifier.authenticate("admin@example.com", "password")

        assert user is not None
        assert user.id == "user-1"
        assert user.is_superuser is True
        assert user.display_name == "Ada Lovelace"
        assert metrics.sample_value("login_attempts_total", {"outcome": "accepted"}) == 1.0

    @pytest.mark.asyncio
    async def test_wrong_password(self, verifier, metrics):
        assert await verifier.authenticate("admin@example.com", "nope") is None
        assert metrics.sample_value("login_attempts_total", {"outcome": "rejected"}) == 1.0

    @pytest.mark.asyncio
    async def test_unknown_email(self, verifier):
        assert await verifier.authenticate("nobody@example.com", "password") is None

    @pytest.mark.asyncio
    async def test_email_match_is_exact(self, verifier):
        assert await verifier.authenticate("Admin@Example.com", "password") is None

    @pytest.mark.asyncio
    async def test_user_without_password(self, verifier):
        assert await verifier.authenticate("oauth@example.com", "password") is None

    @pytest.mark.asyncio
    async def test_missing_fields(self, verifier, metrics):
        assert await verifier.authenticate(None, "password") is None
        assert await verifier.authenticate("admin@example.com", "") is None
        assert metrics.sample_value("login_attempts_total", {"outcome": "missing_fields"}) == 2.0

    @pytest.mark.asyncio
    async def test_store_outage_rejects(self, metrics):
        store = AsyncMock(spec=UserStore)
        store.get_user_by_email.side_effect = StoreUnavailableError("postgres", "connection refused")
        verifier = CredentialVerifier(store, Md5PasswordHasher(), metrics=metrics)

        assert await verifier.authenticate("admin@example.com", "password") is None
        assert metrics.sample_value("login_attempts_total", {"outcome": "store_unavailable"}) == 1.0

    @pytest.mark.asyncio
    async def test_verify_is_timed(self, verifier, metrics):
        assert await verifier.verify("password", PASSWORD_MD5) is True
        assert metrics.sample_value("password_verify_duration_seconds_count") == 1.0

    @pytest.mark.asyncio
    async def test_hash_delegates(self, verifier):
        assert await verifier.hash("password") == PASSWORD_MD5
