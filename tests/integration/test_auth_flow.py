"""
Integration tests for the sign-in and admin flow.

Runs the full application in-process with bcrypt hashing and the real
fixed-window limiter on an in-memory counter store.
"""

import pytest
import pytest_asyncio
import httpx

from service_blog.app.adapters.counter_store import InMemoryCounterStore
from service_blog.app.adapters.post_store import InMemoryPostStore
from service_blog.app.adapters.user_store import InMemoryUserStore
from service_blog.app.auth.passwords import BcryptPasswordHasher
from service_blog.app.main import BlogService
from shared.config import get_config

COOKIE = "blog.session-token"
CALLBACK = "/api/auth/callback/credentials"


class TestAuthFlow:
    """Integration tests for complete auth flow."""

    @pytest.fixture
    def config(self):
        return get_config("blog", 8000, env="local", bcrypt_rounds=4, auth_secret="integration-secret")

    @pytest.fixture
    def counter_store(self):
        return InMemoryCounterStore()

    @pytest_asyncio.fixture
    async def user_store(self):
        store = InMemoryUserStore()
        hasher = BcryptPasswordHasher(rounds=4)
        store.add_user("admin@example.com", await hasher.hash("admin-password"),
                       first_name="Ada", is_superuser=True, user_id="admin-1")
        store.add_user("reader@example.com", await hasher.hash("reader-password"), user_id="reader-1")
        return store

    @pytest.fixture
    def blog_service(self, config, counter_store, user_store):
        return BlogService(
            config=config,
            counter_store=counter_store,
            user_store=user_store,
            post_store=InMemoryPostStore(),
        )

    @pytest_asyncio.fixture
    async def client(self, blog_service):
        transport = httpx.ASGITransport(app=blog_service.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://blog.test") as client:
            yield client

    @staticmethod
    async def sign_in(client, email, password, ip="203.0.113.10"):
        return await client.post(
            CALLBACK,
            json={"email": email, "password": password},
            headers={"X-Forwarded-For": ip},
        )

    @pytest.mark.asyncio
    async def test_complete_admin_flow(self, client):
        """Sign in, publish a post, read it publicly, delete it, sign out."""
        # 1. Sign in
        response = await self.sign_in(client, "admin@example.com", "admin-password")
        assert response.status_code == 200
        cookie = {"Cookie": f"{COOKIE}={response.cookies[COOKIE]}"}

        # 2. Create post
        created = await client.post("/api/posts", json={"title": "Integration Post", "content": "Body"},
                                    headers=cookie)
        assert created.status_code == 201
        post = created.json()["post"]

        # 3. Public read, no session needed
        public = await client.get(f"/post/{post['id']}/{post['slug']}")
        assert public.status_code == 200
        assert public.json()["post"]["title"] == "Integration Post"

        # 4. Delete
        deleted = await client.delete("/api/posts", params={"id": post["id"]}, headers=cookie)
        assert deleted.status_code == 200

        # 5. Sign out
        signed_out = await client.post("/api/auth/signout")
        assert signed_out.status_code == 200

    @pytest.mark.asyncio
    async def test_reader_cannot_reach_admin(self, client):
        response = await self.sign_in(client, "reader@example.com", "reader-password")
        assert response.status_code == 200
        cookie = {"Cookie": f"{COOKIE}={response.cookies[COOKIE]}"}

        page = await client.get("/admin", headers=cookie)
        assert page.status_code == 307
        assert page.headers["location"] == "/admin/login?error=unauthorized"

        api = await client.post("/api/posts", json={"title": "x", "content": "y"}, headers=cookie)
        assert api.status_code == 403

    @pytest.mark.asyncio
    async def test_brute_force_is_throttled(self, client, counter_store):
        """Five failures are answered normally, the sixth is throttled."""
        statuses = []
        for _ in range(6):
            response = await self.sign_in(client, "admin@example.com", "guess", ip="198.51.100.7")
            statuses.append(response.status_code)

        assert statuses == [401, 401, 401, 401, 401, 429]

        keys = await counter_store.scan_keys("auth_rate_limit:198.51.100.7:*")
        assert len(keys) == 1
        assert await counter_store.get(keys[0]) == 6

        # Another client is unaffected
        other = await self.sign_in(client, "admin@example.com", "admin-password", ip="198.51.100.8")
        assert other.status_code == 200

    @pytest.mark.asyncio
    async def test_throttled_even_with_correct_password(self, client):
        for _ in range(5):
            await self.sign_in(client, "admin@example.com", "guess", ip="192.0.2.1")

        response = await self.sign_in(client, "admin@example.com", "admin-password", ip="192.0.2.1")
        assert response.status_code == 429
        assert response.headers["Retry-After"]
        assert COOKIE not in response.cookies
