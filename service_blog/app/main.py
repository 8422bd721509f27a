"""
Blog service: public post pages, the admin area and the sign-in flow.
"""

import json
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from fastapi import Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import InvalidCredentialsError, NotFoundError, StoreUnavailableError, ValidationError
from shared.metrics import MetricsCollector, get_metrics_collector
from .adapters.counter_store import CounterStore, RedisCounterStore
from .adapters.post_store import InMemoryPostStore, PostgresPostStore, PostStore
from .adapters.user_store import InMemoryUserStore, PostgresUserStore, UserStore
from .auth.credentials import CredentialVerifier
from .auth.passwords import build_password_hasher
from .auth.sessions import SessionIssuer
from .domain.access_gate import (
    TOO_MANY_REQUESTS,
    UNAUTHORIZED_MARKER,
    AccessGate,
    AccessGateMiddleware,
    GateRoutes,
)
from .ratelimit.fixed_window import FixedWindowRateLimiter, NoOpRateLimiter, RateLimitPolicy

SERVICE_NAME = "blog"
SERVICE_PORT = 8000

CREDENTIALS_SIGNIN = "CredentialsSignin"

LOGIN_ERROR_MESSAGES = {
    TOO_MANY_REQUESTS: "Too many login attempts. Please wait 15 minutes before trying again.",
    UNAUTHORIZED_MARKER: "You do not have admin privileges.",
    CREDENTIALS_SIGNIN: "Invalid email or password",
}


def login_error_message(code: Optional[str]) -> Optional[str]:
    """Message the login form shows for an ``?error=`` marker."""
    if not code:
        return None
    return LOGIN_ERROR_MESSAGES.get(code, "An error occurred. Please try again.")


class CreatePostRequest(BaseModel):
    title: str
    content: str

    @field_validator("title", "content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v


def build_rate_limiter(config: ServiceConfig, store: CounterStore,
                       metrics: Optional[MetricsCollector] = None) -> FixedWindowRateLimiter:
    auth_policy = RateLimitPolicy(scope="auth", limit=config.auth_rate_limit, window_ms=config.auth_rate_window_ms)
    api_policy = RateLimitPolicy(scope="api", limit=config.api_rate_limit, window_ms=config.api_rate_window_ms)
    if config.is_test:
        return NoOpRateLimiter(auth_policy, api_policy, metrics=metrics)
    return FixedWindowRateLimiter(store, auth_policy, api_policy, metrics=metrics)


class BlogService(BaseService):
    """Blog service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 counter_store: Optional[CounterStore] = None,
                 user_store: Optional[UserStore] = None,
                 post_store: Optional[PostStore] = None,
                 rate_limiter: Optional[FixedWindowRateLimiter] = None,
                 metrics: Optional[MetricsCollector] = None):
        config = config or get_config(SERVICE_NAME, SERVICE_PORT)
        metrics = metrics or get_metrics_collector(SERVICE_NAME)

        self.counter_store = counter_store or RedisCounterStore(config.redis_url, config.redis_timeout_seconds)
        if user_store is None and config.postgres_dsn:
            user_store = PostgresUserStore(config.postgres_dsn)
        self.user_store = user_store or InMemoryUserStore()
        if post_store is None and isinstance(self.user_store, PostgresUserStore):
            pg_users = self.user_store
            post_store = PostgresPostStore(lambda: pg_users.pool)
        self.post_store = post_store or InMemoryPostStore()

        self.rate_limiter = rate_limiter or build_rate_limiter(config, self.counter_store, metrics)
        self.sessions = SessionIssuer(config.auth_secret, config.session_max_age_seconds)
        self.credentials = CredentialVerifier(self.user_store, build_password_hasher(config), metrics=metrics)
        self.gate = AccessGate(
            self.sessions,
            self.rate_limiter,
            routes=GateRoutes(
                protected_prefixes=tuple(config.protected_prefixes),
                login_path=config.login_path,
                dashboard_path=config.dashboard_path,
                api_prefix=config.api_prefix,
                auth_callback_prefix=config.auth_callback_prefix,
            ),
            cookie_name=config.session_cookie_name,
            metrics=metrics,
        )

        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config, metrics=metrics)

        if isinstance(self.user_store, InMemoryUserStore) and not self.config.is_test:
            self.logger.warning("No BLOG_POSTGRES_DSN configured, using in-memory user and post stores")

        self._setup_blog_routes()

    def _setup_middleware(self):
        # Added first so it sits inside the timing/request-id middleware.
        self.app.add_middleware(AccessGateMiddleware, gate=self.gate)
        super()._setup_middleware()

    async def on_startup(self):
        await self.user_store.start()
        await self.post_store.start()
        self.logger.info(
            "Blog service started",
            env=self.config.env,
            password_hasher=self.credentials.hasher.name,
            rate_limiter=type(self.rate_limiter).__name__
        )

    async def on_shutdown(self):
        await self.post_store.stop()
        await self.user_store.stop()
        await self.counter_store.close()
        self.logger.info("Blog service stopped")

    async def _check_dependencies(self) -> Dict[str, str]:
        dependencies = {}
        for name, check in (("counter_store", self.counter_store.ping), ("user_store", self.user_store.ping)):
            try:
                dependencies[name] = "ok" if await check() else "unavailable"
            except StoreUnavailableError as e:
                dependencies[name] = "unavailable"
                self.logger.warning("Dependency check failed", dependency=name, error=e.message)
        return dependencies

    @staticmethod
    async def _read_credentials(request: Request) -> Dict[str, Any]:
        body = await request.body()
        content_type = request.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                data = json.loads(body or b"{}")
            except ValueError:
                return {}
            return data if isinstance(data, dict) else {}
        form = parse_qs(body.decode("utf-8", errors="replace"))
        return {key: values[0] for key, values in form.items() if values}

    def _set_session_cookie(self, response: JSONResponse, token: str) -> None:
        response.set_cookie(
            self.config.session_cookie_name,
            token,
            max_age=self.config.session_max_age_seconds,
            httponly=True,
            secure=self.config.session_cookie_secure,
            samesite="lax",
            path="/",
        )

    def _setup_blog_routes(self):
        """Set up blog-specific routes."""

        @self.app.get("/")
        async def root():
            """Latest posts."""
            posts = await self.post_store.list_latest()
            return {
                "service": SERVICE_NAME,
                "posts": [post.model_dump(mode="json") for post in posts],
            }

        @self.app.get("/post/{post_id}")
        async def read_post(post_id: int):
            post = await self.post_store.get_post(post_id)
            if post is None:
                raise NotFoundError("Post not found", details={"id": post_id})
            return {"post": post.model_dump(mode="json")}

        @self.app.get("/post/{post_id}/{slug}")
        async def read_post_with_slug(post_id: int, slug: str):
            post = await self.post_store.get_post(post_id)
            if post is None:
                raise NotFoundError("Post not found", details={"id": post_id})
            return {"post": post.model_dump(mode="json"), "canonical": post.slug == slug}

        @self.app.post("/api/auth/callback/credentials")
        async def sign_in(request: Request):
            """Credentials sign-in. The access gate has already applied the auth rate limit."""
            data = await self._read_credentials(request)
            user = await self.credentials.authenticate(data.get("email"), data.get("password"))
            origin = str(request.base_url).rstrip("/")

            if user is None:
                error = InvalidCredentialsError()
                return JSONResponse(
                    status_code=error.status_code,
                    content={
                        "error": CREDENTIALS_SIGNIN,
                        "message": error.message,
                        "url": f"{origin}{self.config.login_path}?error={CREDENTIALS_SIGNIN}",
                    },
                )

            issued = self.sessions.issue(user)
            response = JSONResponse(content={"ok": True, "url": self.config.dashboard_path})
            self._set_session_cookie(response, issued.token)
            return response

        @self.app.get("/api/auth/session")
        async def read_session(request: Request):
            session = getattr(request.state, "session", None)
            return session.to_public() if session is not None else {}

        @self.app.post("/api/auth/signout")
        async def sign_out():
            response = JSONResponse(content={"ok": True, "url": "/"})
            response.delete_cookie(self.config.session_cookie_name, path="/")
            return response

        @self.app.get(self.config.login_path)
        async def login_page(error: Optional[str] = Query(default=None)):
            return {"page": "login", "error": error, "message": login_error_message(error)}

        @self.app.get(self.config.dashboard_path)
        async def dashboard(request: Request):
            session = request.state.session
            posts = await self.post_store.list_latest(limit=50)
            return {
                "page": "dashboard",
                "user": session.to_public()["user"],
                "posts": [post.model_dump(mode="json") for post in posts],
            }

        @self.app.post("/api/posts", status_code=201)
        async def create_post(request: Request):
            session = request.state.session
            try:
                payload = CreatePostRequest.model_validate(await request.json())
            except (PydanticValidationError, ValueError) as e:
                error = ValidationError(details={
                    "errors": e.errors(include_url=False, include_context=False)
                    if isinstance(e, PydanticValidationError) else []
                })
                return JSONResponse(
                    status_code=error.status_code,
                    content={"success": False, "error": error.message, "details": error.details["errors"]},
                )

            post = await self.post_store.create_post(payload.title, payload.content, session.subject_id)
            self.logger.info("Post created", post_id=post.id, slug=post.slug)
            return JSONResponse(
                status_code=201,
                content={
                    "success": True,
                    "post": post.model_dump(mode="json"),
                    "message": "Post created successfully",
                },
            )

        @self.app.delete("/api/posts")
        async def delete_post(id: Optional[str] = Query(default=None)):
            if not id:
                return JSONResponse(status_code=400, content={"success": False, "error": "Post ID is required"})
            try:
                post_id = int(id)
            except ValueError:
                return JSONResponse(status_code=400, content={"success": False, "error": "Invalid post ID"})

            post = await self.post_store.delete_post(post_id)
            if post is None:
                return JSONResponse(status_code=404, content={"success": False, "error": "Post not found"})

            self.logger.info("Post deleted", post_id=post.id)
            return {
                "success": True,
                "post": post.model_dump(mode="json"),
                "message": "Post deleted successfully",
            }


def create_app(**kwargs):
    """Create the FastAPI application."""
    service = BlogService(**kwargs)
    return service.app


if __name__ == "__main__":
    BlogService().run()
