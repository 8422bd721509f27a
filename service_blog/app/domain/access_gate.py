"""
Access gate for the Blog service.

``AccessGate.evaluate`` is a single async transform from a framework-neutral
``GateRequest`` to a ``GateDecision``. ``AccessGateMiddleware`` adapts it to
Starlette.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, RedirectResponse, Response

from shared.errors import AccessLayerException, AuthenticationError, AuthorizationError, RateLimitError
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector
from ..auth.sessions import Session, SessionIssuer
from ..ratelimit.fixed_window import FixedWindowRateLimiter, RateLimitResult, client_identity

TOO_MANY_REQUESTS = "TooManyRequests"
UNAUTHORIZED_MARKER = "unauthorized"


class RouteClass(str, Enum):
    PUBLIC = "public"
    AUTH_PAGE = "auth_page"
    AUTH_ROUTE = "auth_route"
    PROTECTED_API = "protected_api"
    PROTECTED_PAGE = "protected_page"


class GateAction(str, Enum):
    ALLOW = "allow"
    REDIRECT = "redirect"
    DENY = "deny"


@dataclass
class GateRequest:
    """The parts of an inbound request the gate looks at."""
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    client_host: Optional[str] = None
    origin: str = ""


@dataclass
class GateDecision:
    action: GateAction
    route_class: RouteClass
    status_code: int = 200
    location: Optional[str] = None
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    session: Optional[Session] = None
    rate_limit: Optional[RateLimitResult] = None
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.action == GateAction.ALLOW


@dataclass
class GateRoutes:
    protected_prefixes: Tuple[str, ...] = ("/admin", "/api/posts")
    login_path: str = "/admin/login"
    dashboard_path: str = "/admin"
    api_prefix: str = "/api/"
    auth_callback_prefix: str = "/api/auth/callback/"


def _matches_prefix(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


class AccessGate:
    """Route classification, session and privilege checks, rate limiting."""

    def __init__(self, sessions: SessionIssuer, rate_limiter: FixedWindowRateLimiter,
                 routes: Optional[GateRoutes] = None, cookie_name: str = "blog.session-token",
                 metrics: Optional[MetricsCollector] = None):
        self.sessions = sessions
        self.rate_limiter = rate_limiter
        self.routes = routes or GateRoutes()
        self.cookie_name = cookie_name
        self.metrics = metrics
        self.logger = get_logger("blog.access_gate")

    def classify(self, method: str, path: str) -> RouteClass:
        routes = self.routes
        if method.upper() == "POST" and path.startswith(routes.auth_callback_prefix):
            return RouteClass.AUTH_ROUTE
        if path.rstrip("/") == routes.login_path.rstrip("/"):
            return RouteClass.AUTH_PAGE
        if any(_matches_prefix(path, prefix) for prefix in routes.protected_prefixes):
            if path.startswith(routes.api_prefix):
                return RouteClass.PROTECTED_API
            return RouteClass.PROTECTED_PAGE
        return RouteClass.PUBLIC

    async def evaluate(self, request: GateRequest) -> GateDecision:
        route_class = self.classify(request.method, request.path)
        session = self.sessions.verify(request.cookies.get(self.cookie_name))

        if route_class == RouteClass.AUTH_ROUTE:
            decision = await self._evaluate_auth_route(request, session)
        elif route_class == RouteClass.AUTH_PAGE:
            decision = self._evaluate_login_page(session)
        else:
            decision = None
            if request.path.startswith(self.routes.api_prefix):
                decision = await self._check_api_quota(request, route_class)
            if decision is None:
                if route_class in (RouteClass.PROTECTED_API, RouteClass.PROTECTED_PAGE):
                    decision = self._evaluate_protected(request, route_class, session)
                else:
                    decision = GateDecision(GateAction.ALLOW, route_class, session=session)

        if self.metrics is not None:
            self.metrics.record_gate_decision(route_class.value, decision.action.value)
        return decision

    def _deny(self, route_class: RouteClass, status_code: int, error: AccessLayerException,
              body: Dict[str, Any], **kwargs) -> GateDecision:
        return GateDecision(
            GateAction.DENY,
            route_class,
            status_code=status_code,
            body=body,
            reason=error.code,
            **kwargs
        )

    async def _evaluate_auth_route(self, request: GateRequest, session: Optional[Session]) -> GateDecision:
        identity = client_identity(request.headers, request.client_host)
        result = await self.rate_limiter.check_auth(identity)
        if result.allowed:
            return GateDecision(GateAction.ALLOW, RouteClass.AUTH_ROUTE, session=session, rate_limit=result)

        minutes = math.ceil(self.rate_limiter.auth_policy.window_ms / 60000)
        error = RateLimitError(f"Too many login attempts. Please try again in {minutes} minutes.")
        self.logger.warning("Sign-in rate limit exceeded", identity=identity)
        return self._deny(
            RouteClass.AUTH_ROUTE,
            429,
            error,
            {
                "error": TOO_MANY_REQUESTS,
                "message": error.message,
                "url": f"{request.origin}{self.routes.login_path}?error={TOO_MANY_REQUESTS}",
            },
            headers=self._rate_limit_headers(result),
            rate_limit=result,
        )

    def _evaluate_login_page(self, session: Optional[Session]) -> GateDecision:
        if session is not None:
            return GateDecision(
                GateAction.REDIRECT,
                RouteClass.AUTH_PAGE,
                status_code=307,
                location=self.routes.dashboard_path,
                session=session,
            )
        return GateDecision(GateAction.ALLOW, RouteClass.AUTH_PAGE)

    async def _check_api_quota(self, request: GateRequest, route_class: RouteClass) -> Optional[GateDecision]:
        """API quota, applied before any session check. None when within quota."""
        identity = client_identity(request.headers, request.client_host)
        result = await self.rate_limiter.check_api(identity)
        if result.allowed:
            return None

        error = RateLimitError("Too many requests, please try again later")
        return self._deny(
            route_class,
            429,
            error,
            {"success": False, "error": error.message},
            headers=self._rate_limit_headers(result),
            rate_limit=result,
        )

    def _evaluate_protected(self, request: GateRequest, route_class: RouteClass,
                            session: Optional[Session]) -> GateDecision:
        is_api = route_class == RouteClass.PROTECTED_API

        if session is None:
            if is_api:
                error = AuthenticationError()
                return self._deny(route_class, 401, error, {"success": False, "error": error.message})
            return GateDecision(
                GateAction.REDIRECT,
                route_class,
                status_code=307,
                location=self.routes.login_path,
            )

        if not session.is_superuser:
            self.logger.info("Admin route refused", user_id=session.subject_id, path=request.path)
            if is_api:
                error = AuthorizationError()
                return self._deny(route_class, 403, error, {"success": False, "error": error.message},
                                  session=session)
            return GateDecision(
                GateAction.REDIRECT,
                route_class,
                status_code=307,
                location=f"{self.routes.login_path}?error={UNAUTHORIZED_MARKER}",
                session=session,
            )

        return GateDecision(GateAction.ALLOW, route_class, session=session)

    @staticmethod
    def _rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
        return {
            "Retry-After": str(result.retry_after_seconds),
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
        }


def to_gate_request(request: Request) -> GateRequest:
    return GateRequest(
        method=request.method,
        path=request.url.path,
        headers={k.lower(): v for k, v in request.headers.items()},
        cookies=dict(request.cookies),
        client_host=request.client.host if request.client else None,
        origin=str(request.base_url).rstrip("/"),
    )


def to_response(decision: GateDecision) -> Response:
    if decision.action == GateAction.REDIRECT:
        return RedirectResponse(url=decision.location, status_code=decision.status_code)
    return JSONResponse(status_code=decision.status_code, content=decision.body, headers=decision.headers)


class AccessGateMiddleware(BaseHTTPMiddleware):
    """Runs the gate ahead of every route and exposes the session on request.state."""

    def __init__(self, app, gate: AccessGate, exempt_paths: Iterable[str] = ("/health", "/metrics")):
        super().__init__(app)
        self.gate = gate
        self.exempt_paths = set(exempt_paths)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths or request.method == "OPTIONS":
            request.state.session = None
            return await call_next(request)

        decision = await self.gate.evaluate(to_gate_request(request))
        if not decision.allowed:
            return to_response(decision)

        request.state.session = decision.session
        if decision.session is not None:
            set_user_context(decision.session.subject_id)
        return await call_next(request)
