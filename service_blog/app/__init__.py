"""
Blog Service package.

Serves the public post pages, the admin area and the credentials sign-in
flow. Every request passes the access gate before reaching a route.

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: Redis counters, user and post stores.
- app.auth: password hashing, credential verification, session tokens.
- app.ratelimit: fixed-window limiter.
- app.domain: the access gate and its middleware.

Module import must not perform network calls; stores connect lazily or in
the lifespan startup hook.
"""
