"""
api/main.py -- FastAPI application entry point for the authorization server.

One process, two roles:
  Authorization Server -- /oauth/authorize and /oauth/token (api/routes/oauth.py)
  Resource Server      -- /me and /user (api/routes/resource.py)

Run with:  uvicorn asgi:app --port 8080

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. log_requests          -- one access-log line per request
  3. enforce_guards        -- guard chain: exactly one guard per path
  4. SessionMiddleware     -- authlib state for the social login round-trip
  5. SlowAPIMiddleware     -- per-route rate limits from api.limiter

Lifespan builds the auth components (stores, issuer, guards, chain) and the
optional expiry sweeper, and tears the sweeper down on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.oauth import router as oauth_router
from api.routes.resource import router as resource_router
from auth.chain import GuardChain
from auth.clients import ClientRegistry
from auth.errors import AuthError
from auth.guards import AnonymousGuard, SessionGuard, TokenGuard
from auth.issuer import TokenIssuer
from auth.models import GuardType
from auth.oauth import oauth as oauth_client
from auth.store import AuthorizationCodeStore, TokenStore
from core.config import Settings, get_settings

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("ssoauth.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Drop expired codes and tokens every `interval` seconds.

    Lookups already treat expired records as absent; this only bounds memory.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        codes = app.state.codes.purge_expired()
        tokens = app.state.tokens.purge_expired()
        if codes or tokens:
            logger.info("Purged %d expired code(s) and %d expired token(s)", codes, tokens)


# ---------------------------------------------------------------------------
# Auth component wiring
# ---------------------------------------------------------------------------


def init_auth_state(app: FastAPI, settings: Settings, clients: ClientRegistry | None = None) -> None:
    """Build the auth components and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both run the exact
    same wiring. Raises GuardConfigError for an invalid GUARD_RULES list --
    the server refuses to start rather than serve with an ambiguous chain.
    """
    app.state.clients = clients if clients is not None else ClientRegistry.from_config(settings.oauth_clients)
    app.state.tokens = TokenStore()
    app.state.codes = AuthorizationCodeStore()
    app.state.issuer = TokenIssuer(
        app.state.clients,
        app.state.tokens,
        app.state.codes,
        code_ttl_seconds=settings.auth_code_ttl_seconds,
        token_ttl_seconds=settings.token_expire_seconds,
    )
    session_guard = SessionGuard(login_url="/login", cookie_name=settings.session_cookie_name)
    app.state.session_guard = session_guard
    app.state.guard_chain = GuardChain.from_config(
        settings.guard_rules,
        guards={
            GuardType.SESSION: session_guard,
            GuardType.TOKEN: TokenGuard(app.state.tokens),
            GuardType.ANONYMOUS: AnonymousGuard(session_guard),
        },
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("Authorization server starting up")
    init_auth_state(app, _settings)
    app.state.oauth = oauth_client
    app.state.purge_task = None
    if _settings.purge_interval_seconds > 0:
        app.state.purge_task = asyncio.create_task(_purge_loop(app, _settings.purge_interval_seconds))
    logger.info("Auth initialized (%d client(s))", len(app.state.clients))

    yield

    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
    logger.info("Authorization server shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SSO Authorization Server",
    description="OAuth2 Authorization Server and Resource Server with social login.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware in reverse registration order: the LAST
# registered middleware is the outermost. Registration below therefore runs
# innermost-first: SlowAPI, Session, guards, logging, TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

# SessionMiddleware is required by authlib to store the OAuth state value
# between the redirect to the social provider and its callback, and by the
# login routes to remember the post-login next= target.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    same_site="lax",
    https_only=_settings.secure_cookies,
)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Guard chain middleware
#
# Pattern: Interceptor. Selects the single authoritative guard for the path,
# runs it, and either short-circuits with that guard's challenge or attaches
# the SecurityContext to request.state for auth.dependencies to hand out.
# A failed guard is final -- no other rule is consulted for this request.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def enforce_guards(request: Request, call_next):
    chain: GuardChain = request.app.state.guard_chain
    rule, guard = chain.select(request.url.path)
    try:
        context = guard.authenticate(request)
    except AuthError as exc:
        logger.info(
            "Guard %s rejected %s %s: %s",
            rule.guard.value,
            request.method,
            request.url.path,
            exc.code,
        )
        return guard.challenge(request, exc)
    request.state.security_context = context
    return await call_next(request)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(oauth_router, tags=["OAuth2"])
app.include_router(resource_router, tags=["Resource"])
# Web UI router (login pages) is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly. The token endpoint is the one exception: it renders RFC
# 6749 errors itself.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a domain auth failure raised inside a route handler."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(exclude_none=True),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Covered by an anonymous guard rule
# in the default configuration; no rate limit.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and the state of the in-process stores."""
    components = {
        "app": "ok",
        "token_store": "ok" if hasattr(request.app.state, "tokens") else "error",
    }
    return HealthResponse(version=_VERSION, components=components)
