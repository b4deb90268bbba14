"""
client/app.py -- HTTP surface of the OAuth2 client process.

Run with:  uvicorn client.app:app --port 9999

Routes:
  GET  /client/       -- protected resource via the access token, or start the flow
  GET  /client/login  -- redirect_uri registered with the authorization server
  POST /client/logout -- forget the local session and its token

This process shares no code or state with the authorization server; it only
talks to it over HTTP through ClientRedirector.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.sessions import SessionMiddleware

from client.config import get_client_settings
from client.errors import AuthorizationDenied, ClientFlowError, TokenRejected, TransientExchangeError
from client.redirector import ClientRedirector

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("ssoauth.client.app")

_settings = get_client_settings()

# Session key counting flow restarts after transient exchange failures.
_RESTARTS_KEY = "flow_restarts"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.redirector = ClientRedirector(_settings)
    logger.info("OAuth2 client %s ready (authorize at %s)", _settings.client_id, _settings.authorize_url)
    yield
    logger.info("OAuth2 client shutdown complete")


app = FastAPI(
    title="SSO Client",
    description="OAuth2 Authorization Code client for the SSO authorization server.",
    lifespan=lifespan,
)

app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie="client_session",
    same_site="lax",
    https_only=_settings.secure_cookies,
)


def _redirector(request: Request) -> ClientRedirector:
    return request.app.state.redirector


def _start_flow(request: Request) -> RedirectResponse:
    return RedirectResponse(_redirector(request).begin(request.session), status_code=302)


@app.exception_handler(ClientFlowError)
async def client_flow_error_handler(request: Request, exc: ClientFlowError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


@app.get("/client/")
def client_home(request: Request):
    """Show the protected resource, entering the flow whenever there is no usable token."""
    try:
        return _redirector(request).fetch_resource(request.session)
    except TokenRejected:
        return _start_flow(request)


@app.get("/client/login")
def client_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
) -> RedirectResponse:
    """Authorization callback: verify state, exchange the code, return to /client/.

    A transient failure of the exchange restarts the flow with a fresh state
    up to CLIENT_MAX_FLOW_RESTARTS times; the code itself is never replayed.
    """
    redirector = _redirector(request)
    if error:
        request.session.pop("oauth_state", None)
        logger.info("Authorization server returned error=%s", error)
        raise AuthorizationDenied(f"The authorization server answered: {error}.", code=error)

    try:
        redirector.complete(request.session, code, state)
    except TransientExchangeError:
        restarts = request.session.get(_RESTARTS_KEY, 0)
        if restarts >= _settings.max_flow_restarts:
            request.session.pop(_RESTARTS_KEY, None)
            raise
        request.session[_RESTARTS_KEY] = restarts + 1
        logger.info("Restarting authorization flow (%d/%d)", restarts + 1, _settings.max_flow_restarts)
        return _start_flow(request)

    request.session.pop(_RESTARTS_KEY, None)
    return RedirectResponse("/client/", status_code=302)


@app.post("/client/logout")
def client_logout(request: Request) -> JSONResponse:
    _redirector(request).forget(request.session)
    request.session.pop(_RESTARTS_KEY, None)
    return JSONResponse({"status": "logged_out"})
