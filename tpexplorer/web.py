from __future__ import annotations

import contextlib
import html
import json
from datetime import datetime, timezone
from typing import Any

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from auth.errors import AuthError, AuthenticationRequiredError, HttpError, StorageError
from auth.manager import TokenLifecycleManager

from .api import TrainingPeaksApi
from .constants import APP_VERSION, LOGGER, PROXY_METHODS
from .diagnostics import run_diagnostics
from .http import ApiClient

SUCCESS_REDIRECT_SECONDS = 2
FAILURE_REDIRECT_SECONDS = 3

_CALLBACK_PAGE = """<!doctype html>
<html>
  <head>
    <meta charset="utf-8">
    <meta http-equiv="refresh" content="{delay};url=/">
    <title>TrainingPeaks API Explorer</title>
  </head>
  <body>
    <p>{message}</p>
  </body>
</html>
"""


def _callback_page(message: str, *, delay: int, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        _CALLBACK_PAGE.format(delay=delay, message=html.escape(message)),
        status_code=status_code,
    )


def _error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message, "status": status_code}, status_code=status_code)


class ExplorerApp:
    """Request handlers for the local explorer host."""

    def __init__(
        self,
        *,
        manager: TokenLifecycleManager,
        api_client: ApiClient,
        api: TrainingPeaksApi | None = None,
    ) -> None:
        self.manager = manager
        self.api_client = api_client
        self.api = api or TrainingPeaksApi(api_client)

    async def _handle_health(self, request: Request) -> Response:
        del request
        return JSONResponse({"status": "ok", "version": APP_VERSION})

    async def _handle_status(self, request: Request) -> Response:
        del request
        try:
            record = await self.manager.token_store.get()
            authenticated = await self.manager.is_authenticated()
            state = await self.manager.current_state()
        except StorageError as error:
            LOGGER.error("Cannot read auth status: %s", error.message)
            return _error_response(error.message, 500)

        expires_at = None
        if record is not None:
            expires_at = datetime.fromtimestamp(record.expires_at, tz=timezone.utc).isoformat()
        return JSONResponse(
            {
                "authenticated": authenticated,
                "state": state.value,
                "expires_at": expires_at,
            }
        )

    async def _handle_login(self, request: Request) -> Response:
        del request
        url = await self.manager.initiate_login()
        return RedirectResponse(url=url, status_code=302)

    async def _handle_callback(self, request: Request) -> Response:
        params = request.query_params
        try:
            await self.manager.handle_callback(
                params.get("code"),
                params.get("state"),
                error=params.get("error"),
                error_description=params.get("error_description"),
            )
        except AuthError as error:
            LOGGER.warning("Login callback failed: %s", error.message)
            return _callback_page(
                error.message,
                delay=FAILURE_REDIRECT_SECONDS,
                status_code=400,
            )
        return _callback_page(
            "Authentication successful! Redirecting...",
            delay=SUCCESS_REDIRECT_SECONDS,
        )

    async def _handle_logout(self, request: Request) -> Response:
        del request
        try:
            await self.manager.logout()
        except StorageError as error:
            LOGGER.error("Logout failed: %s", error.message)
            return _error_response(error.message, 500)
        return RedirectResponse(url="/", status_code=303)

    async def _handle_diagnostics(self, request: Request) -> Response:
        del request
        return JSONResponse(await run_diagnostics(self.manager, self.api))

    async def _handle_api(self, request: Request) -> Response:
        endpoint = "/" + request.path_params["path"]
        payload: Any = None
        body = await request.body()
        if body:
            try:
                payload = json.loads(body)
            except ValueError:
                return _error_response("Request body must be valid JSON.", 400)

        try:
            data = await self.api_client.request(
                request.method,
                endpoint,
                params=dict(request.query_params) or None,
                json=payload,
            )
        except AuthenticationRequiredError as error:
            return _error_response(error.message, 401)
        except HttpError as error:
            return _error_response(error.message, error.status_code)
        except httpx.HTTPError as error:
            LOGGER.warning("API request %s %s failed: %s", request.method, endpoint, error)
            return _error_response(f"Request failed: {error}", 502)
        return JSONResponse(data)

    def routes(self) -> list[Route]:
        return [
            Route("/health", self._handle_health, methods=["GET"]),
            Route("/", self._handle_status, methods=["GET"]),
            Route("/status", self._handle_status, methods=["GET"]),
            Route("/login", self._handle_login, methods=["GET"]),
            Route("/callback", self._handle_callback, methods=["GET"]),
            Route("/logout", self._handle_logout, methods=["POST"]),
            Route("/diagnostics", self._handle_diagnostics, methods=["GET"]),
            Route("/api/{path:path}", self._handle_api, methods=PROXY_METHODS),
        ]


def create_web_app(
    manager: TokenLifecycleManager,
    api_client: ApiClient,
    api: TrainingPeaksApi | None = None,
) -> Starlette:
    explorer = ExplorerApp(manager=manager, api_client=api_client, api=api)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        del app
        try:
            yield
        finally:
            await api_client.aclose()

    app = Starlette(routes=explorer.routes(), lifespan=lifespan)
    app.state.explorer = explorer
    return app
