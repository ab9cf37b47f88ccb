from __future__ import annotations

import asyncio
import hmac
import inspect
import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from auth import oauth2
from auth.errors import (
    AuthorizationDeniedError,
    MissingCallbackParametersError,
    NoRefreshTokenError,
    NotAuthenticatedError,
    RefreshFailedError,
    StateMismatchError,
    TokenExchangeError,
)
from auth.models import AuthSession, AuthState, TokenRecord
from auth.pkce import CODE_VERIFIER_LENGTH, STATE_LENGTH, derive_pkce, generate_random_string
from auth.session_store import AuthSessionStore
from auth.token_store import TokenStore

LOGGER = logging.getLogger("tpexplorer.auth")

REFRESH_SKEW_SECONDS = 5 * 60

AuthChangeListener = Callable[[AuthState], "Awaitable[None] | None"]
Navigator = Callable[[str], Any]


def _mask(value: str) -> str:
    return f"{value[:6]}****"


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class TokenLifecycleManager:
    """Drives the PKCE login round trip and keeps the access token fresh.

    The token store is the only shared state. Concurrent callers of
    :meth:`get_valid_access_token` that find the token inside the refresh
    window share a single in-flight refresh instead of racing each other.
    """

    def __init__(
        self,
        *,
        config: oauth2.OAuthClientConfig,
        token_store: TokenStore,
        session_store: AuthSessionStore,
        navigator: Navigator | None = None,
        clock: Callable[[], float] = time.time,
        http_client: httpx.AsyncClient | None = None,
        refresh_skew_seconds: float = REFRESH_SKEW_SECONDS,
        exchange_code_fn=oauth2.exchange_code,
        refresh_token_fn=oauth2.refresh_token,
    ) -> None:
        self._config = config
        self._token_store = token_store
        self._session_store = session_store
        self._navigator = navigator
        self._clock = clock
        self._http_client = http_client
        self._refresh_skew_seconds = refresh_skew_seconds
        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn

        self._listeners: list[AuthChangeListener] = []
        self._refresh_task: asyncio.Future[TokenRecord] | None = None
        # Bumped by logout; a refresh started under an older generation is discarded.
        self._generation = 0

    @property
    def config(self) -> oauth2.OAuthClientConfig:
        return self._config

    @property
    def token_store(self) -> TokenStore:
        return self._token_store

    # -- observers -------------------------------------------------------------

    def on_auth_change(self, listener: AuthChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, state: AuthState) -> None:
        for listener in list(self._listeners):
            try:
                await _maybe_await(listener(state))
            except Exception:
                LOGGER.exception("Auth change listener failed for state=%s", state.value)

    # -- status ----------------------------------------------------------------

    async def current_state(self) -> AuthState:
        record = await self._token_store.get()
        if record is not None:
            if record.needs_refresh(self._clock(), self._refresh_skew_seconds):
                return AuthState.EXPIRED
            return AuthState.AUTHENTICATED
        if await self._session_store.load() is not None:
            return AuthState.PENDING_CALLBACK
        return AuthState.UNAUTHENTICATED

    async def is_authenticated(self) -> bool:
        record = await self._token_store.get()
        return record is not None and not record.is_expired(self._clock())

    # -- login round trip ------------------------------------------------------

    async def initiate_login(self) -> str:
        state = generate_random_string(STATE_LENGTH)
        pkce = derive_pkce(generate_random_string(CODE_VERIFIER_LENGTH))
        await self._session_store.save(
            AuthSession(state=state, code_verifier=pkce.code_verifier)
        )

        url = oauth2.build_authorization_url(
            self._config,
            state=state,
            code_challenge=pkce.code_challenge,
        )
        LOGGER.info(
            "Starting OAuth login client_id=%s state=%s",
            self._config.client_id,
            _mask(state),
        )
        await self._notify(AuthState.PENDING_CALLBACK)

        if self._navigator is not None:
            await _maybe_await(self._navigator(url))
        return url

    async def handle_callback(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> TokenRecord:
        if error is not None:
            await self._session_store.clear()
            LOGGER.warning("Authorization server returned error=%s", error)
            raise AuthorizationDeniedError(error, error_description)

        if not code or not state:
            raise MissingCallbackParametersError()

        session = await self._session_store.load()
        if session is None or not hmac.compare_digest(
            session.state.encode("utf-8"), state.encode("utf-8")
        ):
            await self._session_store.clear()
            LOGGER.warning("Rejected OAuth callback with unexpected state=%s", _mask(state))
            raise StateMismatchError()

        await self._session_store.clear()
        return await self.exchange_code_for_tokens(code, session.code_verifier)

    async def exchange_code_for_tokens(self, code: str, code_verifier: str) -> TokenRecord:
        try:
            response = await self._exchange_code_fn(
                self._config,
                code=code,
                code_verifier=code_verifier,
                now=self._clock(),
                client=self._http_client,
            )
        except oauth2.TokenRequestError as error:
            LOGGER.warning(
                "Token exchange failed status=%s error=%s",
                error.status_code,
                error.error,
            )
            raise TokenExchangeError(error.message, status_code=error.status_code) from error

        record = TokenRecord(
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            expires_at=response.expires_at,
        )
        await self._token_store.set(record)
        LOGGER.info("Exchanged authorization code (expires in %ss)", response.expires_in)
        await self._notify(AuthState.AUTHENTICATED)
        return record

    # -- refresh ---------------------------------------------------------------

    async def refresh_access_token(self) -> TokenRecord:
        current = await self._token_store.get()
        if current is None or not current.refresh_token:
            raise NoRefreshTokenError()

        generation = self._generation
        try:
            response = await self._refresh_token_fn(
                self._config,
                refresh_token=current.refresh_token,
                now=self._clock(),
                client=self._http_client,
            )
        except oauth2.TokenRequestError as error:
            if generation != self._generation:
                raise NotAuthenticatedError() from error
            await self._token_store.clear()
            LOGGER.warning(
                "Token refresh failed status=%s error=%s; cleared stored tokens",
                error.status_code,
                error.error,
            )
            await self._notify(AuthState.UNAUTHENTICATED)
            raise RefreshFailedError(status_code=error.status_code) from error

        if generation != self._generation:
            LOGGER.info("Discarding refreshed token; logged out while refresh was in flight")
            raise NotAuthenticatedError()

        record = TokenRecord(
            access_token=response.access_token,
            refresh_token=response.refresh_token or current.refresh_token,
            expires_at=response.expires_at,
        )
        await self._token_store.set(record)
        LOGGER.info("Refreshed access token (expires in %ss)", response.expires_in)
        await self._notify(AuthState.AUTHENTICATED)
        return record

    async def _refresh_once(self) -> TokenRecord:
        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self.refresh_access_token())
            self._refresh_task = task
            task.add_done_callback(self._forget_refresh_task)
        return await asyncio.shield(task)

    def _forget_refresh_task(self, task: asyncio.Future[TokenRecord]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def force_refresh(self) -> str:
        record = await self._refresh_once()
        return record.access_token

    async def get_valid_access_token(self) -> str:
        record = await self._token_store.get()
        if record is None:
            raise NotAuthenticatedError()

        if record.needs_refresh(self._clock(), self._refresh_skew_seconds):
            LOGGER.info(
                "Access token expires within %ss; refreshing",
                int(self._refresh_skew_seconds),
            )
            record = await self._refresh_once()
        return record.access_token

    # -- logout ----------------------------------------------------------------

    async def logout(self) -> None:
        self._generation += 1
        self._refresh_task = None
        await self._token_store.clear()
        await self._session_store.clear()
        LOGGER.info("Logged out; cleared stored tokens")
        await self._notify(AuthState.UNAUTHENTICATED)
