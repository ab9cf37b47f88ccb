import asyncio
import urllib.parse

import pytest

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
from auth.oauth2 import TokenRequestError
from auth.pkce import generate_code_challenge
from tests.oauth_helpers import (
    TOKEN_URL,
    FakeTokenEndpoint,
    make_config,
    make_manager,
    token_payload,
    valid_record,
)


def _query(url: str) -> dict[str, list[str]]:
    return urllib.parse.parse_qs(urllib.parse.urlparse(url).query)


def _form(request) -> dict[str, str]:
    return dict(urllib.parse.parse_qsl(request.content.decode("utf-8")))


@pytest.mark.asyncio
async def test_initiate_login_builds_authorization_url(clock) -> None:
    config = make_config(client_id="brownlee-fitness", redirect_uri="https://app.example/callback")
    manager, _, session_store = make_manager(clock=clock, config=config)

    url = await manager.initiate_login()

    query = _query(url)
    assert query["response_type"] == ["code"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["client_id"] == ["brownlee-fitness"]
    assert query["redirect_uri"] == ["https://app.example/callback"]
    assert len(query["state"][0]) == 43

    session = await session_store.load()
    assert session is not None
    assert session.state == query["state"][0]
    assert len(session.code_verifier) == 128
    assert query["code_challenge"] == [generate_code_challenge(session.code_verifier)]


@pytest.mark.asyncio
async def test_initiate_login_calls_navigator(clock) -> None:
    visited: list[str] = []
    manager, _, _ = make_manager(clock=clock, navigator=visited.append)

    url = await manager.initiate_login()

    assert visited == [url]
    assert await manager.current_state() == AuthState.PENDING_CALLBACK


@pytest.mark.asyncio
async def test_callback_with_state_mismatch_never_calls_token_endpoint(clock, httpx_mock) -> None:
    manager, token_store, session_store = make_manager(clock=clock)
    await manager.initiate_login()

    with pytest.raises(StateMismatchError, match="possible CSRF attack"):
        await manager.handle_callback("code-1", "forged-state")

    assert httpx_mock.get_requests() == []
    assert await session_store.load() is None
    assert await token_store.get() is None


@pytest.mark.asyncio
async def test_callback_without_stored_session_is_state_mismatch(clock, httpx_mock) -> None:
    manager, _, _ = make_manager(clock=clock)

    with pytest.raises(StateMismatchError):
        await manager.handle_callback("code-1", "some-state")

    assert httpx_mock.get_requests() == []


@pytest.mark.asyncio
async def test_callback_with_error_is_denied_regardless_of_other_params(clock, httpx_mock) -> None:
    manager, _, session_store = make_manager(clock=clock)
    url = await manager.initiate_login()
    state = _query(url)["state"][0]

    with pytest.raises(AuthorizationDeniedError, match="access_denied") as excinfo:
        await manager.handle_callback(
            "code-1",
            state,
            error="access_denied",
            error_description="User declined",
        )

    assert excinfo.value.message == "Authentication error: access_denied: User declined"
    assert httpx_mock.get_requests() == []
    assert await session_store.load() is None


@pytest.mark.asyncio
async def test_callback_missing_code_keeps_session(clock) -> None:
    manager, _, session_store = make_manager(clock=clock)
    await manager.initiate_login()

    with pytest.raises(MissingCallbackParametersError):
        await manager.handle_callback(None, "state")

    assert await session_store.load() is not None


@pytest.mark.asyncio
async def test_callback_exchanges_code_then_is_authenticated(clock, httpx_mock) -> None:
    httpx_mock.add_response(url=TOKEN_URL, method="POST", json=token_payload("access-xyz"))
    manager, token_store, session_store = make_manager(clock=clock)
    url = await manager.initiate_login()
    state = _query(url)["state"][0]
    session = await session_store.load()

    await manager.handle_callback("code-1", state)

    assert await manager.is_authenticated() is True
    assert await manager.get_valid_access_token() == "access-xyz"
    assert await session_store.load() is None
    assert await manager.current_state() == AuthState.AUTHENTICATED

    form = _form(httpx_mock.get_request())
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "code-1"
    assert form["code_verifier"] == session.code_verifier

    record = await token_store.get()
    assert record == TokenRecord("access-xyz", clock() + 3600, "refresh-1")


@pytest.mark.asyncio
async def test_exchange_failure_raises_token_exchange_error(clock, httpx_mock) -> None:
    httpx_mock.add_response(
        url=TOKEN_URL,
        method="POST",
        status_code=400,
        json={"error": "invalid_grant", "error_description": "Authorization code expired"},
    )
    manager, token_store, _ = make_manager(clock=clock)

    with pytest.raises(TokenExchangeError, match="Authorization code expired") as excinfo:
        await manager.exchange_code_for_tokens("code-1", "verifier")

    assert excinfo.value.status_code == 400
    assert await token_store.get() is None


@pytest.mark.asyncio
async def test_token_inside_skew_window_refreshes_exactly_once(clock, httpx_mock) -> None:
    httpx_mock.add_response(url=TOKEN_URL, method="POST", json=token_payload("access-2"))
    record = TokenRecord("access-1", clock() + 120, "refresh-1")
    manager, token_store, _ = make_manager(clock=clock, record=record)

    assert await manager.current_state() == AuthState.EXPIRED
    assert await manager.get_valid_access_token() == "access-2"

    requests = httpx_mock.get_requests()
    assert len(requests) == 1
    assert _form(requests[0]) == {"grant_type": "refresh_token", "refresh_token": "refresh-1"}
    assert (await token_store.get()).access_token == "access-2"


@pytest.mark.asyncio
async def test_fresh_token_is_returned_without_network(clock, httpx_mock) -> None:
    record = TokenRecord("access-1", clock() + 3600, "refresh-1")
    manager, _, _ = make_manager(clock=clock, record=record)

    assert await manager.get_valid_access_token() == "access-1"
    assert httpx_mock.get_requests() == []


@pytest.mark.asyncio
async def test_refresh_rejected_clears_tokens(clock, httpx_mock) -> None:
    httpx_mock.add_response(
        url=TOKEN_URL,
        method="POST",
        status_code=400,
        json={"error": "invalid_grant"},
    )
    manager, token_store, _ = make_manager(clock=clock, record=valid_record(clock))

    with pytest.raises(RefreshFailedError) as excinfo:
        await manager.refresh_access_token()

    assert excinfo.value.status_code == 400
    assert await token_store.get() is None
    assert await manager.is_authenticated() is False
    assert await manager.current_state() == AuthState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_refresh_keeps_refresh_token_when_server_omits_it(clock) -> None:
    refresh = FakeTokenEndpoint(access_token="access-2", refresh_token=None)
    manager, token_store, _ = make_manager(
        clock=clock,
        record=valid_record(clock),
        refresh_token_fn=refresh,
    )

    await manager.refresh_access_token()

    assert await token_store.get() == TokenRecord("access-2", clock() + 3600, "refresh-1")


@pytest.mark.asyncio
async def test_refresh_without_refresh_token(clock) -> None:
    manager, _, _ = make_manager(clock=clock, record=TokenRecord("access-1", clock() + 60))

    with pytest.raises(NoRefreshTokenError):
        await manager.refresh_access_token()


@pytest.mark.asyncio
async def test_get_valid_access_token_without_tokens(clock) -> None:
    manager, _, _ = make_manager(clock=clock)

    with pytest.raises(NotAuthenticatedError, match="please log in"):
        await manager.get_valid_access_token()


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(clock) -> None:
    refresh = FakeTokenEndpoint(access_token="access-2")
    record = TokenRecord("access-1", clock() + 60, "refresh-1")
    manager, _, _ = make_manager(clock=clock, record=record, refresh_token_fn=refresh)

    tokens = await asyncio.gather(*(manager.get_valid_access_token() for _ in range(5)))

    assert tokens == ["access-2"] * 5
    assert len(refresh.calls) == 1


@pytest.mark.asyncio
async def test_concurrent_callers_all_see_refresh_failure(clock) -> None:
    refresh = FakeTokenEndpoint(error=TokenRequestError("invalid_grant", status_code=400))
    record = TokenRecord("access-1", clock() + 60, "refresh-1")
    manager, _, _ = make_manager(clock=clock, record=record, refresh_token_fn=refresh)

    results = await asyncio.gather(
        manager.get_valid_access_token(),
        manager.get_valid_access_token(),
        return_exceptions=True,
    )

    assert all(isinstance(result, RefreshFailedError) for result in results)
    assert len(refresh.calls) == 1


@pytest.mark.asyncio
async def test_listeners_observe_transitions(clock) -> None:
    exchange = FakeTokenEndpoint()
    manager, _, _ = make_manager(clock=clock, exchange_code_fn=exchange)
    seen: list[AuthState] = []

    async def async_listener(state: AuthState) -> None:
        seen.append(state)

    def broken_listener(state: AuthState) -> None:
        raise ValueError(state)

    manager.on_auth_change(broken_listener)
    unsubscribe = manager.on_auth_change(async_listener)

    url = await manager.initiate_login()
    await manager.handle_callback("code-1", _query(url)["state"][0])
    await manager.logout()
    unsubscribe()
    await manager.logout()

    assert seen == [
        AuthState.PENDING_CALLBACK,
        AuthState.AUTHENTICATED,
        AuthState.UNAUTHENTICATED,
    ]


@pytest.mark.asyncio
async def test_logout_clears_everything_and_is_idempotent(clock) -> None:
    manager, token_store, session_store = make_manager(clock=clock, record=valid_record(clock))
    await session_store.save(AuthSession(state="state", code_verifier="verifier"))

    await manager.logout()
    await manager.logout()

    assert await token_store.get() is None
    assert await session_store.load() is None
    assert await manager.is_authenticated() is False


@pytest.mark.asyncio
async def test_is_authenticated_tracks_clock(clock) -> None:
    manager, _, _ = make_manager(clock=clock, record=valid_record(clock))

    assert await manager.is_authenticated() is True
    clock.advance(3600)
    assert await manager.is_authenticated() is False


class GatedTokenEndpoint(FakeTokenEndpoint):
    """Holds each call open until ``release`` is set."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, config, **kwargs):
        self.started.set()
        await self.release.wait()
        return await super().__call__(config, **kwargs)


@pytest.mark.asyncio
async def test_logout_during_refresh_discards_refreshed_token(clock) -> None:
    refresh = GatedTokenEndpoint(access_token="access-2")
    record = TokenRecord("access-1", clock() + 60, "refresh-1")
    manager, token_store, _ = make_manager(clock=clock, record=record, refresh_token_fn=refresh)
    seen: list[AuthState] = []
    manager.on_auth_change(seen.append)

    pending = asyncio.ensure_future(manager.get_valid_access_token())
    await refresh.started.wait()
    await manager.logout()
    refresh.release.set()

    with pytest.raises(NotAuthenticatedError):
        await pending

    assert await token_store.get() is None
    assert await manager.is_authenticated() is False
    assert seen == [AuthState.UNAUTHENTICATED]


@pytest.mark.asyncio
async def test_refresh_after_logout_and_relogin_starts_fresh(clock) -> None:
    refresh = GatedTokenEndpoint(access_token="access-stale")
    record = TokenRecord("access-1", clock() + 60, "refresh-1")
    manager, token_store, _ = make_manager(clock=clock, record=record, refresh_token_fn=refresh)

    stale = asyncio.ensure_future(manager.get_valid_access_token())
    await refresh.started.wait()
    await manager.logout()
    await token_store.set(TokenRecord("access-new", clock() + 3600, "refresh-new"))
    refresh.release.set()

    with pytest.raises(NotAuthenticatedError):
        await stale

    assert await manager.get_valid_access_token() == "access-new"


@pytest.mark.asyncio
async def test_callback_with_empty_error_is_denied(clock, httpx_mock) -> None:
    manager, _, session_store = make_manager(clock=clock)
    url = await manager.initiate_login()

    with pytest.raises(AuthorizationDeniedError):
        await manager.handle_callback("code-1", _query(url)["state"][0], error="")

    assert httpx_mock.get_requests() == []
    assert await session_store.load() is None
