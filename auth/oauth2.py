from __future__ import annotations

import base64
import urllib.parse
from dataclasses import dataclass

import httpx

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class OAuthClientConfig:
    client_id: str
    client_secret: str
    authorization_endpoint: str
    token_endpoint: str
    redirect_uri: str
    scope: str
    timeout: float = DEFAULT_TIMEOUT_SECONDS


class TokenRequestError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error = error
        self.error_description = error_description


@dataclass
class TokenResponse:
    access_token: str
    expires_in: int
    expires_at: float
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    @classmethod
    def from_payload(cls, payload: dict, *, now: float) -> "TokenResponse":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")
        token_type = payload.get("token_type") or "Bearer"
        scope = payload.get("scope")

        if not isinstance(access_token, str) or not access_token:
            raise TokenRequestError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise TokenRequestError("Token response refresh_token must be a string.")
        if isinstance(expires_in, str) and expires_in.strip().isdecimal():
            expires_in = int(expires_in.strip())
        if not isinstance(expires_in, int) or isinstance(expires_in, bool):
            raise TokenRequestError("Token response missing expires_in.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_in=expires_in,
            expires_at=now + expires_in,
            token_type=str(token_type),
            scope=scope if isinstance(scope, str) else None,
        )


def basic_auth_header(client_id: str, client_secret: str) -> str:
    credentials = f"{client_id}:{client_secret}".encode("utf-8")
    return f"Basic {base64.b64encode(credentials).decode('ascii')}"


def build_authorization_url(
    config: OAuthClientConfig,
    *,
    state: str,
    code_challenge: str,
) -> str:
    query = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "scope": config.scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{config.authorization_endpoint}?{urllib.parse.urlencode(query)}"


def _error_from_response(response: httpx.Response) -> TokenRequestError:
    error = None
    description = None
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        if isinstance(body.get("error"), str):
            error = body["error"]
        if isinstance(body.get("error_description"), str):
            description = body["error_description"]

    message = description or error or f"Token request failed with status {response.status_code}"
    return TokenRequestError(
        message,
        status_code=response.status_code,
        error=error,
        error_description=description,
    )


async def _token_request(
    config: OAuthClientConfig,
    payload: dict[str, str],
    *,
    now: float,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=config.timeout)
    headers = {
        "Authorization": basic_auth_header(config.client_id, config.client_secret),
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }

    try:
        response = await http_client.post(config.token_endpoint, data=payload, headers=headers)
    except httpx.HTTPError as error:
        raise TokenRequestError(f"Token request failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    if not response.is_success:
        raise _error_from_response(response)

    try:
        body = response.json()
    except ValueError as error:
        raise TokenRequestError(
            "Token response is not valid JSON.",
            status_code=response.status_code,
        ) from error
    if not isinstance(body, dict):
        raise TokenRequestError(
            "Token response must be a JSON object.",
            status_code=response.status_code,
        )

    return TokenResponse.from_payload(body, now=now)


async def exchange_code(
    config: OAuthClientConfig,
    *,
    code: str,
    code_verifier: str,
    now: float,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        config,
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": config.redirect_uri,
            "code_verifier": code_verifier,
        },
        now=now,
        client=client,
    )


async def refresh_token(
    config: OAuthClientConfig,
    *,
    refresh_token: str,
    now: float,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        config,
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        },
        now=now,
        client=client,
    )
