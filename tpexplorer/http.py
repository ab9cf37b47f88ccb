from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from auth.errors import AuthError, AuthenticationRequiredError, HttpError
from auth.manager import TokenLifecycleManager

from .constants import DEFAULT_API_BASE_URL, LOGGER, USER_AGENT

# 5xx retries may only repeat requests that are safe to send twice.
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


def _seconds_from_retry_after(retry_after: str | None) -> int | None:
    if retry_after is None:
        return None
    try:
        return max(0, int(retry_after))
    except ValueError:
        return None


class RetryTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = 2,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._max_retries = max(0, max_retries)
        self._sleep = sleep
        self._logger = logger or LOGGER

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = request.content
        retries = 0

        while True:
            next_request = httpx.Request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                content=body,
                extensions=request.extensions,
            )
            response = await self._transport.handle_async_request(next_request)

            if self._max_retries == 0:
                return response

            if response.status_code == 429 and retries < min(self._max_retries, 1):
                wait_seconds = _seconds_from_retry_after(response.headers.get("retry-after"))
                if wait_seconds is None:
                    wait_seconds = 1
                self._logger.warning(
                    "Retrying 429 after %ss (%s %s)",
                    wait_seconds,
                    request.method,
                    request.url,
                )
                await response.aclose()
                await self._sleep(wait_seconds)
                retries += 1
                continue

            if (
                500 <= response.status_code < 600
                and request.method in IDEMPOTENT_METHODS
                and retries < self._max_retries
            ):
                backoff_seconds = 2**retries
                self._logger.warning(
                    "Retrying %s after %ss (%s %s)",
                    response.status_code,
                    backoff_seconds,
                    request.method,
                    request.url,
                )
                await response.aclose()
                await self._sleep(backoff_seconds)
                retries += 1
                continue

            return response

    async def aclose(self) -> None:
        await self._transport.aclose()


def extract_error_message(response: httpx.Response) -> tuple[str, str | None]:
    """Return ``(message, raw)`` for a failed response.

    ``raw`` holds the first 200 characters of a non-JSON body, else None.
    """
    fallback = f"HTTP {response.status_code}: {response.reason_phrase}"
    content_type = response.headers.get("content-type", "")
    if "application/json" not in content_type:
        return fallback, response.text[:200]

    try:
        data = response.json()
    except ValueError:
        return fallback, response.text[:200]

    if isinstance(data, list) and data:
        return ", ".join(str(item) for item in data), None
    if isinstance(data, dict):
        for key in ("error_description", "error", "message"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value, None
    if isinstance(data, str) and data:
        return data, None
    return fallback, None


class ApiClient:
    """Issues API calls carrying a bearer token from the lifecycle manager."""

    def __init__(
        self,
        manager: TokenLifecycleManager,
        *,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_on_unauthorized: bool = True,
        debug: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self._manager = manager
        self._retry_on_unauthorized = retry_on_unauthorized
        self._debug = debug
        self.base_url = base_url.rstrip("/")

        retry_transport = RetryTransport(
            transport or httpx.AsyncHTTPTransport(),
            max_retries=max_retries,
            sleep=sleep,
            logger=LOGGER,
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=retry_transport,
            event_hooks={
                "request": [self._log_request],
                "response": [self._log_response],
            },
        )

    async def _log_request(self, request: httpx.Request) -> None:
        if not self._debug:
            return
        LOGGER.info("API request %s %s", request.method, request.url)

    async def _log_response(self, response: httpx.Response) -> None:
        if not self._debug:
            return
        LOGGER.info(
            "API response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            LOGGER.warning("API error body: %s", text)

    async def _access_token(self) -> str:
        try:
            return await self._manager.get_valid_access_token()
        except AuthError as error:
            raise AuthenticationRequiredError() from error

    async def _send(
        self,
        method: str,
        endpoint: str,
        token: str,
        *,
        params: dict[str, Any] | None,
        json: Any,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        merged = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {token}",
            "User-Agent": USER_AGENT,
        }
        if headers:
            merged.update(headers)
        return await self._client.request(
            method,
            endpoint,
            params=params,
            json=json,
            headers=merged,
        )

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        token = await self._access_token()
        response = await self._send(
            method, endpoint, token, params=params, json=json, headers=headers
        )

        if response.status_code == 401 and self._retry_on_unauthorized:
            LOGGER.info("Got 401 for %s %s; refreshing token and retrying once", method, endpoint)
            try:
                token = await self._manager.force_refresh()
            except AuthError as error:
                raise AuthenticationRequiredError() from error
            response = await self._send(
                method, endpoint, token, params=params, json=json, headers=headers
            )

        if not response.is_success:
            message, raw = extract_error_message(response)
            raise HttpError(
                message,
                status_code=response.status_code,
                endpoint=endpoint,
                raw=raw,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as error:
            raise HttpError(
                f"Invalid JSON response from {endpoint}",
                status_code=response.status_code,
                endpoint=endpoint,
                raw=response.text[:200],
            ) from error

    async def get(self, endpoint: str, **kwargs: Any) -> Any:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs: Any) -> Any:
        return await self.request("POST", endpoint, **kwargs)

    async def put(self, endpoint: str, **kwargs: Any) -> Any:
        return await self.request("PUT", endpoint, **kwargs)

    async def delete(self, endpoint: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", endpoint, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
