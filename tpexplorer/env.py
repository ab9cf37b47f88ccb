from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from auth.oauth2 import DEFAULT_TIMEOUT_SECONDS, OAuthClientConfig

from .constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_AUTHORIZE_URL,
    DEFAULT_HOST,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PORT,
    DEFAULT_SCOPES,
    DEFAULT_TOKEN_URL,
    LOGGER,
)

_HTTP_URL = TypeAdapter(AnyHttpUrl)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def _get_env_url(key: str, default: str) -> str:
    raw = os.getenv(key, "").strip() or default
    try:
        _HTTP_URL.validate_python(raw)
    except ValidationError as error:
        raise RuntimeError(f"{key} must be a valid http(s) URL, got {raw!r}.") from error
    return raw


def get_host() -> str:
    return os.getenv("TP_HOST", DEFAULT_HOST).strip() or DEFAULT_HOST


def get_port() -> int:
    return _get_env_int("TP_PORT", DEFAULT_PORT)


def get_api_base_url() -> str:
    return _get_env_url("TP_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/")


def get_api_timeout() -> float:
    return _get_env_float("TP_API_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)


def get_api_max_retries() -> int:
    return _get_env_int("TP_API_MAX_RETRIES", DEFAULT_MAX_RETRIES)


def get_retry_on_unauthorized() -> bool:
    return is_truthy(os.getenv("TP_RETRY_ON_401", "1"))


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    required = ("TP_OAUTH_CLIENT_ID", "TP_OAUTH_CLIENT_SECRET")
    missing = [key for key in required if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    load_oauth_config()
    get_api_base_url()

    if get_api_max_retries() < 0:
        raise RuntimeError("TP_API_MAX_RETRIES must not be negative.")
    if get_api_timeout() <= 0:
        raise RuntimeError("TP_API_TIMEOUT must be greater than zero.")


def load_oauth_config() -> OAuthClientConfig:
    default_redirect = f"http://{get_host()}:{get_port()}/callback"
    return OAuthClientConfig(
        client_id=os.getenv("TP_OAUTH_CLIENT_ID", "").strip(),
        client_secret=os.getenv("TP_OAUTH_CLIENT_SECRET", "").strip(),
        authorization_endpoint=_get_env_url("TP_OAUTH_AUTHORIZE_URL", DEFAULT_AUTHORIZE_URL),
        token_endpoint=_get_env_url("TP_OAUTH_TOKEN_URL", DEFAULT_TOKEN_URL),
        redirect_uri=_get_env_url("TP_OAUTH_REDIRECT_URI", default_redirect),
        scope=" ".join(os.getenv("TP_OAUTH_SCOPES", DEFAULT_SCOPES).split()),
        timeout=get_api_timeout(),
    )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("TP_API_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
