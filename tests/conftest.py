import pytest

from tests.oauth_helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def clear_tp_env(monkeypatch) -> None:
    for key in (
        "TP_OAUTH_CLIENT_ID",
        "TP_OAUTH_CLIENT_SECRET",
        "TP_OAUTH_AUTHORIZE_URL",
        "TP_OAUTH_TOKEN_URL",
        "TP_OAUTH_SCOPES",
        "TP_OAUTH_REDIRECT_URI",
        "TP_API_BASE_URL",
        "TP_API_TIMEOUT",
        "TP_API_MAX_RETRIES",
        "TP_RETRY_ON_401",
        "TP_STORAGE_PATH",
        "TP_API_DEBUG",
        "TP_HOST",
        "TP_PORT",
    ):
        monkeypatch.delenv(key, raising=False)
