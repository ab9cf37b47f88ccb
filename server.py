from __future__ import annotations

import os

import uvicorn
from starlette.applications import Starlette

from auth.manager import TokenLifecycleManager
from auth.session_store import AuthSessionStore
from auth.storage import FileKeyValueStore, MemoryKeyValueStore
from auth.token_store import KeyValueTokenStore
from tpexplorer.api import TrainingPeaksApi
from tpexplorer.constants import DEFAULT_STORAGE_PATH, LOGGER
from tpexplorer.env import (
    get_api_base_url,
    get_api_max_retries,
    get_api_timeout,
    get_host,
    get_port,
    get_retry_on_unauthorized,
    load_env,
    load_oauth_config,
    setup_logging,
    validate_env,
)
from tpexplorer.http import ApiClient
from tpexplorer.web import create_web_app


def create_app() -> Starlette:
    load_env()
    debug_enabled = setup_logging()
    validate_env()

    config = load_oauth_config()
    storage_path = os.getenv("TP_STORAGE_PATH", "").strip() or DEFAULT_STORAGE_PATH

    # Tokens survive restarts; the login round trip lives only as long as the process.
    token_store = KeyValueTokenStore(FileKeyValueStore(storage_path))
    session_store = AuthSessionStore(MemoryKeyValueStore())
    manager = TokenLifecycleManager(
        config=config,
        token_store=token_store,
        session_store=session_store,
    )

    api_client = ApiClient(
        manager,
        base_url=get_api_base_url(),
        timeout=get_api_timeout(),
        max_retries=get_api_max_retries(),
        retry_on_unauthorized=get_retry_on_unauthorized(),
        debug=debug_enabled,
    )
    LOGGER.info(
        "Explorer configured api=%s redirect_uri=%s storage=%s",
        api_client.base_url,
        config.redirect_uri,
        storage_path,
    )
    return create_web_app(manager, api_client, TrainingPeaksApi(api_client))


def main() -> None:
    app = create_app()
    uvicorn.run(app, host=get_host(), port=get_port())


if __name__ == "__main__":
    main()
