from __future__ import annotations

import logging

LOGGER = logging.getLogger("tpexplorer")
APP_VERSION = "0.1.0"
USER_AGENT = f"TrainingPeaks API Explorer/{APP_VERSION}"

DEFAULT_AUTHORIZE_URL = "https://oauth.sandbox.trainingpeaks.com/oauth/authorize"
DEFAULT_TOKEN_URL = "https://oauth.sandbox.trainingpeaks.com/oauth/token"
DEFAULT_API_BASE_URL = "https://api.sandbox.trainingpeaks.com"
DEFAULT_SCOPES = (
    "athlete:profile events:read events:write file:write metrics:read "
    "metrics:write workouts:read workouts:details workouts:wod workouts:plan"
)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5173
DEFAULT_STORAGE_PATH = ".tp_storage.json"
DEFAULT_MAX_RETRIES = 2

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE"]
