from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from auth.errors import AuthError, HttpError, StorageError
from auth.manager import TokenLifecycleManager

from .api import TrainingPeaksApi
from .constants import LOGGER


def _check(name: str, status: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"name": name, "status": status, "message": message, **extra}


async def run_diagnostics(
    manager: TokenLifecycleManager, api: TrainingPeaksApi
) -> dict[str, Any]:
    """Check the auth state and the API without exposing any token value."""
    report: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "auth": {},
        "api_base_url": api.client.base_url,
        "checks": [],
    }
    checks: list[dict[str, Any]] = report["checks"]

    try:
        record = await manager.token_store.get()
        report["auth"] = {
            "is_authenticated": await manager.is_authenticated(),
            "has_access_token": record is not None,
            "has_refresh_token": bool(record and record.refresh_token),
            "state": (await manager.current_state()).value,
        }
    except StorageError as error:
        checks.append(_check("storage", "error", error.message))
        return report

    try:
        await manager.get_valid_access_token()
    except AuthError as error:
        checks.append(_check("token", "error", error.message))
        LOGGER.info("Diagnostics: token check failed (%s)", error.message)
        return report
    checks.append(_check("token", "success", "Valid access token available"))

    try:
        version = await api.get_version()
    except HttpError as error:
        checks.append(
            _check("api_version", "error", error.message, status_code=error.status_code)
        )
    except (AuthError, httpx.HTTPError) as error:
        checks.append(_check("api_version", "error", str(error)))
    else:
        checks.append(_check("api_version", "success", "API reachable", data=version))

    return report
