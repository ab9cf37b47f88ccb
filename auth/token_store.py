from __future__ import annotations

from abc import ABC, abstractmethod

from auth.models import TokenRecord
from auth.storage import KeyValueStore

ACCESS_TOKEN_KEY = "tp_access_token"
REFRESH_TOKEN_KEY = "tp_refresh_token"
TOKEN_EXPIRY_KEY = "tp_token_expiry"


class TokenStore(ABC):
    @abstractmethod
    async def get(self) -> TokenRecord | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, record: TokenRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    def __init__(self, record: TokenRecord | None = None) -> None:
        self._record = record

    async def get(self) -> TokenRecord | None:
        return self._record

    async def set(self, record: TokenRecord) -> None:
        self._record = record

    async def clear(self) -> None:
        self._record = None


def _parse_expiry_millis(raw: str | None) -> float:
    # Unknown expiry is treated as already expired.
    if raw is None:
        return 0.0
    try:
        return int(raw) / 1000
    except ValueError:
        return 0.0


class KeyValueTokenStore(TokenStore):
    """Persists a token record under fixed keys; expiry is epoch millis."""

    def __init__(self, storage: KeyValueStore) -> None:
        self._storage = storage

    async def get(self) -> TokenRecord | None:
        access_token = await self._storage.get(ACCESS_TOKEN_KEY)
        if not access_token:
            return None

        return TokenRecord(
            access_token=access_token,
            refresh_token=await self._storage.get(REFRESH_TOKEN_KEY) or None,
            expires_at=_parse_expiry_millis(await self._storage.get(TOKEN_EXPIRY_KEY)),
        )

    async def set(self, record: TokenRecord) -> None:
        await self._storage.set(ACCESS_TOKEN_KEY, record.access_token)
        if record.refresh_token:
            await self._storage.set(REFRESH_TOKEN_KEY, record.refresh_token)
        else:
            await self._storage.delete(REFRESH_TOKEN_KEY)
        await self._storage.set(TOKEN_EXPIRY_KEY, str(int(record.expires_at * 1000)))

    async def clear(self) -> None:
        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_EXPIRY_KEY):
            await self._storage.delete(key)
