from __future__ import annotations

from auth.models import AuthSession
from auth.storage import KeyValueStore

CODE_VERIFIER_KEY = "tp_code_verifier"
STATE_KEY = "tp_state"


class AuthSessionStore:
    """Holds the state and code verifier of the single in-flight login."""

    def __init__(self, storage: KeyValueStore) -> None:
        self._storage = storage

    async def save(self, session: AuthSession) -> None:
        await self._storage.set(CODE_VERIFIER_KEY, session.code_verifier)
        await self._storage.set(STATE_KEY, session.state)

    async def load(self) -> AuthSession | None:
        state = await self._storage.get(STATE_KEY)
        code_verifier = await self._storage.get(CODE_VERIFIER_KEY)
        if not state or not code_verifier:
            return None
        return AuthSession(state=state, code_verifier=code_verifier)

    async def clear(self) -> None:
        await self._storage.delete(STATE_KEY)
        await self._storage.delete(CODE_VERIFIER_KEY)
